import os
import sys
import uuid
import time
import psutil
import logging
import platform
import threading
from typing import Any, Dict, List, Optional, Sequence

from task_runner.local.config import effective_settings
from task_runner.local.supervisor.launchers import LauncherRegistry, build_default_registry
from task_runner.local.supervisor.models import Task, TaskMode, TaskStatus, duration_ms, isoformat, utc_now
from task_runner.local.supervisor.process_utils import ProcessSpawner
from task_runner.local.supervisor.scheduler import ScheduledCall, Scheduler, ThreadingScheduler

log = logging.getLogger(__name__)


class TaskManager:
    """
    Launches scripts as child processes and tracks their lifecycle.

    The manager owns the task table. Public operations never raise: every
    outcome, including failures, is reported as a dictionary with a `success` flag.

    Output and exit notifications arrive on background threads, so every read
    or write of the table and of task fields happens under `self._lock`.
    """

    def __init__(
        self,
        config=None,
        spawner: Optional[ProcessSpawner] = None,
        scheduler: Optional[Scheduler] = None,
        launchers: Optional[LauncherRegistry] = None,
        working_dir: Optional[str] = None,
    ) -> None:
        """
        :param config: Settings object; defaults to the process-wide effective settings.
        :param spawner: Launches and signals OS processes.
        :param scheduler: Runs the delayed evictions.
        :param launchers: Extension to launch-strategy registry.
        :param working_dir: Directory scripts are launched in.
        """
        self.config = config or effective_settings
        self.spawner = spawner or ProcessSpawner()
        self.scheduler = scheduler or ThreadingScheduler()
        self.launchers = launchers or build_default_registry(self.config)
        self.working_dir = str(working_dir or self.config.WORKING_DIR)

        self._tasks: Dict[str, Task] = {}
        self._evictions: Dict[str, ScheduledCall] = {}
        self._lock = threading.Lock()

    #* --- Running ---
    def run_script(self, script_path: str, args: Optional[Sequence[str]] = None, one_time: bool = False) -> Dict[str, Any]:
        """
        Starts a script and returns immediately.

        Tracked scripts are recorded in the task table and can be listed and
        stopped. One-time scripts are launched detached and forgotten: their
        output and exit code only show up in the log.

        :param script_path: Path of the script to launch.
        :param args: Arguments passed to the script.
        :param one_time: Launch detached without tracking.
        :return: The start result, or `{success: False, error}` if the process could not be started.
        """
        args = [str(arg) for arg in (args or [])]
        task_id = str(uuid.uuid4())
        mode = TaskMode.ONE_TIME if one_time else TaskMode.TRACKED
        start_time = utc_now()

        try:
            command = self.launchers.resolve(script_path, args)
            log.info(f"[{task_id}] Starting {mode.value} script: {' '.join(command)}")
            process = self.spawner.spawn(command, self.working_dir, detached=one_time)
        except (OSError, ValueError) as e:
            log.error(f"Error running script '{script_path}': {e}", exc_info=True)
            return {
                "success": False,
                "error": str(e),
                "message": "Failed to start script",
            }

        try:
            if one_time:
                self._watch_one_time(task_id, process, start_time)
                message = "Script started in one-time mode"
            else:
                self._track(task_id, process, script_path, args, start_time)
                message = "Script started successfully"
        except Exception as e:
            log.error(f"[{task_id}] Failed to watch script '{script_path}' (PID {process.pid}): {e}", exc_info=True)
            self._abandon(task_id, process.pid)
            return {
                "success": False,
                "error": str(e),
                "message": "Failed to start script",
            }

        log.info(f"[{task_id}] Script started with PID: {process.pid}")
        return {
            "success": True,
            "id": task_id,
            "mode": mode.value,
            "message": message,
            "pid": process.pid,
            "scriptPath": script_path,
            "args": list(args),
            "startTime": isoformat(start_time),
        }

    def _track(self, task_id: str, process, script_path: str, args: List[str], start_time) -> None:
        task = Task(
            id=task_id,
            script_path=script_path,
            args=list(args),
            pid=process.pid,
            mode=TaskMode.TRACKED,
            working_dir=self.working_dir,
            start_time=start_time,
        )
        # Insert before watching so the exit handler always finds the task.
        with self._lock:
            self._tasks[task_id] = task

        self.spawner.watch(
            process,
            task_id,
            on_stdout=lambda chunk: self._append_output(task_id, chunk, is_stdout=True),
            on_stderr=lambda chunk: self._append_output(task_id, chunk, is_stdout=False),
            on_exit=lambda code: self._handle_exit(task_id, code),
        )

    def _abandon(self, task_id: str, pid: int) -> None:
        """Drops a task whose process could not be watched and terminates that process."""
        with self._lock:
            self._tasks.pop(task_id, None)
        try:
            self.spawner.terminate(pid)
        except (psutil.Error, OSError) as e:
            log.error(f"[{task_id}] Failed to terminate unwatched process {pid}: {e}")

    def _watch_one_time(self, task_id: str, process, start_time) -> None:
        def report_exit(code: Optional[int]) -> None:
            log.info(f"[{task_id}] One-time script exited with code {code} after {duration_ms(start_time, utc_now())}ms")

        self.spawner.watch(process, task_id, on_exit=report_exit)

    def _append_output(self, task_id: str, chunk: str, is_stdout: bool) -> None:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return
            (task.stdout if is_stdout else task.stderr).append(chunk)

    def _handle_exit(self, task_id: str, exit_code: Optional[int]) -> None:
        """Records a tracked process's exit and schedules its eviction."""
        log.info(f"[{task_id}] Script exited with code {exit_code}")
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return
            task.exit_code = exit_code
            # A stopped task keeps its status; only running tasks complete.
            if not task.is_running:
                return
            task.finish(TaskStatus.COMPLETED, utc_now())
            self._schedule_eviction(task_id, self.config.COMPLETED_EVICTION_SECONDS, TaskStatus.COMPLETED)

    #* --- Eviction ---
    def _schedule_eviction(self, task_id: str, delay: float, expected_status: TaskStatus) -> None:
        """Schedules removal of a terminal task. Must be called with the lock held."""
        previous = self._evictions.pop(task_id, None)
        if previous is not None:
            previous.cancel()
        self._evictions[task_id] = self.scheduler.call_later(
            delay, lambda: self._evict(task_id, expected_status)
        )

    def _evict(self, task_id: str, expected_status: TaskStatus) -> None:
        with self._lock:
            self._evictions.pop(task_id, None)
            task = self._tasks.get(task_id)
            if task is None or task.status is not expected_status:
                return
            del self._tasks[task_id]
        log.debug(f"[{task_id}] Evicted {expected_status.value} task from the task table.")

    #* --- Stopping ---
    def stop_script(self, task_id: str) -> Dict[str, Any]:
        """
        Stops a running tracked script.

        The termination signal is sent but the process exit is not awaited.
        A failure to deliver the signal is logged; the task is marked stopped regardless.

        :param task_id: The id returned by `run_script`.
        :return: The stop result, or `{success: False, error}` when the task is unknown or not running.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return {
                    "success": False,
                    "error": "Script not found",
                    "message": "No running script with the specified ID",
                }
            if not task.is_running:
                return {
                    "success": False,
                    "error": "Script not running",
                    "message": f"Script is in {task.status.value} state",
                }
            pid = task.pid

        try:
            if self.spawner.terminate(pid):
                log.info(f"[{task_id}] Termination signal sent to PID {pid}.")
            else:
                log.info(f"[{task_id}] Process {pid} had already exited.")
        except (psutil.Error, OSError) as e:
            log.error(f"[{task_id}] Failed to send termination signal to PID {pid}: {e}")

        with self._lock:
            # The process may have exited while the signal was being sent.
            if task.is_running:
                task.finish(TaskStatus.STOPPED, utc_now())
                if self._tasks.get(task_id) is task:
                    self._schedule_eviction(task_id, self.config.STOPPED_EVICTION_SECONDS, TaskStatus.STOPPED)
            result = {
                "success": True,
                "id": task_id,
                "message": "Script stopped successfully",
                "pid": pid,
                "stopTime": isoformat(task.end_time),
                "duration": task.duration,
            }

        return result

    #* --- Reporting ---
    def list_scripts(self) -> Dict[str, Any]:
        """Returns a snapshot of every task in the table, without output buffers."""
        with self._lock:
            scripts = [task.to_dict() for task in self._tasks.values()]
        return {"success": True, "count": len(scripts), "scripts": scripts}

    def get_script(self, task_id: str) -> Dict[str, Any]:
        """Returns one task including its captured stdout/stderr."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return {
                    "success": False,
                    "error": "Script not found",
                    "message": "No script with the specified ID",
                }
            return {"success": True, "script": task.to_detail_dict()}

    def get_status(self) -> Dict[str, Any]:
        """Returns server, memory and task table statistics."""
        current = psutil.Process()
        memory = current.memory_info()

        with self._lock:
            counts = {status.value: 0 for status in TaskStatus}
            for task in self._tasks.values():
                counts[task.status.value] += 1
            total = len(self._tasks)

        return {
            "success": True,
            "server": {
                "uptime": max(0.0, time.time() - current.create_time()),
                "timestamp": isoformat(utc_now()),
                "pythonVersion": platform.python_version(),
                "platform": sys.platform,
                "arch": platform.machine(),
                "pid": os.getpid(),
            },
            "memory": {
                "rss": memory.rss,
                "vms": memory.vms,
            },
            "tasks": {"total": total, **counts},
        }

    #* --- Shutdown ---
    def shutdown(self, timeout: Optional[float] = None) -> None:
        """
        Stops every running tracked script and cancels pending evictions.

        Tracked scripts are tied to the server's lifetime, one-time scripts are not.

        :param timeout: Seconds to wait for graceful termination before force-killing.
        """
        timeout = self.config.GRACEFUL_SHUTDOWN_TIMEOUT if timeout is None else timeout
        with self._lock:
            for call in self._evictions.values():
                call.cancel()
            self._evictions.clear()
            running = [task for task in self._tasks.values() if task.is_running]
            now = utc_now()
            for task in running:
                task.finish(TaskStatus.STOPPED, now)

        self.scheduler.cancel_all()
        if not running:
            log.info("No running tracked scripts to stop.")
            return

        log.info(f"Stopping {len(running)} tracked scripts...")
        self.spawner.terminate_all([task.pid for task in running], timeout)
        log.info("All tracked scripts stopped.")
