import sys
import psutil
import logging
import threading
import subprocess
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

log = logging.getLogger(__name__)

ChunkHandler = Callable[[str], None]
ExitHandler = Callable[[Optional[int]], None]


#* --- Process Creation ---
def get_popen_creation_flags(detached: bool) -> Dict[str, Any]:
    """
    Returns platform-specific keyword arguments for subprocess.Popen.

    A detached process gets its own session (POSIX) or is created with
    DETACHED_PROCESS (Windows), so it is not taken down with the server.

    :param detached: Whether the child should outlive the server process.
    :return dict: A dictionary of keyword arguments for Popen.
    """
    if not detached:
        return {}
    if sys.platform == "win32":
        return {"creationflags": subprocess.DETACHED_PROCESS | subprocess.CREATE_NO_WINDOW}
    return {"start_new_session": True}


def spawn_process(args: Sequence[str], cwd: str, detached: bool = False) -> subprocess.Popen:
    """
    Launches a process with stdout/stderr captured as byte pipes.

    :param args: The full argv, executable first.
    :param cwd: The working directory for the child.
    :param detached: Whether the child should outlive the server process.
    :raises OSError: If the executable cannot be started (missing, not executable, ...).
    """
    popen_kwargs = get_popen_creation_flags(detached)
    return subprocess.Popen(
        list(args),
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        stdin=subprocess.DEVNULL,
        cwd=cwd,
        **popen_kwargs,
    )


#* --- Output & Exit Watching ---
def _read_pipe(pipe, task_id: str, level: int, chunk_handler: Optional[ChunkHandler] = None) -> None:
    """Target function for reader threads. Delivers and logs chunks from a subprocess pipe."""
    proc_logger = logging.getLogger(f"proc.{task_id}")
    try:
        for line_bytes in iter(pipe.readline, b""):
            chunk = line_bytes.decode("utf-8", errors="replace")
            if chunk_handler:
                try:
                    chunk_handler(chunk)
                except Exception as e:
                    proc_logger.error(f"Error in output handler: {e}", exc_info=True)
            line = chunk.strip()
            if line:
                proc_logger.log(level, line)
    except Exception as e:
        proc_logger.debug(f"Pipe reader for {task_id} stream exited: {e}")
    finally:
        pipe.close()


def _start_reader(pipe, task_id: str, level: int, chunk_handler: Optional[ChunkHandler]) -> Optional[threading.Thread]:
    if not pipe:
        return None
    reader = threading.Thread(
        target=_read_pipe,
        args=(pipe, task_id, level, chunk_handler),
        daemon=True,
        name=f"TaskReader-{task_id[:8]}",
    )
    reader.start()
    return reader


def watch_process(
    process: subprocess.Popen,
    task_id: str,
    on_stdout: Optional[ChunkHandler] = None,
    on_stderr: Optional[ChunkHandler] = None,
    on_exit: Optional[ExitHandler] = None,
) -> threading.Thread:
    """
    Consumes a process's output in background threads and reports its exit.

    Each pipe gets its own daemon reader thread, which keeps the pipes from
    filling up and blocking the child. A third thread waits for both readers
    to finish and for the process to exit, then calls `on_exit` with the exit
    code. `on_exit` therefore always runs after the last output chunk was handled.

    :param process: The `subprocess.Popen` object to monitor.
    :param task_id: The task id, used for the `proc.<id>` logger and thread names.
    :param on_stdout: Called with every stdout chunk.
    :param on_stderr: Called with every stderr chunk.
    :param on_exit: Called once with the exit code.
    :return: The watcher thread.
    """
    readers = [
        reader for reader in (
            _start_reader(process.stdout, task_id, logging.INFO, on_stdout),
            _start_reader(process.stderr, task_id, logging.ERROR, on_stderr),
        ) if reader is not None
    ]

    def wait_for_exit() -> None:
        for reader in readers:
            reader.join()
        exit_code = process.wait()
        if on_exit:
            try:
                on_exit(exit_code)
            except Exception as e:
                log.error(f"Exit handler for task {task_id} failed: {e}", exc_info=True)

    watcher = threading.Thread(target=wait_for_exit, daemon=True, name=f"TaskWatcher-{task_id[:8]}")
    watcher.start()
    return watcher


#* --- Process Termination ---
def _kill_process_tree(proc: psutil.Process) -> None:
    """Kills a process and all of its descendants, children first."""
    try:
        children = proc.children(recursive=True)
    except psutil.NoSuchProcess:
        children = []
    for child in reversed(children):
        try:
            child.kill()
        except psutil.NoSuchProcess:
            continue
    proc.kill()


def terminate_process(pid: int) -> bool:
    """
    Asks a process to terminate.

    POSIX gets a cooperative SIGTERM; on Windows, where there is no such
    signal, the whole process tree is killed.

    :param pid: The OS process id.
    :return: True if the signal was delivered, False if the process was already gone.
    :raises psutil.Error: If the signal could not be delivered (e.g. access denied).
    """
    try:
        proc = psutil.Process(pid)
        if sys.platform == "win32":
            _kill_process_tree(proc)
        else:
            log.debug(f"Sending SIGTERM to PID {pid}")
            proc.terminate()
        return True
    except psutil.NoSuchProcess:
        log.debug(f"Process {pid} no longer exists, nothing to terminate.")
        return False


def _forceful_kill(processes: List[psutil.Process]) -> None:
    """Forcefully kills processes that didn't terminate gracefully."""
    if not processes:
        return

    log.warning(f"{len(processes)} processes did not terminate gracefully. Forcing shutdown...")
    for proc in processes:
        try:
            log.warning(f"Killing stubborn process (PID {proc.pid}).")
            proc.kill()
        except psutil.NoSuchProcess:
            continue


def terminate_and_wait(pids: Iterable[int], timeout: float) -> None:
    """
    Terminates the given processes, waits for them, and force-kills survivors.

    :param pids: Process ids to stop.
    :param timeout: Seconds to wait before force-killing.
    """
    procs: List[psutil.Process] = []
    for pid in pids:
        try:
            proc = psutil.Process(pid)
            proc.terminate()
            procs.append(proc)
        except psutil.NoSuchProcess:
            continue
        except psutil.Error as e:
            log.error(f"Failed to terminate process {pid}: {e}")

    if not procs:
        return

    try:
        _, alive = psutil.wait_procs(procs, timeout=timeout)
    except psutil.Error:
        alive = procs
    _forceful_kill(alive)


class ProcessSpawner:
    """
    The OS-facing side of the TaskManager: launching, watching and signalling processes.

    The TaskManager only talks to processes through this class, which lets tests
    substitute a fake.
    """

    def spawn(self, args: Sequence[str], cwd: str, detached: bool = False) -> subprocess.Popen:
        return spawn_process(args, cwd, detached)

    def watch(
        self,
        process: subprocess.Popen,
        task_id: str,
        on_stdout: Optional[ChunkHandler] = None,
        on_stderr: Optional[ChunkHandler] = None,
        on_exit: Optional[ExitHandler] = None,
    ) -> None:
        watch_process(process, task_id, on_stdout, on_stderr, on_exit)

    def terminate(self, pid: int) -> bool:
        return terminate_process(pid)

    def terminate_all(self, pids: Iterable[int], timeout: float) -> None:
        terminate_and_wait(pids, timeout)
