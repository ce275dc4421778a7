# tests/test_task_manager.py

from __future__ import annotations

import threading
import uuid

import pytest

from task_runner.local.supervisor import TaskManager

from .fakes import AccessDeniedSpawner, FakeSpawner, ManualScheduler


def _listed(manager: TaskManager) -> dict:
    return {s["id"]: s for s in manager.list_scripts()["scripts"]}


# --- run_script ---


def test_tracked_run_is_listed_once_as_running(manager, spawner, tmp_path) -> None:
    result = manager.run_script("./echo.js", ["hello"])

    assert result["success"] is True
    assert result["mode"] == "tracked"
    assert uuid.UUID(result["id"])
    assert result["pid"] == spawner.spawned[0].process.pid
    assert result["scriptPath"] == "./echo.js"
    assert result["args"] == ["hello"]
    assert result["startTime"].endswith("Z")

    scripts = manager.list_scripts()["scripts"]
    assert [s["id"] for s in scripts] == [result["id"]]
    assert scripts[0]["status"] == "running"
    assert scripts[0]["endTime"] is None
    assert scripts[0]["duration"] is None
    assert scripts[0]["workingDir"] == str(tmp_path)


def test_tracked_run_spawns_attached_through_launcher(manager, spawner, tmp_path) -> None:
    manager.run_script("./echo.js", ["hello"])

    call = spawner.spawned[0]
    assert call.args == ["node", "./echo.js", "hello"]
    assert call.cwd == str(tmp_path)
    assert call.detached is False


def test_ids_are_unique(manager) -> None:
    ids = {manager.run_script("./job.js")["id"] for _ in range(5)}
    assert len(ids) == 5
    assert manager.list_scripts()["count"] == 5


def test_output_is_captured_but_not_listed(manager, spawner) -> None:
    task_id = manager.run_script("./echo.js", ["hello"])["id"]

    spawner.emit_stdout(task_id, "hello\n")
    spawner.emit_stdout(task_id, "world\n")
    spawner.emit_stderr(task_id, "warning\n")

    listed = _listed(manager)[task_id]
    assert "stdout" not in listed
    assert "stderr" not in listed

    detail = manager.get_script(task_id)
    assert detail["success"] is True
    assert detail["script"]["stdout"] == "hello\nworld\n"
    assert detail["script"]["stderr"] == "warning\n"


def test_get_script_unknown_id(manager) -> None:
    result = manager.get_script("missing")
    assert result["success"] is False
    assert result["error"] == "Script not found"


def test_exit_completes_task_and_evicts_after_sixty_seconds(manager, spawner, scheduler) -> None:
    task_id = manager.run_script("./echo.js", ["hello"])["id"]

    spawner.exit(task_id, 0)

    listed = _listed(manager)[task_id]
    assert listed["status"] == "completed"
    assert listed["exitCode"] == 0
    assert listed["endTime"] is not None
    assert listed["duration"] >= 0

    scheduler.advance(59.9)
    assert task_id in _listed(manager)

    scheduler.advance(0.1)
    assert task_id not in _listed(manager)


def test_one_time_run_is_not_tracked(manager, spawner) -> None:
    result = manager.run_script("./report.js", ["--fast"], one_time=True)

    assert result["success"] is True
    assert result["mode"] == "oneTime"
    assert result["pid"] == spawner.spawned[0].process.pid
    assert result["args"] == ["--fast"]
    assert spawner.spawned[0].detached is True
    assert manager.list_scripts()["count"] == 0

    # Output is only logged; the exit notification must not touch the table.
    watch = spawner.watches[result["id"]]
    assert watch.on_stdout is None
    spawner.exit(result["id"], 3)
    assert manager.list_scripts()["count"] == 0

    stop = manager.stop_script(result["id"])
    assert stop == {
        "success": False,
        "error": "Script not found",
        "message": "No running script with the specified ID",
    }


def test_spawn_failure_is_reported_not_raised(config, scheduler) -> None:
    error = FileNotFoundError(2, "No such file or directory", "./bad/path")
    manager = TaskManager(config=config, spawner=FakeSpawner(fail_with=error), scheduler=scheduler)

    result = manager.run_script("./bad/path", [], one_time=True)

    assert result["success"] is False
    assert "No such file or directory" in result["error"]
    assert result["message"] == "Failed to start script"
    assert manager.list_scripts()["count"] == 0


def test_permission_error_is_reported(config, scheduler) -> None:
    manager = TaskManager(
        config=config,
        spawner=FakeSpawner(fail_with=PermissionError(13, "Permission denied")),
        scheduler=scheduler,
    )

    result = manager.run_script("./locked")

    assert result["success"] is False
    assert "Permission denied" in result["error"]
    assert manager.get_status()["tasks"]["total"] == 0


def test_empty_script_path_is_rejected(manager, spawner) -> None:
    result = manager.run_script("")
    assert result["success"] is False
    assert result["error"] == "Script path is required"
    assert spawner.spawned == []


# --- stop_script ---


def test_stop_unknown_id(manager) -> None:
    result = manager.stop_script("non-existent-id")
    assert result["success"] is False
    assert result["error"] == "Script not found"


def test_stop_running_task(manager, spawner, scheduler) -> None:
    run = manager.run_script("./loop.js")

    result = manager.stop_script(run["id"])

    assert result["success"] is True
    assert result["id"] == run["id"]
    assert result["pid"] == run["pid"]
    assert result["stopTime"].endswith("Z")
    assert result["duration"] >= 0
    assert spawner.terminated == [run["pid"]]
    assert _listed(manager)[run["id"]]["status"] == "stopped"

    scheduler.advance(4.9)
    assert run["id"] in _listed(manager)
    scheduler.advance(0.1)
    assert run["id"] not in _listed(manager)


def test_stop_completed_task_is_rejected(manager, spawner) -> None:
    task_id = manager.run_script("./echo.js")["id"]
    spawner.exit(task_id, 0)

    result = manager.stop_script(task_id)

    assert result["success"] is False
    assert result["error"] == "Script not running"
    assert result["message"] == "Script is in completed state"
    assert spawner.terminated == []


def test_stop_twice(manager, spawner) -> None:
    task_id = manager.run_script("./loop.js")["id"]

    first = manager.stop_script(task_id)
    second = manager.stop_script(task_id)

    assert first["success"] is True
    assert second["success"] is False
    assert second["error"] == "Script not running"
    assert second["message"] == "Script is in stopped state"
    assert len(spawner.terminated) == 1


def test_stop_after_eviction_is_not_found(manager, scheduler) -> None:
    task_id = manager.run_script("./loop.js")["id"]
    manager.stop_script(task_id)
    scheduler.advance(5)

    assert manager.stop_script(task_id)["error"] == "Script not found"


def test_stop_when_process_already_gone_still_succeeds(manager, spawner) -> None:
    run = manager.run_script("./loop.js")
    spawner.gone_pids.add(run["pid"])

    result = manager.stop_script(run["id"])

    assert result["success"] is True
    assert _listed(manager)[run["id"]]["status"] == "stopped"


def test_signal_failure_does_not_block_transition(config, scheduler) -> None:
    manager = TaskManager(config=config, spawner=AccessDeniedSpawner(), scheduler=scheduler)
    task_id = manager.run_script("./loop.js")["id"]

    result = manager.stop_script(task_id)

    assert result["success"] is True
    assert _listed(manager)[task_id]["status"] == "stopped"


def test_exit_after_stop_keeps_stopped_status(manager, spawner, scheduler) -> None:
    task_id = manager.run_script("./loop.js")["id"]
    manager.stop_script(task_id)

    spawner.exit(task_id, -15)

    listed = _listed(manager)[task_id]
    assert listed["status"] == "stopped"
    assert listed["exitCode"] == -15

    # Still evicted on the stop schedule, not pushed out to the completion one.
    scheduler.advance(5)
    assert task_id not in _listed(manager)


def test_output_after_eviction_is_ignored(manager, spawner, scheduler) -> None:
    task_id = manager.run_script("./loop.js")["id"]
    manager.stop_script(task_id)
    scheduler.advance(5)

    spawner.emit_stdout(task_id, "late line\n")
    spawner.exit(task_id, 0)

    assert manager.list_scripts()["count"] == 0


# --- get_status ---


def test_status_counts_match_table(manager, spawner) -> None:
    running = manager.run_script("./a.js")["id"]
    completed = manager.run_script("./b.js")["id"]
    stopped = manager.run_script("./c.js")["id"]
    spawner.exit(completed, 0)
    manager.stop_script(stopped)

    status = manager.get_status()

    assert status["success"] is True
    tasks = status["tasks"]
    assert tasks == {"total": 3, "running": 1, "completed": 1, "stopped": 1}
    assert tasks["total"] == manager.list_scripts()["count"]
    assert status["server"]["uptime"] >= 0
    assert status["server"]["timestamp"].endswith("Z")
    assert status["memory"]["rss"] > 0
    assert running in _listed(manager)


def test_status_with_empty_table(manager) -> None:
    assert manager.get_status()["tasks"] == {"total": 0, "running": 0, "completed": 0, "stopped": 0}


# --- shutdown ---


def test_shutdown_stops_running_tracked_tasks(manager, spawner, scheduler, config) -> None:
    running = manager.run_script("./loop.js")
    done = manager.run_script("./echo.js")["id"]
    manager.run_script("./detached.js", one_time=True)
    spawner.exit(done, 0)
    assert len(scheduler.pending) == 1

    manager.shutdown()

    assert spawner.terminate_all_calls == [([running["pid"]], config.GRACEFUL_SHUTDOWN_TIMEOUT)]
    assert scheduler.pending == []
    assert _listed(manager)[running["id"]]["status"] == "stopped"


def test_shutdown_without_running_tasks(manager, spawner) -> None:
    manager.shutdown(timeout=1)
    assert spawner.terminate_all_calls == []


def test_independent_managers_do_not_share_tables(config) -> None:
    first = TaskManager(config=config, spawner=FakeSpawner(), scheduler=ManualScheduler())
    second = TaskManager(config=config, spawner=FakeSpawner(), scheduler=ManualScheduler())

    first.run_script("./a.js")

    assert first.list_scripts()["count"] == 1
    assert second.list_scripts()["count"] == 0


# --- failures after the process started ---


class UnwatchableSpawner(FakeSpawner):
    """Spawns fine, but cannot start the threads that drain the process."""

    def watch(self, process, task_id, on_stdout=None, on_stderr=None, on_exit=None) -> None:
        raise RuntimeError("can't start new thread")


@pytest.mark.parametrize("one_time", [False, True])
def test_watch_failure_is_reported_and_cleaned_up(config, scheduler, one_time) -> None:
    spawner = UnwatchableSpawner()
    manager = TaskManager(config=config, spawner=spawner, scheduler=scheduler)

    result = manager.run_script("./loop.js", one_time=one_time)

    assert result == {
        "success": False,
        "error": "can't start new thread",
        "message": "Failed to start script",
    }
    assert manager.list_scripts()["count"] == 0
    assert spawner.terminated == [spawner.spawned[0].process.pid]


# --- concurrent stops ---


class RendezvousSpawner(FakeSpawner):
    """Holds every terminate call until two callers are inside it at the same time."""

    def __init__(self) -> None:
        super().__init__()
        self.barrier = threading.Barrier(2, timeout=5)

    def terminate(self, pid: int) -> bool:
        self.barrier.wait()
        return super().terminate(pid)


def test_concurrent_stops_on_same_task(config, scheduler) -> None:
    spawner = RendezvousSpawner()
    manager = TaskManager(config=config, spawner=spawner, scheduler=scheduler)
    task_id = manager.run_script("./loop.js")["id"]
    results = []

    def stop() -> None:
        results.append(manager.stop_script(task_id))

    threads = [threading.Thread(target=stop) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert len(results) == 2
    assert all(r["success"] is True for r in results)
    assert results[0]["stopTime"] == results[1]["stopTime"]
    assert _listed(manager)[task_id]["status"] == "stopped"
    # Only one transition, so only one eviction was scheduled.
    assert len(scheduler.pending) == 1
