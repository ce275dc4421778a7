from enum import Enum
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class TaskMode(str, Enum):
    TRACKED = "tracked"
    ONE_TIME = "oneTime"


class TaskStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: Optional[datetime]) -> Optional[str]:
    """Formats a datetime the way it appears on the wire (millisecond precision, 'Z' suffix)."""
    if moment is None:
        return None
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def duration_ms(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)


@dataclass
class Task:
    """
    One tracked script invocation.

    `id`, `script_path`, `args`, `mode` and `working_dir` are fixed at creation.
    Everything else is mutated by the TaskManager while it holds its table lock.
    """
    id: str
    script_path: str
    args: List[str]
    pid: int
    mode: TaskMode
    working_dir: str
    start_time: datetime = field(default_factory=utc_now)
    status: TaskStatus = TaskStatus.RUNNING
    end_time: Optional[datetime] = None
    exit_code: Optional[int] = None
    stdout: List[str] = field(default_factory=list)
    stderr: List[str] = field(default_factory=list)

    @property
    def duration(self) -> Optional[int]:
        """Elapsed milliseconds between start and end, None while still running."""
        if self.end_time is None:
            return None
        return duration_ms(self.start_time, self.end_time)

    @property
    def is_running(self) -> bool:
        return self.status is TaskStatus.RUNNING

    def finish(self, status: TaskStatus, end_time: datetime) -> None:
        """
        Moves a running task into a terminal state.

        :param status: The terminal status, COMPLETED or STOPPED.
        :param end_time: When the task left the running state.
        :raises ValueError: If the task is already terminal or the status is not terminal.
        """
        if status is TaskStatus.RUNNING:
            raise ValueError("A task cannot transition back to 'running'.")
        if not self.is_running:
            raise ValueError(f"Task {self.id} is already {self.status.value}.")
        self.status = status
        self.end_time = end_time

    def to_dict(self) -> Dict[str, Any]:
        """Returns the externally visible fields. Output buffers are never included."""
        return {
            "id": self.id,
            "scriptPath": self.script_path,
            "args": list(self.args),
            "pid": self.pid,
            "status": self.status.value,
            "startTime": isoformat(self.start_time),
            "endTime": isoformat(self.end_time),
            "duration": self.duration,
            "workingDir": self.working_dir,
            "exitCode": self.exit_code,
        }

    def to_detail_dict(self) -> Dict[str, Any]:
        """Returns the externally visible fields plus the captured output."""
        details = self.to_dict()
        details["stdout"] = "".join(self.stdout)
        details["stderr"] = "".join(self.stderr)
        return details
