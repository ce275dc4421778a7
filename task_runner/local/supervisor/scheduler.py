import logging
import threading
from typing import Callable, Protocol, Set, runtime_checkable

log = logging.getLogger(__name__)


@runtime_checkable
class ScheduledCall(Protocol):
    """Handle for a delayed call. `cancel()` is safe to call more than once."""
    def cancel(self) -> None: ...


@runtime_checkable
class Scheduler(Protocol):
    """Runs callbacks after a delay and hands back a cancellable handle."""
    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall: ...

    def cancel_all(self) -> None: ...


class _TimerCall:
    def __init__(self, timer: threading.Timer, on_done: Callable[["_TimerCall"], None]) -> None:
        self._timer = timer
        self._on_done = on_done

    def cancel(self) -> None:
        self._timer.cancel()
        self._on_done(self)


class ThreadingScheduler:
    """
    Schedules callbacks on daemon `threading.Timer` threads.

    Exceptions raised by a callback are logged, never propagated into the timer thread.
    """

    def __init__(self) -> None:
        self._pending: Set[_TimerCall] = set()
        self._lock = threading.Lock()

    def _discard(self, call: _TimerCall) -> None:
        with self._lock:
            self._pending.discard(call)

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledCall:
        call: _TimerCall

        def run() -> None:
            self._discard(call)
            try:
                callback()
            except Exception as e:
                log.error(f"Scheduled callback failed: {e}", exc_info=True)

        timer = threading.Timer(delay, run)
        timer.daemon = True
        timer.name = "TaskEvictionTimer"
        call = _TimerCall(timer, self._discard)
        with self._lock:
            self._pending.add(call)
        timer.start()
        return call

    def cancel_all(self) -> None:
        with self._lock:
            pending = list(self._pending)
        for call in pending:
            call.cancel()
        if pending:
            log.debug(f"Cancelled {len(pending)} pending scheduled calls.")

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)
