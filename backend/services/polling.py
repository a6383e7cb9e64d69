"""
Cancellable scheduled tasks.

Periodic refreshes (market data, funding status) and one-shot delayed
reloads run on daemon threads. Every start returns a handle whose
``cancel()`` must be called when the owning view or flow is torn down.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TaskHandle:
    """Ticket for a scheduled task; ``cancel()`` is idempotent."""

    def __init__(self, name: str, stop_event: threading.Event, thread: Optional[threading.Thread] = None):
        self.name = name
        self._stop_event = stop_event
        self._thread = thread

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def cancel(self, wait: bool = False, timeout: float = 5.0) -> bool:
        """
        Stop the task.

        Returns:
            True when this call cancelled it, False when already cancelled
        """
        if self._stop_event.is_set():
            return False
        self._stop_event.set()
        if wait and self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        logger.debug("Task %s cancelled", self.name)
        return True


def _run_guarded(name: str, fn: Callable[[], None]) -> None:
    try:
        fn()
    except Exception:
        logger.exception("Scheduled task %s failed", name)


class PeriodicTask:
    """Runs ``fn`` every ``interval`` seconds until cancelled."""

    def __init__(self, name: str, interval: float, fn: Callable[[], None], run_immediately: bool = True):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = float(interval)
        self.fn = fn
        self.run_immediately = run_immediately
        self._handle: Optional[TaskHandle] = None
        self._lock = threading.Lock()

    def _loop(self, stop_event: threading.Event) -> None:
        if self.run_immediately and not stop_event.is_set():
            _run_guarded(self.name, self.fn)
        while not stop_event.wait(timeout=self.interval):
            _run_guarded(self.name, self.fn)
        logger.debug("Periodic task %s stopped", self.name)

    def start(self) -> TaskHandle:
        """Start the loop (idempotent while running) and return its handle."""
        with self._lock:
            if self._handle is not None and not self._handle.cancelled and self._handle.is_alive():
                return self._handle
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._loop,
                args=(stop_event,),
                daemon=True,
                name=f"quantpilot-{self.name}",
            )
            self._handle = TaskHandle(self.name, stop_event, thread)
            thread.start()
            return self._handle

    def is_running(self) -> bool:
        with self._lock:
            handle = self._handle
        return handle is not None and not handle.cancelled and handle.is_alive()

    def cancel(self, wait: bool = False) -> bool:
        with self._lock:
            handle = self._handle
        if handle is None:
            return False
        return handle.cancel(wait=wait)


def schedule_once(delay: float, fn: Callable[[], None], name: str = "delayed") -> TaskHandle:
    """Run ``fn`` once after ``delay`` seconds unless the handle is cancelled first."""
    stop_event = threading.Event()

    def _wait_then_run() -> None:
        if stop_event.wait(timeout=max(0.0, float(delay))):
            return
        _run_guarded(name, fn)
        stop_event.set()

    thread = threading.Thread(target=_wait_then_run, daemon=True, name=f"quantpilot-{name}")
    handle = TaskHandle(name, stop_event, thread)
    thread.start()
    return handle


class TaskGroup:
    """Collects handles owned by one flow so teardown cancels them together."""

    def __init__(self):
        self._handles: list[TaskHandle] = []
        self._lock = threading.Lock()

    def add(self, handle: TaskHandle) -> TaskHandle:
        with self._lock:
            self._handles = [h for h in self._handles if not h.cancelled]
            self._handles.append(handle)
        return handle

    def pending(self) -> int:
        with self._lock:
            return sum(1 for h in self._handles if not h.cancelled)

    def cancel_all(self) -> int:
        with self._lock:
            handles, self._handles = self._handles, []
        return sum(1 for h in handles if h.cancel())
