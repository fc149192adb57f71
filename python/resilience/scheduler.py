"""
Aegrid Resilience v1.0 — Module 4: Task Scheduler
=================================================
Cancellable deferred and periodic callbacks on daemon timer threads.

A delay of zero or less runs the callback inline, which keeps
deployment completion synchronous in tests and CLI runs.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class TaskHandle:
    """Returned by call_later / call_every; cancel() stops future runs."""

    def __init__(self, name: str, interval: Optional[float] = None):
        self.name      = name
        self.interval  = interval
        self.cancelled = False
        self.runs      = 0
        self._timer: Optional[threading.Timer] = None

    @property
    def periodic(self) -> bool:
        return self.interval is not None

    def cancel(self) -> None:
        self.cancelled = True
        if self._timer is not None:
            self._timer.cancel()

    def __repr__(self) -> str:
        kind = f"every {self.interval}s" if self.periodic else "once"
        state = "cancelled" if self.cancelled else "active"
        return f"<TaskHandle {self.name} {kind} {state} runs={self.runs}>"


class TaskScheduler:
    def __init__(self):
        self._handles: list[TaskHandle] = []
        self._lock = threading.Lock()

    def call_later(self, delay: float, fn: Callable[[], None], name: str = "task") -> TaskHandle:
        handle = TaskHandle(name)
        if delay <= 0:
            self._run(handle, fn)
            return handle
        self._arm(handle, delay, fn)
        return handle

    def call_every(self, interval: float, fn: Callable[[], None], name: str = "periodic") -> TaskHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        handle = TaskHandle(name, interval)
        self._arm(handle, interval, fn)
        return handle

    def cancel(self, handle: TaskHandle) -> None:
        """Cancel one task and stop tracking it."""
        handle.cancel()
        self._forget(handle)

    def cancel_all(self) -> int:
        with self._lock:
            handles, self._handles = self._handles, []
        for h in handles:
            h.cancel()
        if handles:
            logger.info("Cancelled %d scheduled task(s)", len(handles))
        return len(handles)

    def active(self) -> list[TaskHandle]:
        with self._lock:
            return [h for h in self._handles if not h.cancelled]

    # ── Internals ─────────────────────────────────────────────────────────────

    def _arm(self, handle: TaskHandle, delay: float, fn: Callable[[], None]) -> None:
        def fire():
            if handle.cancelled:
                return
            self._run(handle, fn)
            if handle.periodic and not handle.cancelled:
                self._arm(handle, handle.interval, fn)
            elif not handle.periodic:
                self._forget(handle)

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        handle._timer = timer
        with self._lock:
            if handle not in self._handles:
                self._handles.append(handle)
        timer.start()

    def _forget(self, handle: TaskHandle) -> None:
        with self._lock:
            if handle in self._handles:
                self._handles.remove(handle)

    @staticmethod
    def _run(handle: TaskHandle, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception as exc:
            logger.error("Scheduled task '%s' failed: %s", handle.name, exc)
        finally:
            handle.runs += 1
