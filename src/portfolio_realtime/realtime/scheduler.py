"""Timer scheduling used for delayed reconnects."""

from __future__ import annotations

import threading
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Runs a callback once after ``delay`` seconds unless cancelled."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class ThreadingScheduler:
    """Scheduler backed by daemon ``threading.Timer`` instances."""

    def __init__(self, *, name_prefix: str = "realtime-retry") -> None:
        self._name_prefix = name_prefix
        self._counter = 0
        self._lock = threading.Lock()

    def call_later(self, delay: float, callback: Callable[[], None]) -> threading.Timer:
        with self._lock:
            self._counter += 1
            name = f"{self._name_prefix}-{self._counter}"
        timer = threading.Timer(max(0.0, delay), callback)
        timer.name = name
        timer.daemon = True
        timer.start()
        return timer


__all__ = ["Scheduler", "ThreadingScheduler", "TimerHandle"]
