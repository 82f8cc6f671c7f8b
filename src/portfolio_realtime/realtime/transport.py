"""Change-feed transport contract shared by the concrete backends."""

from __future__ import annotations

import enum
import threading
from typing import Any, Callable, Optional, Protocol

RawEventHandler = Callable[[Any], None]


class TransportStatus(str, enum.Enum):
    """Channel lifecycle states reported by a transport."""

    SUBSCRIBED = "subscribed"
    CHANNEL_ERROR = "channel_error"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


StatusHandler = Callable[[TransportStatus, Optional[BaseException]], None]


class Channel(Protocol):
    """One server-side subscription to a table's change stream.

    A channel starts delivering events and statuses once a status handler is
    attached with :meth:`on_status`.
    """

    table: str

    def on_status(self, handler: StatusHandler) -> None: ...


class ChangeFeedTransport(Protocol):
    def subscribe(self, table: str, on_event: RawEventHandler) -> Channel: ...

    def unsubscribe(self, channel: Channel) -> None: ...


class ThreadedChannel:
    """Base channel running its receive loop on a daemon thread."""

    thread_name = "change-feed"

    def __init__(self, table: str, on_event: RawEventHandler) -> None:
        self.table = table
        self._on_event = on_event
        self._status_handler: Optional[StatusHandler] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._stop_event.is_set()

    def on_status(self, handler: StatusHandler) -> None:
        with self._lock:
            if self._status_handler is not None:
                raise RuntimeError("status handler already attached")
            self._status_handler = handler
            self._thread = threading.Thread(
                target=self._run,
                name=f"{self.thread_name}-{self.table}",
                daemon=True,
            )
            self._thread.start()

    def close(self) -> None:
        self._stop_event.set()

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def _report(
        self, status: TransportStatus, error: Optional[BaseException] = None
    ) -> None:
        handler = self._status_handler
        if handler is not None:
            handler(status, error)

    def _run(self) -> None:  # pragma: no cover - implemented by subclasses
        raise NotImplementedError


__all__ = [
    "ChangeFeedTransport",
    "Channel",
    "RawEventHandler",
    "StatusHandler",
    "ThreadedChannel",
    "TransportStatus",
]
