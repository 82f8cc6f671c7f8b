"""Change-feed client with reconnect/backoff and isolated event dispatch.

A :class:`Connection` is an explicit state machine: transport statuses are
mapped onto :class:`ConnectionStatus` through ``STATUS_TRANSITIONS`` and the
retry decision is taken from the same status.  Every channel the connection
opens gets a new generation number; callbacks from older generations are
ignored so a torn-down channel can never deliver duplicate events.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..errors import ChannelTimeout, HandlerError, TransientChannelError
from .backoff import ExponentialBackoff
from .events import ChangeEvent, DeleteEvent, InsertEvent, UpdateEvent, decode_change
from .metrics import ChangeFeedMetrics, default_metrics
from .scheduler import Scheduler, ThreadingScheduler, TimerHandle
from .transport import ChangeFeedTransport, Channel, TransportStatus

logger = logging.getLogger(__name__)


class ConnectionStatus(str, enum.Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


STATUS_TRANSITIONS: Dict[TransportStatus, ConnectionStatus] = {
    TransportStatus.SUBSCRIBED: ConnectionStatus.CONNECTED,
    TransportStatus.CHANNEL_ERROR: ConnectionStatus.ERROR,
    TransportStatus.TIMED_OUT: ConnectionStatus.DISCONNECTED,
    TransportStatus.CLOSED: ConnectionStatus.DISCONNECTED,
}


@dataclass(frozen=True)
class Subscription:
    """Handlers for one table's change stream."""

    table: str
    on_insert: Optional[Callable[[Dict[str, Any]], None]] = None
    on_update: Optional[Callable[[Dict[str, Any]], None]] = None
    on_delete: Optional[Callable[[str], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None
    on_status: Optional[Callable[[ConnectionStatus], None]] = None

    def validate(self) -> None:
        if not self.table or not self.table.strip():
            raise ValueError("subscription table must be a non-empty string")
        if self.on_insert is None and self.on_update is None and self.on_delete is None:
            raise ValueError("subscription needs at least one event handler")

    def route(self, event: ChangeEvent) -> Optional[Callable[[], None]]:
        """Return a zero-argument call for ``event`` or None when unhandled."""
        if isinstance(event, InsertEvent) and self.on_insert is not None:
            handler_insert = self.on_insert
            return lambda: handler_insert(event.record)
        if isinstance(event, UpdateEvent) and self.on_update is not None:
            handler_update = self.on_update
            return lambda: handler_update(event.record)
        if isinstance(event, DeleteEvent) and self.on_delete is not None:
            handler_delete = self.on_delete
            return lambda: handler_delete(event.record_id)
        return None


class Connection:
    """Live handle owning at most one transport channel at a time."""

    def __init__(
        self,
        subscription: Subscription,
        *,
        transport: ChangeFeedTransport,
        scheduler: Scheduler,
        backoff: ExponentialBackoff,
        timeout_delay: float,
        metrics: ChangeFeedMetrics,
    ) -> None:
        self.subscription = subscription
        self._transport = transport
        self._scheduler = scheduler
        self._backoff = backoff
        self._timeout_delay = timeout_delay
        self._metrics = metrics
        self._lock = threading.RLock()
        self._status = ConnectionStatus.CONNECTING
        self._channel: Optional[Channel] = None
        self._generation = 0
        self._retry_count = 0
        self._retry_timer: Optional[TimerHandle] = None
        self._retry_seq = 0
        self._closed = False
        self._status_listeners: List[Callable[[ConnectionStatus], None]] = []
        if subscription.on_status is not None:
            self._status_listeners.append(subscription.on_status)

    @property
    def table(self) -> str:
        return self.subscription.table

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def channel(self) -> Optional[Channel]:
        return self._channel

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def retry_pending(self) -> bool:
        return self._retry_timer is not None

    def add_status_listener(self, listener: Callable[[ConnectionStatus], None]) -> None:
        with self._lock:
            self._status_listeners.append(listener)

    # ------------------------------------------------------------------ lifecycle
    def open(self) -> None:
        """Create a fresh channel for the subscription."""
        with self._lock:
            if self._closed:
                return
            if self._channel is not None:
                raise RuntimeError("connection already owns an active channel")
            self._generation += 1
            generation = self._generation
            table = self.subscription.table
            try:
                channel = self._transport.subscribe(
                    table,
                    lambda payload: self._dispatch(generation, payload),
                )
            except Exception as exc:  # noqa: BLE001 - treated as a channel error
                logger.warning("subscribe to %s failed: %s", table, exc)
                self._on_transport_status(generation, TransportStatus.CHANNEL_ERROR, exc)
                return
            self._channel = channel
            channel.on_status(
                lambda status, error=None: self._on_transport_status(
                    generation, status, error
                )
            )
            logger.debug("opened channel generation %d for %s", generation, table)

    def close(self) -> None:
        """Cancel any pending retry and release the channel; idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._generation += 1
            timer, self._retry_timer = self._retry_timer, None
            channel, self._channel = self._channel, None
        if timer is not None:
            timer.cancel()
        if channel is not None:
            self._release(channel)
        logger.info("change feed for %s disconnected", self.subscription.table)

    def _release(self, channel: Channel) -> None:
        try:
            self._transport.unsubscribe(channel)
        except Exception:  # noqa: BLE001 - teardown is best effort
            logger.exception("failed to release channel for %s", channel.table)

    # ------------------------------------------------------------------ dispatch
    def _dispatch(self, generation: int, payload: Any) -> None:
        with self._lock:
            if self._closed or generation != self._generation:
                logger.debug("dropping event from stale channel generation %d", generation)
                return
            table = self.subscription.table
            try:
                event = decode_change(payload)
            except ValueError as exc:
                logger.warning("malformed change payload on %s: %s", table, exc)
                self._metrics.inc_handler_error(table)
                self._report_error(HandlerError(str(exc)))
                return
            call = self.subscription.route(event)
            if call is None:
                return
            self._metrics.inc_event(table, event.kind)
            try:
                call()
            except Exception as exc:  # noqa: BLE001 - isolated per event
                logger.exception("error handling %s event on %s", event.kind, table)
                self._metrics.inc_handler_error(table)
                error = HandlerError(
                    f"{event.kind} handler for {table} failed: {exc}", kind=event.kind
                )
                error.__cause__ = exc
                self._report_error(error)

    def _report_error(self, error: Exception) -> None:
        on_error = self.subscription.on_error
        if on_error is None:
            return
        try:
            on_error(error)
        except Exception:  # noqa: BLE001 - error handler must not break dispatch
            logger.exception("error handler for %s raised", self.subscription.table)

    # ------------------------------------------------------------------ status
    def _on_transport_status(
        self,
        generation: int,
        status: TransportStatus,
        error: Optional[BaseException] = None,
    ) -> None:
        with self._lock:
            if self._closed or generation != self._generation:
                return
            table = self.subscription.table
            self._set_status(STATUS_TRANSITIONS[status])
            if status is TransportStatus.SUBSCRIBED:
                self._cancel_retry()
                self._retry_count = 0
                self._metrics.set_retry_count(table, 0)
                logger.info("change feed for %s subscribed", table)
            elif status is TransportStatus.CHANNEL_ERROR:
                self._metrics.inc_channel_error(table)
                logger.error("change feed channel error on %s: %s", table, error)
                self._report_error(
                    TransientChannelError(f"realtime channel error on {table}")
                )
                if not self._backoff.exhausted(self._retry_count):
                    self._schedule_retry(self._backoff.delay_for(self._retry_count))
                else:
                    self._give_up()
            elif status is TransportStatus.TIMED_OUT:
                self._metrics.inc_timeout(table)
                logger.error("change feed subscribe timed out on %s", table)
                self._report_error(
                    ChannelTimeout(f"realtime connection timed out on {table}")
                )
                if not self._backoff.exhausted(self._retry_count):
                    self._schedule_retry(self._timeout_delay)
                else:
                    self._give_up()

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is self._status:
            return
        self._status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception:  # noqa: BLE001
                logger.exception("status listener raised")

    def _give_up(self) -> None:
        self._metrics.inc_give_up(self.subscription.table)
        logger.warning(
            "change feed for %s giving up after %d retries (status=%s)",
            self.subscription.table,
            self._retry_count,
            self._status.value,
        )

    def _cancel_retry(self) -> None:
        timer, self._retry_timer = self._retry_timer, None
        if timer is not None:
            timer.cancel()
            logger.debug("cancelled pending retry for %s", self.subscription.table)

    def _schedule_retry(self, delay: float) -> None:
        if self._retry_timer is not None:
            logger.debug("retry already pending for %s", self.subscription.table)
            return
        generation = self._generation
        self._retry_seq += 1
        seq = self._retry_seq
        logger.info(
            "retrying change feed for %s in %.2fs (attempt %d)",
            self.subscription.table,
            delay,
            self._retry_count + 1,
        )
        self._retry_timer = self._scheduler.call_later(
            delay, lambda: self._retry(generation, seq)
        )

    def _retry(self, generation: int, seq: int) -> None:
        with self._lock:
            if self._closed or generation != self._generation:
                return
            # A timer cancelled after it started firing must not reconnect.
            if self._retry_timer is None or seq != self._retry_seq:
                return
            self._retry_timer = None
            channel, self._channel = self._channel, None
            self._retry_count += 1
            self._metrics.inc_reconnect(self.subscription.table)
            self._metrics.set_retry_count(self.subscription.table, self._retry_count)
            # Invalidate the old channel before releasing it so its final
            # statuses are ignored.
            self._generation += 1
        if channel is not None:
            self._release(channel)
        self.open()


class ChangeFeedClient:
    """Creates and tears down change-feed connections over a transport."""

    def __init__(
        self,
        transport: ChangeFeedTransport,
        *,
        scheduler: Optional[Scheduler] = None,
        backoff: Optional[ExponentialBackoff] = None,
        timeout_delay: float = 2.0,
        metrics: Optional[ChangeFeedMetrics] = None,
    ) -> None:
        if timeout_delay < 0:
            raise ValueError("timeout_delay must be >= 0")
        self._transport = transport
        self._scheduler = scheduler or ThreadingScheduler()
        self._backoff = backoff or ExponentialBackoff()
        self._timeout_delay = timeout_delay
        self._metrics = metrics if metrics is not None else default_metrics()

    @property
    def metrics(self) -> ChangeFeedMetrics:
        return self._metrics

    def connect(self, subscription: Subscription) -> Connection:
        subscription.validate()
        connection = Connection(
            subscription,
            transport=self._transport,
            scheduler=self._scheduler,
            backoff=self._backoff,
            timeout_delay=self._timeout_delay,
            metrics=self._metrics,
        )
        logger.info("connecting change feed for %s", subscription.table)
        connection.open()
        return connection

    def disconnect(self, connection: Connection) -> None:
        connection.close()


__all__ = [
    "ChangeFeedClient",
    "Connection",
    "ConnectionStatus",
    "STATUS_TRANSITIONS",
    "Subscription",
]
