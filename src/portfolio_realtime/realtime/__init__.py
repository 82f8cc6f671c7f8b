"""Realtime change-feed client, transports, and reconnect policy."""

from .backoff import BackoffExhausted, ExponentialBackoff
from .client import (
    STATUS_TRANSITIONS,
    ChangeFeedClient,
    Connection,
    ConnectionStatus,
    Subscription,
)
from .events import ChangeEvent, DeleteEvent, InsertEvent, UpdateEvent, decode_change
from .metrics import ChangeFeedMetrics, default_metrics
from .mqtt import MqttChangeFeedTransport, MqttChannel
from .postgres import NotifyChannel, PostgresNotifyTransport, install_change_trigger
from .scheduler import Scheduler, ThreadingScheduler
from .transport import ChangeFeedTransport, Channel, TransportStatus

__all__ = [
    "BackoffExhausted",
    "ChangeEvent",
    "ChangeFeedClient",
    "ChangeFeedMetrics",
    "ChangeFeedTransport",
    "Channel",
    "Connection",
    "ConnectionStatus",
    "DeleteEvent",
    "ExponentialBackoff",
    "InsertEvent",
    "MqttChangeFeedTransport",
    "MqttChannel",
    "NotifyChannel",
    "PostgresNotifyTransport",
    "STATUS_TRANSITIONS",
    "Scheduler",
    "Subscription",
    "ThreadingScheduler",
    "TransportStatus",
    "UpdateEvent",
    "decode_change",
    "default_metrics",
    "install_change_trigger",
]
