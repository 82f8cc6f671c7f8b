"""Prometheus metrics for change-feed connections."""

from __future__ import annotations

import threading
from typing import Dict, Optional, Tuple

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge


class ChangeFeedMetrics:
    """Counters and gauges describing change-feed activity, labelled by table."""

    def __init__(
        self,
        namespace: str = "portfolio_realtime",
        *,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        self._registry = registry if registry is not None else REGISTRY
        self._prefix = f"{namespace}_change_feed"
        self._events = Counter(
            f"{self._prefix}_events",
            "Change events dispatched to handlers",
            ["table", "kind"],
            registry=self._registry,
        )
        self._handler_errors = Counter(
            f"{self._prefix}_handler_errors",
            "Change events whose handler raised or whose payload was malformed",
            ["table"],
            registry=self._registry,
        )
        self._channel_errors = Counter(
            f"{self._prefix}_channel_errors",
            "Channel errors reported by the transport",
            ["table"],
            registry=self._registry,
        )
        self._timeouts = Counter(
            f"{self._prefix}_timeouts",
            "Channel subscribe timeouts reported by the transport",
            ["table"],
            registry=self._registry,
        )
        self._reconnects = Counter(
            f"{self._prefix}_reconnects",
            "Reconnect attempts executed",
            ["table"],
            registry=self._registry,
        )
        self._give_ups = Counter(
            f"{self._prefix}_give_ups",
            "Failures left unretried because the retry bound was reached",
            ["table"],
            registry=self._registry,
        )
        self._retry_count = Gauge(
            f"{self._prefix}_retry_count",
            "Current consecutive retry count",
            ["table"],
            registry=self._registry,
        )

    def inc_event(self, table: str, kind: str) -> None:
        self._events.labels(table=table, kind=kind).inc()

    def inc_handler_error(self, table: str) -> None:
        self._handler_errors.labels(table=table).inc()

    def inc_channel_error(self, table: str) -> None:
        self._channel_errors.labels(table=table).inc()

    def inc_timeout(self, table: str) -> None:
        self._timeouts.labels(table=table).inc()

    def inc_reconnect(self, table: str) -> None:
        self._reconnects.labels(table=table).inc()

    def inc_give_up(self, table: str) -> None:
        self._give_ups.labels(table=table).inc()

    def set_retry_count(self, table: str, value: int) -> None:
        self._retry_count.labels(table=table).set(value)

    def snapshot(self, table: str) -> Dict[str, float]:
        """Return current values for ``table`` keyed by short metric name."""

        def _sample(name: str, **labels: str) -> float:
            value = self._registry.get_sample_value(
                f"{self._prefix}_{name}", {"table": table, **labels}
            )
            return value or 0.0

        return {
            "insert_total": _sample("events_total", kind="insert"),
            "update_total": _sample("events_total", kind="update"),
            "delete_total": _sample("events_total", kind="delete"),
            "handler_errors_total": _sample("handler_errors_total"),
            "channel_errors_total": _sample("channel_errors_total"),
            "timeouts_total": _sample("timeouts_total"),
            "reconnects_total": _sample("reconnects_total"),
            "give_ups_total": _sample("give_ups_total"),
            "retry_count": _sample("retry_count"),
        }


_DEFAULTS: Dict[Tuple[int, str], ChangeFeedMetrics] = {}
_DEFAULTS_LOCK = threading.Lock()


def default_metrics(
    namespace: str = "portfolio_realtime",
    *,
    registry: Optional[CollectorRegistry] = None,
) -> ChangeFeedMetrics:
    """Return the process-wide metrics object for ``registry`` and ``namespace``.

    Collectors can only be registered once per registry, so clients built
    without explicit metrics share one instance.
    """
    target = registry if registry is not None else REGISTRY
    key = (id(target), namespace)
    with _DEFAULTS_LOCK:
        metrics = _DEFAULTS.get(key)
        if metrics is None:
            metrics = ChangeFeedMetrics(namespace, registry=target)
            _DEFAULTS[key] = metrics
        return metrics


__all__ = ["ChangeFeedMetrics", "default_metrics"]
