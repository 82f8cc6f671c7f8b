"""Test session configuration and shared fakes.

The session fixture loads the project `.env` once so integration tests can read
`PG*` settings without exporting them in the shell.  The fakes below stand in
for the change-feed transport, the retry scheduler, the data API and the
enrichment executor so unit tests run deterministically on one thread.
"""

from __future__ import annotations

from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
from dotenv import load_dotenv
from prometheus_client import CollectorRegistry

from portfolio_realtime.config import Settings
from portfolio_realtime.data import QueryResult
from portfolio_realtime.errors import DataAccessError
from portfolio_realtime.realtime import ChangeFeedMetrics

PROJECT_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    # Load once per test session; no error if .env is absent.
    load_dotenv(PROJECT_ROOT / ".env")


# ---------------------------------------------------------------------------
# Transport and scheduler fakes


class FakeChannel:
    def __init__(self, table: str, on_event: Callable[[Any], None]) -> None:
        self.table = table
        self.on_event = on_event
        self.status_handler = None
        self.released = False

    def on_status(self, handler) -> None:
        self.status_handler = handler

    def emit(self, payload: Any) -> None:
        self.on_event(payload)

    def report(self, status, error: Optional[BaseException] = None) -> None:
        self.status_handler(status, error)


class FakeTransport:
    def __init__(self) -> None:
        self.channels: List[FakeChannel] = []
        self.unsubscribed: List[FakeChannel] = []
        self.fail_next_subscribe: Optional[Exception] = None

    def subscribe(self, table: str, on_event) -> FakeChannel:
        if self.fail_next_subscribe is not None:
            error, self.fail_next_subscribe = self.fail_next_subscribe, None
            raise error
        channel = FakeChannel(table, on_event)
        self.channels.append(channel)
        return channel

    def unsubscribe(self, channel: FakeChannel) -> None:
        channel.released = True
        self.unsubscribed.append(channel)

    @property
    def latest(self) -> FakeChannel:
        return self.channels[-1]

    @property
    def active(self) -> List[FakeChannel]:
        return [channel for channel in self.channels if not channel.released]


class ManualTimer:
    def __init__(self, when: float, delay: float, callback: Callable[[], None]) -> None:
        self.when = when
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler driven by :meth:`advance` instead of wall-clock time."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: List[ManualTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + delay, delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.when <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.now = timer.when
            timer.fired = True
            timer.callback()
        self.now = target


# ---------------------------------------------------------------------------
# Data API and executor fakes


class FakeDataApi:
    """In-memory stand-in for the REST data client."""

    def __init__(
        self,
        rows: Optional[List[Dict[str, Any]]] = None,
        lookups: Optional[Dict[str, Any]] = None,
        list_errors: Optional[List[DataAccessError]] = None,
    ) -> None:
        self.rows = rows or []
        self.lookups = lookups or {}
        self.list_errors = list(list_errors or [])
        self.calls: List[Dict[str, Any]] = []
        self.inserted: List[Dict[str, Any]] = []
        self.deleted: List[Dict[str, str]] = []
        self.insert_error: Optional[DataAccessError] = None
        self.delete_error: Optional[DataAccessError] = None
        self.closed = False

    def select(self, table, columns="*", *, filters=None, order=None, single=False):
        self.calls.append(
            {
                "op": "select",
                "table": table,
                "columns": columns,
                "filters": dict(filters or {}),
                "order": order,
                "single": single,
            }
        )
        if single:
            message_id = (filters or {}).get("id", "").removeprefix("eq.")
            row = self.lookups.get(message_id)
            if isinstance(row, DataAccessError):
                return QueryResult(error=row)
            if isinstance(row, Exception):
                raise row
            if row is None:
                return QueryResult(
                    error=DataAccessError(
                        "JSON object requested, multiple (or no) rows returned",
                        code="PGRST116",
                    )
                )
            return QueryResult(data=row)
        if self.list_errors:
            return QueryResult(error=self.list_errors.pop(0))
        return QueryResult(data=list(self.rows))

    def insert(self, table, row):
        self.calls.append({"op": "insert", "table": table})
        if self.insert_error is not None:
            return QueryResult(error=self.insert_error)
        stored = {"id": f"msg-{len(self.inserted) + 1}", **row}
        self.inserted.append(stored)
        return QueryResult(data=[stored])

    def delete(self, table, *, filters):
        self.calls.append({"op": "delete", "table": table})
        if self.delete_error is not None:
            return QueryResult(error=self.delete_error)
        self.deleted.append(dict(filters))
        return QueryResult(data=None)

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "FakeDataApi":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ImmediateExecutor:
    def submit(self, fn, *args, **kwargs) -> Future:
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:  # noqa: BLE001
            future.set_exception(exc)
        return future

    def shutdown(self, wait: bool = True) -> None:
        return None


class DeferredExecutor:
    """Queues submitted work until a test runs it explicitly."""

    def __init__(self) -> None:
        self.queued: List[Callable[[], Any]] = []

    def submit(self, fn, *args, **kwargs) -> Future:
        self.queued.append(lambda: fn(*args, **kwargs))
        return Future()

    def run(self, index: int) -> None:
        self.queued.pop(index)()

    def shutdown(self, wait: bool = True) -> None:
        return None


# ---------------------------------------------------------------------------
# Fixtures


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def metrics() -> ChangeFeedMetrics:
    return ChangeFeedMetrics(namespace="test", registry=CollectorRegistry())


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    def _factory(**overrides: Any) -> Settings:
        base: Dict[str, Any] = {
            "api_url": "https://portfolio.example",
            "api_key": "anon-key",
            "access_token": "",
            "request_timeout_seconds": 5.0,
            "realtime_transport": "postgres",
            "db_host": "localhost",
            "db_port": 5432,
            "db_name": "postgres",
            "db_user": "postgres",
            "db_password": "pass",
            "db_schema": "public",
            "db_connect_timeout_seconds": 5,
            "mqtt_host": "broker",
            "mqtt_port": 1883,
            "mqtt_username": "",
            "mqtt_password": "",
            "mqtt_client_id": "client",
            "mqtt_topic_prefix": "portfolio/changes",
            "mqtt_use_tls": False,
            "mqtt_tls_insecure": False,
        }
        base.update(overrides)
        return Settings(**base)

    return _factory


@pytest.fixture
def data_api_factory() -> Callable[..., FakeDataApi]:
    return FakeDataApi


@pytest.fixture
def immediate_executor() -> ImmediateExecutor:
    return ImmediateExecutor()


@pytest.fixture
def deferred_executor() -> DeferredExecutor:
    return DeferredExecutor()
