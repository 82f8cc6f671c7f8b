from __future__ import annotations

from typing import List

import pytest

from portfolio_realtime import service
from portfolio_realtime.errors import DataAccessError, ValidationError
from portfolio_realtime.realtime import (
    ConnectionStatus,
    MqttChangeFeedTransport,
    PostgresNotifyTransport,
    Subscription,
    TransportStatus,
)


def _row(message_id: str) -> dict:
    return {"id": message_id, "content": "hello", "profiles": {"display_name": "Ada"}}


@pytest.fixture
def runtime_factory(make_settings, transport, scheduler, metrics, immediate_executor):
    def _factory(data, sleeps: List[float], **overrides):
        return service.GuestbookRuntime(
            make_settings(**overrides),
            data=data,
            transport=transport,
            scheduler=scheduler,
            metrics=metrics,
            executor=immediate_executor,
            sleep=sleeps.append,
        )

    return _factory


@pytest.mark.unit
def test_runtime_loads_then_follows_changes(runtime_factory, data_api_factory, transport):
    data = data_api_factory(rows=[_row("m0")], lookups={"m1": _row("m1")})
    sleeps: List[float] = []
    runtime = runtime_factory(data, sleeps)

    runtime.start()
    transport.latest.report(TransportStatus.SUBSCRIBED)
    transport.latest.emit({"eventType": "INSERT", "new": {"id": "m1"}})

    assert [m.id for m in runtime.reconciler.messages] == ["m1", "m0"]
    assert runtime.status_history == [ConnectionStatus.CONNECTED]
    assert sleeps == []

    runtime.stop()
    assert data.closed
    assert runtime.reconciler.connection.closed


@pytest.mark.unit
def test_runtime_retries_initial_load(runtime_factory, data_api_factory):
    data = data_api_factory(
        rows=[_row("m0")], list_errors=[DataAccessError("connection error: refused")]
    )
    sleeps: List[float] = []
    runtime = runtime_factory(data, sleeps)

    runtime.start()

    assert sleeps == [1.0]
    assert [m.id for m in runtime.reconciler.messages] == ["m0"]
    runtime.stop()


@pytest.mark.unit
def test_runtime_subscribes_even_when_initial_load_fails(
    runtime_factory, data_api_factory, transport, caplog
):
    data = data_api_factory(
        list_errors=[DataAccessError("connection error: refused") for _ in range(3)]
    )
    sleeps: List[float] = []
    runtime = runtime_factory(data, sleeps)

    runtime.start()

    assert sleeps == [1.0, 2.0]
    assert runtime.reconciler.messages == []
    assert len(transport.channels) == 1
    assert "initial guestbook load failed" in caplog.text
    runtime.stop()


@pytest.mark.unit
def test_build_transport_selects_backend(make_settings):
    assert isinstance(service.build_transport(make_settings()), PostgresNotifyTransport)
    assert isinstance(
        service.build_transport(make_settings(realtime_transport="mqtt")),
        MqttChangeFeedTransport,
    )


@pytest.mark.unit
def test_build_change_feed_client_uses_configured_backoff(
    make_settings, transport, scheduler, metrics
):
    settings = make_settings(realtime_max_retries=2, realtime_base_delay_seconds=0.5)
    client = service.build_change_feed_client(
        settings, transport=transport, scheduler=scheduler, metrics=metrics
    )
    connection = client.connect(Subscription(table="guestbook", on_delete=lambda rid: None))

    delays = []
    for _ in range(2):
        transport.latest.report(TransportStatus.CHANNEL_ERROR)
        delays.append(scheduler.pending[0].delay)
        scheduler.advance(delays[-1])
    transport.latest.report(TransportStatus.CHANNEL_ERROR)

    assert client.metrics is metrics
    assert delays == [0.5, 1.0]
    assert connection.retry_count == 2
    assert scheduler.pending == []


class StubService:
    posted: List[tuple] = []
    deleted: List[str] = []

    def __init__(self, data, *, table="guestbook"):
        self.table = table

    def post_message(self, user_id, content):
        if not content.strip():
            raise ValidationError("Message cannot be only whitespace")
        StubService.posted.append((user_id, content))
        return {"id": "m42"}

    def delete_message(self, message_id):
        if message_id == "forbidden":
            raise DataAccessError("permission denied for table guestbook")
        StubService.deleted.append(message_id)


@pytest.fixture
def cli(monkeypatch, make_settings, data_api_factory):
    StubService.posted = []
    StubService.deleted = []
    data = data_api_factory()
    monkeypatch.setattr(service, "load_settings", lambda: make_settings())
    monkeypatch.setattr(service, "build_data_client", lambda settings: data)
    monkeypatch.setattr(service, "GuestbookService", StubService)
    return data


@pytest.mark.unit
def test_main_post_prints_new_message_id(cli, capsys):
    exit_code = service.main(["post", "--user-id", "u1", "--content", "hello"])

    assert exit_code == 0
    assert StubService.posted == [("u1", "hello")]
    assert "Posted message m42" in capsys.readouterr().out
    assert cli.closed


@pytest.mark.unit
def test_main_post_reports_validation_error(cli, capsys):
    exit_code = service.main(["post", "--user-id", "u1", "--content", "   "])

    assert exit_code == 1
    assert "error: Message cannot be only whitespace" in capsys.readouterr().err


@pytest.mark.unit
def test_main_delete(cli, capsys):
    assert service.main(["delete", "--id", "m1"]) == 0
    assert StubService.deleted == ["m1"]
    assert "Deleted message m1" in capsys.readouterr().out


@pytest.mark.unit
def test_main_delete_reports_api_error(cli, capsys):
    assert service.main(["delete", "--id", "forbidden"]) == 1
    assert "permission denied" in capsys.readouterr().err


@pytest.mark.unit
def test_main_install_trigger_uses_configured_table(monkeypatch, make_settings):
    installed = []

    class FakeConn:
        closed = False

        def close(self):
            FakeConn.closed = True

    monkeypatch.setattr(service, "load_settings", lambda: make_settings(db_schema="app"))
    monkeypatch.setattr(service, "connect", lambda **kwargs: FakeConn())
    monkeypatch.setattr(
        service,
        "install_change_trigger",
        lambda conn, table, schema: installed.append((table, schema)),
    )

    assert service.main(["install-trigger"]) == 0
    assert installed == [("guestbook", "app")]
    assert FakeConn.closed
