"""Change-feed transport over PostgreSQL ``LISTEN``/``NOTIFY``.

Row changes are published by a trigger (see :func:`install_change_trigger`)
on the ``<table>_changes`` notification channel as JSON documents of the form
``{"eventType": "INSERT", "table": ..., "new": {...}, "old": {"id": ...}}``.
"""

from __future__ import annotations

import logging
import select
from typing import Any, Callable, Dict, Optional

import psycopg2

from ..db import OperationalError, connect, sql
from .transport import RawEventHandler, ThreadedChannel, TransportStatus

logger = logging.getLogger(__name__)

TRIGGER_FUNCTION = "notify_row_change"


def notify_channel_name(table: str) -> str:
    return f"{table}_changes"


def _is_timeout(exc: BaseException) -> bool:
    return "timeout expired" in str(exc).lower()


class NotifyChannel(ThreadedChannel):
    """Listens on one notification channel using a dedicated connection."""

    thread_name = "pg-notify"

    def __init__(
        self,
        table: str,
        on_event: RawEventHandler,
        *,
        connect_fn: Callable[[], Any],
        poll_interval: float = 1.0,
    ) -> None:
        super().__init__(table, on_event)
        self.channel_name = notify_channel_name(table)
        self._connect_fn = connect_fn
        self._poll_interval = poll_interval

    def _run(self) -> None:
        try:
            conn = self._connect_fn()
        except OperationalError as exc:
            status = (
                TransportStatus.TIMED_OUT
                if _is_timeout(exc)
                else TransportStatus.CHANNEL_ERROR
            )
            self._report(status, exc)
            return
        try:
            with conn.cursor() as cur:
                cur.execute(
                    sql.SQL("LISTEN {}").format(sql.Identifier(self.channel_name))
                )
            if self.closed:
                return
            self._report(TransportStatus.SUBSCRIBED)
            while not self.closed:
                readable, _, _ = select.select([conn], [], [], self._poll_interval)
                if not readable:
                    continue
                conn.poll()
                while conn.notifies:
                    notify = conn.notifies.pop(0)
                    if self.closed:
                        break
                    self._on_event(notify.payload)
        except (psycopg2.Error, OSError) as exc:
            if not self.closed:
                self._report(TransportStatus.CHANNEL_ERROR, exc)
                return
        finally:
            try:
                conn.close()
            except psycopg2.Error:
                logger.debug("error closing listen connection", exc_info=True)
        self._report(TransportStatus.CLOSED)


class PostgresNotifyTransport:
    """Creates one ``LISTEN`` connection per subscribed table."""

    def __init__(
        self,
        connection_kwargs: Dict[str, Any],
        *,
        poll_interval: float = 1.0,
        connect_fn: Optional[Callable[..., Any]] = None,
    ) -> None:
        self._connection_kwargs = dict(connection_kwargs)
        self._poll_interval = poll_interval
        self._connect_fn = connect_fn or connect

    def subscribe(self, table: str, on_event: RawEventHandler) -> NotifyChannel:
        return NotifyChannel(
            table,
            on_event,
            connect_fn=lambda: self._connect_fn(**self._connection_kwargs),
            poll_interval=self._poll_interval,
        )

    def unsubscribe(self, channel: NotifyChannel) -> None:
        channel.close()


def install_change_trigger(conn: Any, table: str, *, schema: str = "public") -> None:
    """Create (or replace) the notify trigger publishing ``table`` changes.

    NOTIFY payloads are capped at 8000 bytes, so tables streamed this way must
    keep rows small.
    """

    function = sql.Identifier(schema, TRIGGER_FUNCTION)
    trigger = sql.Identifier(f"{table}_notify_change")
    target = sql.Identifier(schema, table)
    statements = [
        sql.SQL(
            """
            CREATE OR REPLACE FUNCTION {function}() RETURNS trigger
            LANGUAGE plpgsql AS $fn$
            BEGIN
                PERFORM pg_notify(
                    TG_TABLE_NAME || '_changes',
                    json_build_object(
                        'eventType', TG_OP,
                        'table', TG_TABLE_NAME,
                        'new', CASE WHEN TG_OP = 'DELETE' THEN NULL ELSE row_to_json(NEW) END,
                        'old', CASE WHEN TG_OP = 'INSERT' THEN NULL
                                    ELSE json_build_object('id', OLD.id) END
                    )::text
                );
                RETURN NULL;
            END;
            $fn$
            """
        ).format(function=function),
        sql.SQL("DROP TRIGGER IF EXISTS {trigger} ON {target}").format(
            trigger=trigger, target=target
        ),
        sql.SQL(
            """
            CREATE TRIGGER {trigger}
            AFTER INSERT OR UPDATE OR DELETE ON {target}
            FOR EACH ROW EXECUTE FUNCTION {function}()
            """
        ).format(trigger=trigger, target=target, function=function),
    ]
    with conn.cursor() as cur:
        for statement in statements:
            cur.execute(statement)
    logger.info("installed change trigger on %s.%s", schema, table)


__all__ = [
    "NotifyChannel",
    "PostgresNotifyTransport",
    "TRIGGER_FUNCTION",
    "install_change_trigger",
    "notify_channel_name",
]
