"""Runtime wiring the data API, change-feed transport and guestbook reconciler."""

from __future__ import annotations

import argparse
import logging
import sys
import threading
import time
from concurrent.futures import Executor
from typing import Callable, List, Optional

from prometheus_client import start_http_server

from .config import Settings, load_settings
from .data import DataApi, RestDataClient
from .db import connect, connection_kwargs_from_settings
from .errors import AuthRequiredError, DataAccessError, ValidationError, retry_with_backoff
from .guestbook import GuestbookMessage, GuestbookReconciler, GuestbookService
from .realtime import (
    ChangeFeedClient,
    ChangeFeedMetrics,
    ChangeFeedTransport,
    ConnectionStatus,
    ExponentialBackoff,
    MqttChangeFeedTransport,
    PostgresNotifyTransport,
    Scheduler,
    install_change_trigger,
)

logger = logging.getLogger(__name__)


def build_data_client(settings: Settings) -> RestDataClient:
    return RestDataClient(
        settings.api_url,
        api_key=settings.api_key,
        access_token=settings.access_token,
        timeout_seconds=settings.request_timeout_seconds,
    )


def build_transport(settings: Settings) -> ChangeFeedTransport:
    """Construct the change-feed transport selected by REALTIME_TRANSPORT."""
    if settings.realtime_transport == "mqtt":
        return MqttChangeFeedTransport(
            host=settings.mqtt_host,
            port=settings.mqtt_port,
            username=settings.mqtt_username,
            password=settings.mqtt_password,
            client_id=settings.mqtt_client_id,
            topic_prefix=settings.mqtt_topic_prefix,
            use_tls=settings.mqtt_use_tls,
            tls_insecure=settings.mqtt_tls_insecure,
            subscribe_timeout=settings.realtime_subscribe_timeout_seconds,
        )
    return PostgresNotifyTransport(connection_kwargs_from_settings(settings))


def build_change_feed_client(
    settings: Settings,
    *,
    transport: Optional[ChangeFeedTransport] = None,
    scheduler: Optional[Scheduler] = None,
    metrics: Optional[ChangeFeedMetrics] = None,
) -> ChangeFeedClient:
    backoff = ExponentialBackoff(
        base_interval=settings.realtime_base_delay_seconds,
        multiplier=2.0,
        max_interval=settings.realtime_max_delay_seconds,
        max_attempts=settings.realtime_max_retries,
    )
    return ChangeFeedClient(
        transport or build_transport(settings),
        scheduler=scheduler,
        backoff=backoff,
        timeout_delay=settings.realtime_timeout_delay_seconds,
        metrics=metrics,
    )


class GuestbookRuntime:
    """Keeps a live guestbook list and logs its changes until stopped."""

    def __init__(
        self,
        settings: Settings,
        *,
        data: Optional[DataApi] = None,
        transport: Optional[ChangeFeedTransport] = None,
        scheduler: Optional[Scheduler] = None,
        metrics: Optional[ChangeFeedMetrics] = None,
        executor: Optional[Executor] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings
        self._sleep = sleep
        self._stop_event = threading.Event()
        self._data = data if data is not None else build_data_client(settings)
        self.client = build_change_feed_client(
            settings, transport=transport, scheduler=scheduler, metrics=metrics
        )
        self.reconciler = GuestbookReconciler(
            self._data,
            self.client,
            table=settings.guestbook_table,
            executor=executor,
            max_workers=settings.enrichment_workers,
            on_change=self._handle_change,
            on_error=self._handle_error,
        )
        self.status_history: List[ConnectionStatus] = []

    def start(self) -> None:
        try:
            retry_with_backoff(
                self._load_messages,
                max_retries=self.settings.initial_load_attempts,
                initial_delay=self.settings.realtime_base_delay_seconds,
                sleep=self._sleep,
            )
        except DataAccessError as exc:
            logger.error("initial guestbook load failed; continuing live only: %s", exc)
        self.reconciler.start(load=False, on_status=self._handle_status)

    def run(self) -> None:
        if self.settings.metrics_port > 0:
            start_http_server(self.settings.metrics_port)
            logger.info("metrics exposed on port %d", self.settings.metrics_port)
        self.start()
        try:
            while not self._stop_event.wait(timeout=1.0):
                pass
        except KeyboardInterrupt:
            logger.info("shutdown requested (KeyboardInterrupt)")
        finally:
            self.stop()

    def stop(self) -> None:
        self._stop_event.set()
        self.reconciler.stop()
        close = getattr(self._data, "close", None)
        if close is not None:
            close()

    def _load_messages(self) -> None:
        if not self.reconciler.load_initial():
            raise self.reconciler.load_error or DataAccessError("guestbook load failed")

    def _handle_change(self, messages: List[GuestbookMessage]) -> None:
        latest = messages[0] if messages else None
        if latest is None:
            logger.info("guestbook is empty")
            return
        logger.info(
            "guestbook has %d messages; newest from %s: %s",
            len(messages),
            latest.author_name,
            latest.content,
        )

    def _handle_status(self, status: ConnectionStatus) -> None:
        self.status_history.append(status)
        logger.info("guestbook change feed status: %s", status.value)

    def _handle_error(self, error: Exception) -> None:
        logger.warning("guestbook realtime error: %s", error)


# ---------------------------------------------------------------------------
# Command line


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Portfolio guestbook realtime tools")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("watch", help="Follow the guestbook live (default)")

    post_parser = subparsers.add_parser("post", help="Post a guestbook message")
    post_parser.add_argument("--user-id", required=True, help="Author user id")
    post_parser.add_argument("--content", required=True, help="Message text")

    delete_parser = subparsers.add_parser("delete", help="Delete a guestbook message")
    delete_parser.add_argument("--id", required=True, dest="message_id")

    trigger_parser = subparsers.add_parser(
        "install-trigger", help="Install the LISTEN/NOTIFY change trigger"
    )
    trigger_parser.add_argument(
        "--table", default=None, help="Table to publish (defaults to GUESTBOOK_TABLE)"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Entrypoint used by both python -m and the console script hook."""
    args = _build_parser().parse_args(argv)
    settings = load_settings()
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=getattr(logging, settings.log_level, logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        )
    command = args.command or "watch"

    if command == "install-trigger":
        conn = connect(**connection_kwargs_from_settings(settings))
        try:
            install_change_trigger(
                conn, args.table or settings.guestbook_table, schema=settings.db_schema
            )
        finally:
            conn.close()
        return 0

    if command in {"post", "delete"}:
        with build_data_client(settings) as data:
            service = GuestbookService(data, table=settings.guestbook_table)
            try:
                if command == "post":
                    row = service.post_message(args.user_id, args.content)
                    print(f"Posted message {row.get('id', '<unknown>')}")
                else:
                    service.delete_message(args.message_id)
                    print(f"Deleted message {args.message_id}")
            except (ValidationError, AuthRequiredError, DataAccessError) as exc:
                print(f"error: {exc}", file=sys.stderr)
                return 1
        return 0

    GuestbookRuntime(settings).run()
    return 0
