"""Keeps the newest-first guestbook list in sync with the change feed.

Known limitations:

* update events are not subscribed; edits only show after :meth:`reload`.
* inserts are not de-duplicated against the initial fetch, so an insert that
  races the initial load can appear twice.
* enrichment reads run concurrently, so prepend order follows completion
  order rather than event order; a failed enrichment drops the event.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from ..data import DataApi, eq
from ..errors import EnrichmentFetchError
from ..realtime import ChangeFeedClient, Connection, ConnectionStatus, Subscription
from .models import GuestbookMessage

logger = logging.getLogger(__name__)

PROFILE_COLUMNS = "email,avatar_url,display_name,role"


def message_columns(profiles_alias: str = "profiles") -> str:
    """PostgREST select joining each message with its author's profile."""
    return f"*,{profiles_alias}:user_id({PROFILE_COLUMNS})"


class GuestbookReconciler:
    """Owns the display list and the guestbook change-feed connection."""

    def __init__(
        self,
        data: DataApi,
        client: ChangeFeedClient,
        *,
        table: str = "guestbook",
        executor: Optional[Executor] = None,
        max_workers: int = 4,
        on_change: Optional[Callable[[List[GuestbookMessage]], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        self._data = data
        self._client = client
        self.table = table
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="guestbook-enrich"
        )
        self._on_change = on_change
        self._on_error = on_error
        self._lock = threading.Lock()
        self._messages: List[GuestbookMessage] = []
        self._alive = True
        self._connection: Optional[Connection] = None
        self.load_error: Optional[Exception] = None

    @property
    def messages(self) -> List[GuestbookMessage]:
        with self._lock:
            return list(self._messages)

    @property
    def connection(self) -> Optional[Connection]:
        return self._connection

    @property
    def status(self) -> Optional[ConnectionStatus]:
        if self._connection is None:
            return None
        return self._connection.status

    @property
    def alive(self) -> bool:
        return self._alive

    # ------------------------------------------------------------------ lifecycle
    def load_initial(self) -> bool:
        """Replace the list with a full fetch, newest first."""
        result = self._data.select(
            self.table, message_columns(), order="created_at.desc"
        )
        if result.error is not None:
            self.load_error = result.error
            logger.error("failed to load guestbook messages: %s", result.error)
            return False
        rows = result.data or []
        loaded = [GuestbookMessage.from_row(row) for row in rows]
        with self._lock:
            if not self._alive:
                return False
            self._messages = loaded
            self.load_error = None
            snapshot = list(self._messages)
        logger.info("loaded %d guestbook messages", len(loaded))
        self._notify(snapshot)
        return True

    def reload(self) -> bool:
        return self.load_initial()

    def subscription(
        self, *, on_status: Optional[Callable[[ConnectionStatus], None]] = None
    ) -> Subscription:
        return Subscription(
            table=self.table,
            on_insert=self.on_insert,
            on_delete=self.on_delete,
            on_error=self._on_error,
            on_status=on_status,
        )

    def start(
        self,
        *,
        load: bool = True,
        on_status: Optional[Callable[[ConnectionStatus], None]] = None,
    ) -> Connection:
        """Load the initial list (unless already loaded), then subscribe."""
        if self._connection is not None:
            raise RuntimeError("reconciler already started")
        if load:
            self.load_initial()
        self._connection = self._client.connect(self.subscription(on_status=on_status))
        return self._connection

    def stop(self) -> None:
        with self._lock:
            if not self._alive:
                return
            self._alive = False
        if self._connection is not None:
            self._client.disconnect(self._connection)
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------ handlers
    def on_insert(self, record: Dict[str, Any]) -> None:
        if not self._alive:
            return
        message_id = record.get("id")
        if message_id is None:
            logger.warning("guestbook insert without id ignored: %s", record)
            return
        self._executor.submit(self._enrich_and_prepend, str(message_id))

    def on_delete(self, record_id: str) -> None:
        with self._lock:
            if not self._alive:
                return
            remaining = [msg for msg in self._messages if msg.id != record_id]
            if len(remaining) == len(self._messages):
                logger.debug("delete for unknown guestbook message %s", record_id)
                return
            self._messages = remaining
            snapshot = list(remaining)
        self._notify(snapshot)

    def _enrich_and_prepend(self, message_id: str) -> None:
        # Runs on the executor; nothing reads the returned future.
        try:
            message = self._fetch_message(message_id)
        except Exception as exc:  # noqa: BLE001 - reported through on_error
            logger.exception("enrichment of guestbook message %s failed", message_id)
            error = EnrichmentFetchError(
                f"could not load guestbook message {message_id}: {exc}"
            )
            error.__cause__ = exc
            self._report(error)
            return
        if message is None:
            return
        with self._lock:
            if not self._alive:
                logger.debug("reconciler stopped; discarding message %s", message_id)
                return
            self._messages.insert(0, message)
            snapshot = list(self._messages)
        self._notify(snapshot)

    def _fetch_message(self, message_id: str) -> Optional[GuestbookMessage]:
        result = self._data.select(
            self.table,
            message_columns(),
            filters={"id": eq(message_id)},
            single=True,
        )
        if result.error is not None or not result.data:
            error = EnrichmentFetchError(
                f"could not load guestbook message {message_id}: "
                f"{result.error or 'no row returned'}"
            )
            logger.warning("dropping guestbook insert: %s", error)
            self._report(error)
            return None
        return GuestbookMessage.from_row(result.data)

    def _notify(self, snapshot: List[GuestbookMessage]) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(snapshot)
        except Exception:  # noqa: BLE001 - listeners must not break reconciliation
            logger.exception("guestbook change listener raised")

    def _report(self, error: Exception) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:  # noqa: BLE001
            logger.exception("guestbook error handler raised")


__all__ = ["GuestbookReconciler", "PROFILE_COLUMNS", "message_columns"]
