"""psycopg2 connection helpers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict

import psycopg2
from psycopg2 import Error, OperationalError, sql
from psycopg2.extras import RealDictCursor

if TYPE_CHECKING:  # pragma: no cover - import-time helper only
    from portfolio_realtime.config import Settings


def connection_kwargs_from_settings(settings: "Settings") -> Dict[str, Any]:
    """Return psycopg2 ``connect`` keyword arguments for the configured database."""

    return {
        "host": settings.db_host,
        "port": settings.db_port,
        "dbname": settings.db_name,
        "user": settings.db_user,
        "password": settings.db_password,
        "connect_timeout": settings.db_connect_timeout_seconds,
        "options": f"-c search_path={settings.db_schema},public",
    }


def connect(**kwargs: Any) -> "psycopg2.extensions.connection":
    """Open an autocommit psycopg2 connection returning dict rows."""

    kwargs.setdefault("cursor_factory", RealDictCursor)
    conn = psycopg2.connect(**kwargs)
    conn.autocommit = True
    return conn


__all__ = [
    "Error",
    "OperationalError",
    "connect",
    "connection_kwargs_from_settings",
    "sql",
]
