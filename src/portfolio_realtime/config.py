"""Runtime configuration helpers for the portfolio realtime service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

_TRANSPORTS = {"postgres", "mqtt"}


@dataclass(frozen=True)
class Settings:
    """Immutable container for service configuration."""

    api_url: str
    api_key: str
    access_token: str
    request_timeout_seconds: float
    realtime_transport: str
    db_host: str
    db_port: int
    db_name: str
    db_user: str
    db_password: str
    db_schema: str
    db_connect_timeout_seconds: int
    mqtt_host: str
    mqtt_port: int
    mqtt_username: str
    mqtt_password: str
    mqtt_client_id: str
    mqtt_topic_prefix: str
    mqtt_use_tls: bool
    mqtt_tls_insecure: bool
    realtime_max_retries: int = 5
    realtime_base_delay_seconds: float = 1.0
    realtime_max_delay_seconds: float = 30.0
    realtime_timeout_delay_seconds: float = 2.0
    realtime_subscribe_timeout_seconds: float = 10.0
    guestbook_table: str = "guestbook"
    enrichment_workers: int = 4
    initial_load_attempts: int = 3
    metrics_port: int = 0
    log_level: str = "INFO"


def _as_bool(value: Optional[str], default: bool) -> bool:
    """Convert environment strings to booleans."""
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no"}


def _coerce_transport(value: Optional[str]) -> str:
    """Translate REALTIME_TRANSPORT to a supported backend."""
    if value is None:
        return "postgres"
    normalized = value.strip().lower()
    if normalized in _TRANSPORTS:
        return normalized
    return "postgres"


def _non_empty(value: Optional[str], default: str) -> str:
    if value is None or not value.strip():
        return default
    return value.strip()


def load_settings() -> Settings:
    """Load configuration from the environment (and `.env`)."""
    load_dotenv()
    api_url = os.getenv("PORTFOLIO_API_URL", "").strip()
    if api_url.endswith("/"):
        api_url = api_url.rstrip("/")
    api_key = os.getenv("PORTFOLIO_API_KEY", "").strip()
    access_token = os.getenv("PORTFOLIO_ACCESS_TOKEN", "").strip()
    request_timeout_seconds = float(
        os.getenv("PORTFOLIO_REQUEST_TIMEOUT_SECONDS", "10.0")
    )

    realtime_transport = _coerce_transport(os.getenv("REALTIME_TRANSPORT"))

    db_host = os.getenv("PGHOST", "localhost")
    db_port = int(os.getenv("PGPORT", "5432"))
    db_name = os.getenv("PGDATABASE", "postgres")
    db_user = os.getenv("PGUSER", "postgres")
    db_password = os.getenv("PGPASSWORD", "")
    db_schema = os.getenv("PGSCHEMA", "public")
    db_connect_timeout_seconds = int(os.getenv("PG_CONNECT_TIMEOUT_SECONDS", "5"))

    mqtt_host = os.getenv("MQTT_HOST", "")
    mqtt_port = int(os.getenv("MQTT_PORT", "1883"))
    mqtt_username = os.getenv("MQTT_USER", "")
    mqtt_password = os.getenv("MQTT_PASSWORD", "")
    mqtt_client_id = os.getenv("MQTT_CLIENT_ID", "portfolio_realtime")
    mqtt_topic_prefix = os.getenv("MQTT_TOPIC_PREFIX", "portfolio/changes").rstrip("/")
    mqtt_use_tls = _as_bool(os.getenv("MQTT_USE_TLS"), False)
    mqtt_tls_insecure = _as_bool(os.getenv("MQTT_TLS_INSECURE"), False)

    realtime_max_retries = int(os.getenv("REALTIME_MAX_RETRIES", "5"))
    realtime_base_delay_seconds = float(
        os.getenv("REALTIME_BASE_DELAY_SECONDS", "1.0")
    )
    realtime_max_delay_seconds = float(os.getenv("REALTIME_MAX_DELAY_SECONDS", "30.0"))
    realtime_timeout_delay_seconds = float(
        os.getenv("REALTIME_TIMEOUT_DELAY_SECONDS", "2.0")
    )
    realtime_subscribe_timeout_seconds = float(
        os.getenv("REALTIME_SUBSCRIBE_TIMEOUT_SECONDS", "10.0")
    )

    guestbook_table = _non_empty(os.getenv("GUESTBOOK_TABLE"), "guestbook")
    enrichment_workers = max(1, int(os.getenv("ENRICHMENT_WORKERS", "4")))
    initial_load_attempts = max(1, int(os.getenv("INITIAL_LOAD_ATTEMPTS", "3")))
    metrics_port = int(os.getenv("METRICS_PORT", "0"))
    log_level = _non_empty(os.getenv("LOG_LEVEL"), "INFO").upper()

    return Settings(
        api_url=api_url,
        api_key=api_key,
        access_token=access_token,
        request_timeout_seconds=request_timeout_seconds,
        realtime_transport=realtime_transport,
        db_host=db_host,
        db_port=db_port,
        db_name=db_name,
        db_user=db_user,
        db_password=db_password,
        db_schema=db_schema,
        db_connect_timeout_seconds=db_connect_timeout_seconds,
        mqtt_host=mqtt_host,
        mqtt_port=mqtt_port,
        mqtt_username=mqtt_username,
        mqtt_password=mqtt_password,
        mqtt_client_id=mqtt_client_id,
        mqtt_topic_prefix=mqtt_topic_prefix,
        mqtt_use_tls=mqtt_use_tls,
        mqtt_tls_insecure=mqtt_tls_insecure,
        realtime_max_retries=realtime_max_retries,
        realtime_base_delay_seconds=realtime_base_delay_seconds,
        realtime_max_delay_seconds=realtime_max_delay_seconds,
        realtime_timeout_delay_seconds=realtime_timeout_delay_seconds,
        realtime_subscribe_timeout_seconds=realtime_subscribe_timeout_seconds,
        guestbook_table=guestbook_table,
        enrichment_workers=enrichment_workers,
        initial_load_attempts=initial_load_attempts,
        metrics_port=metrics_port,
        log_level=log_level,
    )
