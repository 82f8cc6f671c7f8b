import pytest

from portfolio_realtime import config

_ENV_KEYS = [
    "PORTFOLIO_API_URL",
    "PORTFOLIO_API_KEY",
    "PORTFOLIO_ACCESS_TOKEN",
    "PORTFOLIO_REQUEST_TIMEOUT_SECONDS",
    "REALTIME_TRANSPORT",
    "PGHOST",
    "PGPORT",
    "PGDATABASE",
    "PGUSER",
    "PGPASSWORD",
    "PGSCHEMA",
    "PG_CONNECT_TIMEOUT_SECONDS",
    "MQTT_HOST",
    "MQTT_PORT",
    "MQTT_USER",
    "MQTT_PASSWORD",
    "MQTT_CLIENT_ID",
    "MQTT_TOPIC_PREFIX",
    "MQTT_USE_TLS",
    "MQTT_TLS_INSECURE",
    "REALTIME_MAX_RETRIES",
    "REALTIME_BASE_DELAY_SECONDS",
    "REALTIME_MAX_DELAY_SECONDS",
    "REALTIME_TIMEOUT_DELAY_SECONDS",
    "REALTIME_SUBSCRIBE_TIMEOUT_SECONDS",
    "GUESTBOOK_TABLE",
    "ENRICHMENT_WORKERS",
    "INITIAL_LOAD_ATTEMPTS",
    "METRICS_PORT",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(config, "load_dotenv", lambda *args, **kwargs: None)


@pytest.mark.unit
def test_defaults_match_reconnect_policy():
    settings = config.load_settings()

    assert settings.realtime_transport == "postgres"
    assert settings.realtime_max_retries == 5
    assert settings.realtime_base_delay_seconds == 1.0
    assert settings.realtime_max_delay_seconds == 30.0
    assert settings.realtime_timeout_delay_seconds == 2.0
    assert settings.guestbook_table == "guestbook"
    assert settings.db_schema == "public"
    assert settings.mqtt_topic_prefix == "portfolio/changes"
    assert settings.mqtt_use_tls is False
    assert settings.log_level == "INFO"


@pytest.mark.unit
def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("PORTFOLIO_API_URL", "https://api.example/")
    monkeypatch.setenv("PORTFOLIO_API_KEY", " key ")
    monkeypatch.setenv("REALTIME_TRANSPORT", "MQTT")
    monkeypatch.setenv("MQTT_HOST", "broker.local")
    monkeypatch.setenv("MQTT_TOPIC_PREFIX", "site/changes/")
    monkeypatch.setenv("MQTT_USE_TLS", "yes")
    monkeypatch.setenv("PGPORT", "6543")
    monkeypatch.setenv("REALTIME_MAX_RETRIES", "3")
    monkeypatch.setenv("GUESTBOOK_TABLE", "  ")
    monkeypatch.setenv("ENRICHMENT_WORKERS", "0")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = config.load_settings()

    assert settings.api_url == "https://api.example"
    assert settings.api_key == "key"
    assert settings.realtime_transport == "mqtt"
    assert settings.mqtt_host == "broker.local"
    assert settings.mqtt_topic_prefix == "site/changes"
    assert settings.mqtt_use_tls is True
    assert settings.db_port == 6543
    assert settings.realtime_max_retries == 3
    assert settings.guestbook_table == "guestbook"
    assert settings.enrichment_workers == 1
    assert settings.log_level == "DEBUG"


@pytest.mark.unit
def test_unknown_transport_falls_back_to_postgres(monkeypatch):
    monkeypatch.setenv("REALTIME_TRANSPORT", "websocket")

    assert config.load_settings().realtime_transport == "postgres"


@pytest.mark.unit
@pytest.mark.parametrize("raw", ["0", "false", "No"])
def test_false_like_booleans(monkeypatch, raw):
    monkeypatch.setenv("MQTT_TLS_INSECURE", raw)

    assert config.load_settings().mqtt_tls_insecure is False
