"""Change-feed transport over an MQTT broker.

Publishers emit one JSON change document per message on
``<topic_prefix>/<table>``.  Each channel owns its own paho client with the
library's automatic reconnect disabled; reconnecting is left to the
change-feed connection's retry policy.
"""

from __future__ import annotations

import logging
import socket
import time
from typing import Callable, Optional

import paho.mqtt.client as mqtt

from .transport import RawEventHandler, ThreadedChannel, TransportStatus

logger = logging.getLogger(__name__)


def _rc_value(reason_code) -> int:
    return int(getattr(reason_code, "value", reason_code))


class MqttChannel(ThreadedChannel):
    """Runs a paho network loop for one table topic."""

    thread_name = "mqtt-feed"

    def __init__(
        self,
        table: str,
        on_event: RawEventHandler,
        *,
        client: mqtt.Client,
        host: str,
        port: int,
        topic: str,
        keepalive: int = 60,
        subscribe_timeout: float = 10.0,
        poll_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(table, on_event)
        self.topic = topic
        self._client = client
        self._host = host
        self._port = port
        self._keepalive = keepalive
        self._subscribe_timeout = subscribe_timeout
        self._poll_interval = poll_interval
        self._clock = clock
        self._subscribed = False
        self._failed = False
        client.on_connect = self._handle_connect
        client.on_subscribe = self._handle_subscribe
        client.on_message = self._handle_message
        client.on_disconnect = self._handle_disconnect

    # paho callbacks -----------------------------------------------------
    def _handle_connect(self, client, userdata, flags, reason_code, properties=None):
        rc = _rc_value(reason_code)
        if rc != 0:
            self._fail(
                TransportStatus.CHANNEL_ERROR,
                ConnectionError(f"MQTT connect refused: {reason_code}"),
            )
            return
        client.subscribe(self.topic, qos=1)

    def _handle_subscribe(self, client, userdata, mid, reason_code_list, properties=None):
        if any(_rc_value(code) >= 0x80 for code in reason_code_list):
            self._fail(
                TransportStatus.CHANNEL_ERROR,
                ConnectionError(f"MQTT subscribe to {self.topic} rejected"),
            )
            return
        self._subscribed = True
        self._report(TransportStatus.SUBSCRIBED)

    def _handle_message(self, client, userdata, message):
        if self.closed:
            return
        self._on_event(bytes(message.payload))

    def _handle_disconnect(
        self, client, userdata, disconnect_flags, reason_code, properties=None
    ):
        if self.closed:
            return
        self._fail(
            TransportStatus.CHANNEL_ERROR,
            ConnectionError(f"MQTT connection lost: {reason_code}"),
        )

    # loop ---------------------------------------------------------------
    def _fail(self, status: TransportStatus, error: BaseException) -> None:
        if self._failed or self.closed:
            return
        self._failed = True
        self._report(status, error)

    def _run(self) -> None:
        try:
            self._client.connect(self._host, self._port, keepalive=self._keepalive)
        except socket.timeout as exc:
            self._fail(TransportStatus.TIMED_OUT, exc)
            return
        except OSError as exc:
            self._fail(TransportStatus.CHANNEL_ERROR, exc)
            return
        deadline = self._clock() + self._subscribe_timeout
        try:
            while not self.closed and not self._failed:
                rc = self._client.loop(timeout=self._poll_interval)
                if self.closed or self._failed:
                    break
                if rc != mqtt.MQTT_ERR_SUCCESS:
                    self._fail(
                        TransportStatus.CHANNEL_ERROR,
                        ConnectionError(f"MQTT network loop failed: {rc}"),
                    )
                    break
                if not self._subscribed and self._clock() >= deadline:
                    self._fail(
                        TransportStatus.TIMED_OUT,
                        TimeoutError(f"no SUBACK for {self.topic}"),
                    )
                    break
        finally:
            try:
                self._client.disconnect()
            except Exception:  # noqa: BLE001 - best effort
                logger.debug("MQTT disconnect failed", exc_info=True)
        if self.closed:
            self._report(TransportStatus.CLOSED)


class MqttChangeFeedTransport:
    """Creates one MQTT client per subscribed table."""

    def __init__(
        self,
        *,
        host: str,
        port: int = 1883,
        username: str = "",
        password: str = "",
        client_id: str = "portfolio_realtime",
        topic_prefix: str = "portfolio/changes",
        use_tls: bool = False,
        tls_insecure: bool = False,
        subscribe_timeout: float = 10.0,
        client_factory: Optional[Callable[[str], mqtt.Client]] = None,
    ) -> None:
        if not host:
            raise ValueError(
                "MQTT broker host is not configured. Set MQTT_HOST or update the settings."
            )
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._client_id = client_id
        self._topic_prefix = topic_prefix.rstrip("/")
        self._use_tls = use_tls
        self._tls_insecure = tls_insecure
        self._subscribe_timeout = subscribe_timeout
        self._client_factory = client_factory or self._build_client
        self._counter = 0

    def topic_for(self, table: str) -> str:
        return f"{self._topic_prefix}/{table}"

    def _build_client(self, client_id: str) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=client_id,
            protocol=mqtt.MQTTv311,
            reconnect_on_failure=False,
        )
        if self._username or self._password:
            client.username_pw_set(self._username, self._password)
        if self._use_tls:
            client.tls_set_context()
            client.tls_insecure_set(self._tls_insecure)
        return client

    def subscribe(self, table: str, on_event: RawEventHandler) -> MqttChannel:
        self._counter += 1
        client = self._client_factory(f"{self._client_id}-{table}-{self._counter}")
        return MqttChannel(
            table,
            on_event,
            client=client,
            host=self._host,
            port=self._port,
            topic=self.topic_for(table),
            subscribe_timeout=self._subscribe_timeout,
        )

    def unsubscribe(self, channel: MqttChannel) -> None:
        channel.close()


__all__ = ["MqttChangeFeedTransport", "MqttChannel"]
