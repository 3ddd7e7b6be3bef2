"""Message-bus transport: paho-mqtt runtime feeding the metric normalizer."""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from pyovms._constants import MQTT_DEFAULT_PORT, STATUS_COMMAND_VERB
from pyovms.config import OvmsConfig
from pyovms.ingestion.metrics import MetricNormalizer

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BusEndpoint:
    """Broker connection details and the topic namespace for one vehicle."""

    host: str
    port: int
    username: str
    password: str
    vehicle_id: str
    client_id: str
    tls: bool = False

    @property
    def prefix(self) -> str:
        return f"ovms/{self.username}/{self.vehicle_id}"

    @property
    def metric_topic(self) -> str:
        return f"{self.prefix}/metric/#"

    @property
    def active_topic(self) -> str:
        return f"{self.prefix}/client/{self.client_id}/active"

    def command_topic(self, command_id: str) -> str:
        return f"{self.prefix}/client/{self.client_id}/command/{command_id}"


def parse_server(raw_server: str, default_port: int = MQTT_DEFAULT_PORT) -> tuple[str, int]:
    """Split ``mqtt://host:port/...`` (or a bare host) into host and port."""
    value = raw_server.strip()
    if not value:
        raise ValueError("Server value is empty")

    if "://" in value:
        value = value.split("://", 1)[1]
    if "/" in value:
        value = value.split("/", 1)[0]

    host, _, maybe_port = value.rpartition(":")
    if host and maybe_port.isdigit():
        return host, int(maybe_port)
    return value, default_port


def build_endpoint(config: OvmsConfig, *, client_id: str | None = None) -> BusEndpoint:
    host, port = parse_server(config.server, config.mqtt_port)
    return BusEndpoint(
        host=host,
        port=port,
        username=config.bus_username,
        password=config.password,
        vehicle_id=config.vehicle_id,
        client_id=client_id or f"pyovms-{secrets.token_hex(4)}",
        tls=config.mqtt_tls,
    )


def _default_client_factory(client_id: str) -> mqtt.Client:
    return mqtt.Client(
        callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv311,
    )


class MqttTransport:
    """Threaded paho-mqtt runtime that hands metric messages to the event loop.

    paho runs its network loop on its own thread; every message is re-posted
    with ``call_soon_threadsafe`` so the live state keeps a single writer on
    the loop thread. Reconnects use paho's own fixed-delay retry.
    """

    def __init__(
        self,
        config: OvmsConfig,
        normalizer: MetricNormalizer,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        endpoint: BusEndpoint | None = None,
        client_factory: Callable[[str], mqtt.Client] = _default_client_factory,
    ) -> None:
        self._config = config
        self._normalizer = normalizer
        self._loop = loop
        self._endpoint = endpoint or build_endpoint(config)
        self._client_factory = client_factory
        self._client: mqtt.Client | None = None
        self._running = False
        self._connected = False

    @property
    def endpoint(self) -> BusEndpoint:
        return self._endpoint

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        return self._connected

    def start(self) -> None:
        """Connect asynchronously and start the network loop thread."""
        self.stop()
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        endpoint = self._endpoint
        _logger.info(
            "Connecting to message bus host=%s port=%s topic=%s",
            endpoint.host,
            endpoint.port,
            endpoint.metric_topic,
        )

        client = self._client_factory(endpoint.client_id)
        client.enable_logger(_logger)
        client.username_pw_set(endpoint.username, endpoint.password)
        if endpoint.tls:
            client.tls_set()
        delay = max(1, int(self._config.reconnect_delay))
        client.reconnect_delay_set(min_delay=delay, max_delay=delay)

        client.on_connect = self._on_connect
        client.on_message = self._on_message
        client.on_disconnect = self._on_disconnect

        client.connect_async(endpoint.host, endpoint.port, keepalive=self._config.mqtt_keepalive)
        client.loop_start()

        self._client = client
        self._running = True

    def stop(self) -> None:
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._connected = False

        if client is None:
            return
        try:
            if was_running:
                _logger.debug("Message bus disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            _logger.debug("Message bus network loop stopped")

    async def run(self) -> None:
        """Run until cancelled."""
        self.start()
        try:
            await asyncio.Event().wait()
        finally:
            self.stop()

    async def request_status(self) -> bool:
        """Publish a status command with a random identifier.

        Returns ``False`` when the bus is not connected.
        """
        client = self._client
        if client is None or not self._connected:
            _logger.warning("Status probe skipped: message bus not connected")
            return False
        command_id = secrets.token_hex(4)
        topic = self._endpoint.command_topic(command_id)
        _logger.debug("Publishing status probe topic=%s", topic)
        client.publish(topic, STATUS_COMMAND_VERB, qos=0)
        return True

    def _on_connect(
        self,
        client: mqtt.Client,
        _userdata: Any,
        _flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        if reason_code.value != 0:
            _logger.warning("Message bus connect failed: %s", reason_code)
            return
        self._connected = True
        _logger.info("Message bus connected; subscribing %s", self._endpoint.metric_topic)
        client.subscribe(self._endpoint.metric_topic, qos=0)
        client.publish(self._endpoint.active_topic, "1", qos=0, retain=True)

    def _on_message(self, _client: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
        loop = self._loop
        if loop is None:
            return
        loop.call_soon_threadsafe(self._dispatch, msg.topic, msg.payload)

    def _on_disconnect(
        self,
        _client: mqtt.Client,
        _userdata: Any,
        _disconnect_flags: Any,
        reason_code: Any,
        _properties: Any,
    ) -> None:
        self._connected = False
        if self._running:
            _logger.warning("Message bus disconnected: %s; retrying in %ss", reason_code, self._config.reconnect_delay)

    def _dispatch(self, topic: str, payload: bytes) -> None:
        sample = self._normalizer.ingest_topic(topic, payload)
        if sample is not None:
            _logger.debug("Metric %s = %r", sample.key, sample.value)
