from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any

import pytest

from pyovms.config import OvmsConfig
from pyovms.ingestion.metrics import MetricNormalizer
from pyovms.state.live import LiveVehicleState
from pyovms.transport.mqtt import MqttTransport, build_endpoint, parse_server


class _FakeClient:
    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        self.calls: list[tuple[str, Any]] = []
        self.subscriptions: list[str] = []
        self.published: list[tuple[str, str, bool]] = []

    def enable_logger(self, logger: Any) -> None:
        self.calls.append(("enable_logger", logger))

    def username_pw_set(self, username: str, password: str) -> None:
        self.calls.append(("username_pw_set", (username, password)))

    def tls_set(self) -> None:
        self.calls.append(("tls_set", None))

    def reconnect_delay_set(self, min_delay: int, max_delay: int) -> None:
        self.calls.append(("reconnect_delay_set", (min_delay, max_delay)))

    def connect_async(self, host: str, port: int, keepalive: int) -> None:
        self.calls.append(("connect_async", (host, port, keepalive)))

    def loop_start(self) -> None:
        self.calls.append(("loop_start", None))

    def loop_stop(self) -> None:
        self.calls.append(("loop_stop", None))

    def disconnect(self) -> None:
        self.calls.append(("disconnect", None))

    def subscribe(self, topic: str, qos: int = 0) -> None:
        self.subscriptions.append(topic)

    def publish(self, topic: str, payload: str, qos: int = 0, retain: bool = False) -> None:
        self.published.append((topic, payload, retain))


def _config(**overrides: Any) -> OvmsConfig:
    values: dict[str, Any] = {
        "vehicle_id": "CAR1",
        "username": "alice",
        "password": "s3cret",
        "server": "mqtt://ovms.example:8883",
    }
    values.update(overrides)
    return OvmsConfig(**values)


def _transport(state: LiveVehicleState, clients: list[_FakeClient], **overrides: Any) -> MqttTransport:
    config = _config(**overrides)

    def factory(client_id: str) -> _FakeClient:
        client = _FakeClient(client_id)
        clients.append(client)
        return client

    return MqttTransport(
        config,
        MetricNormalizer(state),
        endpoint=build_endpoint(config, client_id="pyovms-test"),
        client_factory=factory,  # type: ignore[arg-type]
    )


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("ovms.example", ("ovms.example", 1883)),
        ("ovms.example:1884", ("ovms.example", 1884)),
        ("mqtt://ovms.example:8883/ws", ("ovms.example", 8883)),
        ("mqtts://ovms.example", ("ovms.example", 1883)),
    ],
)
def test_parse_server(raw: str, expected: tuple[str, int]) -> None:
    assert parse_server(raw) == expected


def test_parse_server_rejects_empty() -> None:
    with pytest.raises(ValueError):
        parse_server("  ")


def test_endpoint_topics() -> None:
    endpoint = build_endpoint(_config(), client_id="pyovms-test")
    assert endpoint.host == "ovms.example"
    assert endpoint.port == 8883
    assert endpoint.metric_topic == "ovms/alice/CAR1/metric/#"
    assert endpoint.active_topic == "ovms/alice/CAR1/client/pyovms-test/active"
    assert endpoint.command_topic("abcd") == "ovms/alice/CAR1/client/pyovms-test/command/abcd"


@pytest.mark.asyncio
async def test_start_configures_client_and_stop_tears_down() -> None:
    clients: list[_FakeClient] = []
    transport = _transport(LiveVehicleState(), clients, mqtt_tls=True, reconnect_delay=10.0)

    transport.start()
    client = clients[0]
    names = [name for name, _ in client.calls]

    assert transport.is_running
    assert ("username_pw_set", ("alice", "s3cret")) in client.calls
    assert ("reconnect_delay_set", (10, 10)) in client.calls
    assert ("connect_async", ("ovms.example", 8883, 60)) in client.calls
    assert "tls_set" in names
    assert names[-1] == "loop_start"

    transport.stop()
    assert not transport.is_running
    assert [name for name, _ in client.calls][-2:] == ["disconnect", "loop_stop"]


@pytest.mark.asyncio
async def test_connect_subscribes_and_announces_client() -> None:
    clients: list[_FakeClient] = []
    transport = _transport(LiveVehicleState(), clients)
    transport.start()
    client = clients[0]

    transport._on_connect(client, None, None, SimpleNamespace(value=0), None)  # type: ignore[arg-type]

    assert transport.is_connected
    assert client.subscriptions == ["ovms/alice/CAR1/metric/#"]
    assert client.published == [("ovms/alice/CAR1/client/pyovms-test/active", "1", True)]
    transport.stop()


@pytest.mark.asyncio
async def test_failed_connect_does_not_subscribe() -> None:
    clients: list[_FakeClient] = []
    transport = _transport(LiveVehicleState(), clients)
    transport.start()

    transport._on_connect(clients[0], None, None, SimpleNamespace(value=5), None)  # type: ignore[arg-type]

    assert not transport.is_connected
    assert clients[0].subscriptions == []
    transport.stop()


@pytest.mark.asyncio
async def test_messages_are_applied_on_the_event_loop() -> None:
    state = LiveVehicleState()
    clients: list[_FakeClient] = []
    transport = _transport(state, clients)
    transport.start()

    message = SimpleNamespace(topic="ovms/alice/CAR1/metric/v/b/soc", payload=b"64.5")
    transport._on_message(clients[0], None, message)  # type: ignore[arg-type]
    assert state.soc is None
    await asyncio.sleep(0)

    assert state.soc == 64.5
    assert state.is_dirty is True
    transport.stop()


@pytest.mark.asyncio
async def test_request_status_publishes_command_when_connected() -> None:
    clients: list[_FakeClient] = []
    transport = _transport(LiveVehicleState(), clients)

    assert await transport.request_status() is False

    transport.start()
    client = clients[0]
    assert await transport.request_status() is False

    transport._on_connect(client, None, None, SimpleNamespace(value=0), None)  # type: ignore[arg-type]
    assert await transport.request_status() is True

    topic, payload, retain = client.published[-1]
    assert topic.startswith("ovms/alice/CAR1/client/pyovms-test/command/")
    assert payload == "stat"
    assert retain is False
    transport.stop()
