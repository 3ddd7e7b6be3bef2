from __future__ import annotations

import asyncio

import pytest

from pyovms._crypto import compute_client_digest, derive_direction_keys, derive_session_key
from pyovms.config import OvmsConfig
from pyovms.exceptions import OvmsHandshakeError, OvmsTransportError
from pyovms.ingestion.metrics import MetricNormalizer
from pyovms.state.live import LiveVehicleState
from pyovms.transport.protocol import ProtocolClient, ProtocolSession, ProtocolState, parse_protocol_server

_SECRET = "s3cret"
_SERVER_TOKEN = "SRVTOKEN1234567890ABCDEF"


class _FakePeer:
    """Minimal server side of the binary protocol."""

    def __init__(self, welcome: str = f"MP-S 0 {_SERVER_TOKEN} OVMS") -> None:
        self.welcome = welcome
        self.received: asyncio.Queue[str] = asyncio.Queue()
        self.digest_ok: bool | None = None
        self.hang_up = asyncio.Event()
        self.outbound = [
            "MP-0 S80,K,230,16,charging,standard,250,220",
            "MP-0 Lnot-a-number,13.4,0,0,1,0,0,0",
            "MP-0 L52.5,13.4,90,34,1,0,0,12.3,1000",
            "MP-0 A",
        ]

    async def handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        writer.write(f"{self.welcome}\r\n".encode("ascii"))
        await writer.drain()
        try:
            reply = (await reader.readuntil(b"\r\n")).decode("ascii").split()
        except asyncio.IncompleteReadError:
            writer.close()
            return

        session_key = derive_session_key(_SECRET, _SERVER_TOKEN)
        self.digest_ok = reply[0] == "MP-A" and compute_client_digest(session_key, reply[2]) == reply[3]
        rx_key, tx_key = derive_direction_keys(session_key)
        peer = ProtocolSession(tx_key, rx_key)

        for line in self.outbound:
            writer.write(peer.encode(line))
        await writer.drain()

        reader_task = asyncio.create_task(self._pump(reader, peer))
        await self.hang_up.wait()
        reader_task.cancel()
        writer.close()

    async def _pump(self, reader: asyncio.StreamReader, peer: ProtocolSession) -> None:
        while True:
            data = await reader.read(4096)
            if not data:
                return
            for line in peer.feed(data):
                await self.received.put(line)


async def _serve(peer: _FakePeer) -> tuple[asyncio.AbstractServer, int]:
    server = await asyncio.start_server(peer.handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, port


def _config(port: int, **overrides) -> OvmsConfig:
    values = {
        "vehicle_id": "CAR1",
        "password": _SECRET,
        "server": "127.0.0.1",
        "protocol_port": port,
        "transport": "protocol",
        "keepalive_interval": 3600.0,
        "reconnect_delay": 0.01,
    }
    values.update(overrides)
    return OvmsConfig(**values)


@pytest.mark.asyncio
async def test_client_handshakes_and_feeds_normalizer() -> None:
    peer = _FakePeer()
    server, port = await _serve(peer)
    state = LiveVehicleState()
    client = ProtocolClient(_config(port), MetricNormalizer(state))

    task = asyncio.create_task(client.run_once())
    try:
        assert await asyncio.wait_for(peer.received.get(), 5) == "MP-0 a"
        assert peer.digest_ok is True
        assert client.state == ProtocolState.ENCRYPTED

        assert state.soc == 80.0
        assert state.charge_state == "charging"
        assert state.charge_voltage == 230.0
        assert state.latitude == 52.5
        assert state.odometer == 1000.0
        assert state.is_dirty is True

        assert await client.request_status() is True
        assert await asyncio.wait_for(peer.received.get(), 5) == "MP-0 C7,stat"

        peer.hang_up.set()
        with pytest.raises(OvmsTransportError):
            await asyncio.wait_for(task, 5)
    finally:
        task.cancel()
        await client.close()
        server.close()
        await server.wait_closed()

    assert client.state == ProtocolState.DISCONNECTED
    assert await client.request_status() is False


@pytest.mark.asyncio
async def test_unsupported_cipher_fails_handshake() -> None:
    peer = _FakePeer(welcome=f"MP-S 9 {_SERVER_TOKEN}")
    server, port = await _serve(peer)
    client = ProtocolClient(_config(port), MetricNormalizer(LiveVehicleState()))
    try:
        with pytest.raises(OvmsHandshakeError):
            await asyncio.wait_for(client.run_once(), 5)
    finally:
        await client.close()
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_keepalive_sends_ping() -> None:
    peer = _FakePeer()
    peer.outbound = []
    server, port = await _serve(peer)
    client = ProtocolClient(_config(port, keepalive_interval=0.05), MetricNormalizer(LiveVehicleState()))

    task = asyncio.create_task(client.run_once())
    try:
        assert await asyncio.wait_for(peer.received.get(), 5) == "MP-0 A"
    finally:
        peer.hang_up.set()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        await client.close()
        server.close()
        await server.wait_closed()


@pytest.mark.asyncio
async def test_run_reconnects_after_failures() -> None:
    attempts = 0
    third_attempt = asyncio.Event()

    async def refuse(host: str, port: int):
        nonlocal attempts
        attempts += 1
        if attempts >= 3:
            third_attempt.set()
        raise ConnectionRefusedError(f"{host}:{port} refused")

    client = ProtocolClient(_config(6867), MetricNormalizer(LiveVehicleState()), connect=refuse)
    task = asyncio.create_task(client.run())
    try:
        await asyncio.wait_for(third_attempt.wait(), 5)
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

    assert attempts >= 3
    assert client.state == ProtocolState.DISCONNECTED


@pytest.mark.parametrize(
    "welcome",
    [
        "MP-S 0 TÖKEN123 x\r\n".encode("utf-8"),
        b"MP-S 0 " + b"A" * 70000 + b"\r\n",
    ],
    ids=["non-ascii-token", "oversized-line"],
)
@pytest.mark.asyncio
async def test_rejected_welcome_triggers_reconnect(welcome: bytes) -> None:
    connections = 0
    second_connection = asyncio.Event()

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        nonlocal connections
        connections += 1
        if connections >= 2:
            second_connection.set()
        writer.write(welcome)
        await writer.drain()
        writer.close()

    server = await asyncio.start_server(handle, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    client = ProtocolClient(_config(port), MetricNormalizer(LiveVehicleState()))
    task = asyncio.create_task(client.run())
    try:
        await asyncio.wait_for(second_connection.wait(), 5)
        assert not task.done()
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        server.close()
        await server.wait_closed()

    assert client.state == ProtocolState.DISCONNECTED


@pytest.mark.asyncio
async def test_malformed_environment_record_is_dropped() -> None:
    state = LiveVehicleState()
    client = ProtocolClient(_config(6867), MetricNormalizer(state))

    await client.handle_line("MP-0 Dinf,0,4,20,30,25,0,1000,0,60,15")

    assert state.odometer is None
    assert state.is_dirty is False


@pytest.mark.parametrize(
    ("server", "expected"),
    [
        ("mqtt://ovms.example.com:1883", ("ovms.example.com", 6867)),
        ("mqtts://ovms.example.com:8883/", ("ovms.example.com", 6867)),
        ("ovms.example.com:7000", ("ovms.example.com", 7000)),
        ("ovms.example.com", ("ovms.example.com", 6867)),
    ],
)
def test_protocol_server_ignores_bus_url_port(server: str, expected: tuple[str, int]) -> None:
    assert parse_protocol_server(server, 6867) == expected


def test_client_uses_protocol_port_for_bus_url() -> None:
    config = _config(6867, server="mqtt://ovms.example.com:1883")
    client = ProtocolClient(config, MetricNormalizer(LiveVehicleState()))
    assert client.endpoint == "ovms.example.com:6867"
