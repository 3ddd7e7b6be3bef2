"""Binary protocol client: keyed-hash handshake, RC4 line stream, keep-alive.

Connection lifecycle is ``DISCONNECTED -> HANDSHAKING -> ENCRYPTED``. The
peer opens with a plaintext welcome line; every byte after the client's reply
is encrypted, one stream cipher per direction. Handshake state is rebuilt
from scratch on every reconnect.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum

from pyovms._constants import (
    CLIENT_TOKEN_LENGTH,
    CLIENT_WELCOME_TAG,
    ENCRYPTED_PREFIX,
    LINE_TERMINATOR,
    MSG_COMMAND,
    MSG_COMMAND_REPLY,
    MSG_PING,
    MSG_PING_REPLY,
    PROTOCOL_DEFAULT_PORT,
    SERVER_WELCOME_TAG,
    STATUS_COMMAND_CODE,
    STATUS_COMMAND_VERB,
    SUPPORTED_CIPHER,
)
from pyovms._crypto import StreamCipher, compute_client_digest, derive_direction_keys, derive_session_key
from pyovms.config import OvmsConfig
from pyovms.exceptions import OvmsHandshakeError, OvmsProtocolError, OvmsTransportError
from pyovms.ingestion.metrics import MetricNormalizer
from pyovms.ingestion.protocol import RECORD_PARSERS, split_message
from pyovms.transport.mqtt import parse_server

_logger = logging.getLogger(__name__)

_TOKEN_ALPHABET = string.ascii_letters + string.digits
_READ_CHUNK = 4096
_HANDSHAKE_TIMEOUT = 30.0
_BUS_SCHEMES = frozenset({"mqtt", "mqtts", "ws", "wss"})

Connector = Callable[[str, int], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


class ProtocolState(StrEnum):
    DISCONNECTED = "disconnected"
    HANDSHAKING = "handshaking"
    ENCRYPTED = "encrypted"


@dataclass(frozen=True)
class ServerWelcome:
    cipher: str
    token: str


@dataclass(frozen=True)
class HandshakeResult:
    """Everything derived from one welcome exchange."""

    session_key: bytes
    client_token: str
    digest: str
    reply: bytes
    rx_key: bytes
    tx_key: bytes


def parse_server_welcome(line: str) -> ServerWelcome:
    """Parse ``MP-S <cipher> <token> ...``."""
    parts = line.strip().split()
    if len(parts) < 3 or parts[0] != SERVER_WELCOME_TAG:
        raise OvmsHandshakeError(f"Unexpected welcome line: {line.strip()[:64]!r}")
    cipher, token = parts[1], parts[2]
    if cipher != SUPPORTED_CIPHER:
        raise OvmsHandshakeError(f"Unsupported cipher indicator {cipher!r}")
    if not (token.isascii() and token.isprintable()):
        raise OvmsHandshakeError(f"Server token is not printable ASCII: {token[:32]!r}")
    return ServerWelcome(cipher=cipher, token=token)


def generate_client_token(length: int = CLIENT_TOKEN_LENGTH) -> str:
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def build_client_welcome(client_token: str, digest: str, vehicle_id: str) -> bytes:
    line = f"{CLIENT_WELCOME_TAG} {SUPPORTED_CIPHER} {client_token} {digest} {vehicle_id}"
    return line.encode("ascii") + LINE_TERMINATOR


def negotiate(
    secret: str,
    welcome_line: str,
    vehicle_id: str,
    client_token: str | None = None,
) -> HandshakeResult:
    """Derive keys and the reply line from the peer's welcome.

    Deterministic for a fixed *client_token*, which makes the key schedule
    reproducible without a live peer.
    """
    welcome = parse_server_welcome(welcome_line)
    token = client_token or generate_client_token()
    try:
        session_key = derive_session_key(secret, welcome.token)
        digest = compute_client_digest(session_key, token)
        reply = build_client_welcome(token, digest, vehicle_id)
    except UnicodeError as exc:
        raise OvmsHandshakeError(f"Handshake fields must be ASCII: {exc}") from exc
    rx_key, tx_key = derive_direction_keys(session_key)
    return HandshakeResult(
        session_key=session_key,
        client_token=token,
        digest=digest,
        reply=reply,
        rx_key=rx_key,
        tx_key=tx_key,
    )


def parse_protocol_server(raw_server: str, default_port: int = PROTOCOL_DEFAULT_PORT) -> tuple[str, int]:
    """Host and port for the protocol transport.

    ``OVMS_SERVER`` is shared with the bus transport, so a port given in a
    bus URL (``mqtt://host:1883``) is ignored in favour of *default_port*.
    """
    host, port = parse_server(raw_server, default_port)
    scheme, sep, _ = raw_server.strip().partition("://")
    if sep and scheme.lower() in _BUS_SCHEMES:
        return host, default_port
    return host, port


class ProtocolSession:
    """Cipher pair and line buffer for one encrypted connection."""

    def __init__(self, rx_key: bytes, tx_key: bytes) -> None:
        self._rx = StreamCipher(rx_key)
        self._tx = StreamCipher(tx_key)
        self._buffer = b""

    @classmethod
    def from_handshake(cls, result: HandshakeResult) -> ProtocolSession:
        return cls(result.rx_key, result.tx_key)

    def feed(self, data: bytes) -> list[str]:
        """Decrypt inbound bytes and return every complete line."""
        self._buffer += self._rx.decrypt(data)
        *lines, self._buffer = self._buffer.split(LINE_TERMINATOR)
        return [line.decode("utf-8", errors="replace") for line in lines if line]

    def encode(self, line: str) -> bytes:
        return self._tx.encrypt(line.encode("utf-8") + LINE_TERMINATOR)


class ProtocolClient:
    """Alternate transport feeding the same normalizer as the message bus.

    Parameters
    ----------
    config : OvmsConfig
        Supplies server, port, secret, keep-alive period and reconnect delay.
    normalizer : MetricNormalizer
        Receives every parsed record field.
    connect : callable, optional
        ``(host, port) -> (reader, writer)``; defaults to
        :func:`asyncio.open_connection`.
    """

    def __init__(
        self,
        config: OvmsConfig,
        normalizer: MetricNormalizer,
        *,
        connect: Connector | None = None,
        token_factory: Callable[[], str] = generate_client_token,
    ) -> None:
        self._config = config
        self._normalizer = normalizer
        self._connect: Connector = connect or asyncio.open_connection
        self._token_factory = token_factory
        self._host, self._port = parse_protocol_server(config.server, config.protocol_port)
        self._state = ProtocolState.DISCONNECTED
        self._session: ProtocolSession | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._keepalive_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ProtocolState:
        return self._state

    @property
    def endpoint(self) -> str:
        return f"{self._host}:{self._port}"

    async def run(self) -> None:
        """Connect, stream, and reconnect after a fixed delay until cancelled."""
        while True:
            try:
                await self.run_once()
            except (OvmsTransportError, OSError) as exc:
                _logger.warning("Protocol connection to %s lost: %s", self.endpoint, exc)
            finally:
                await self.close()
            _logger.info("Reconnecting to %s in %ss", self.endpoint, self._config.reconnect_delay)
            await asyncio.sleep(self._config.reconnect_delay)

    async def run_once(self) -> None:
        """One connection lifetime; returns or raises when the stream ends."""
        _logger.info("Connecting to protocol server %s", self.endpoint)
        reader, writer = await self._connect(self._host, self._port)
        self._writer = writer
        self._state = ProtocolState.HANDSHAKING

        try:
            raw = await asyncio.wait_for(reader.readuntil(LINE_TERMINATOR), timeout=_HANDSHAKE_TIMEOUT)
        except asyncio.IncompleteReadError as exc:
            raise OvmsHandshakeError("Connection closed before welcome", endpoint=self.endpoint) from exc
        except asyncio.LimitOverrunError as exc:
            raise OvmsHandshakeError("Welcome line exceeds read limit", endpoint=self.endpoint) from exc
        except TimeoutError as exc:
            raise OvmsHandshakeError("Timed out waiting for welcome", endpoint=self.endpoint) from exc

        try:
            welcome = raw.decode("ascii")
        except UnicodeDecodeError as exc:
            raise OvmsHandshakeError("Welcome line is not ASCII", endpoint=self.endpoint) from exc
        result = negotiate(
            self._config.password,
            welcome,
            self._config.vehicle_id,
            client_token=self._token_factory(),
        )
        writer.write(result.reply)
        await writer.drain()

        self._session = ProtocolSession.from_handshake(result)
        self._state = ProtocolState.ENCRYPTED
        _logger.info("Protocol session with %s established", self.endpoint)
        self._keepalive_task = asyncio.create_task(self._keepalive())

        while True:
            data = await reader.read(_READ_CHUNK)
            if not data:
                raise OvmsTransportError("Connection closed by peer", endpoint=self.endpoint)
            for line in self._session.feed(data):
                await self.handle_line(line)

    async def handle_line(self, line: str) -> None:
        message = split_message(line)
        if message is None:
            _logger.debug("Ignoring non-envelope line %r", line[:64])
            return

        if message.code == MSG_PING:
            await self._send(MSG_PING_REPLY)
            return
        if message.code == MSG_COMMAND_REPLY:
            _logger.debug("Command reply: %s", message.payload)
            return

        parser = RECORD_PARSERS.get(message.code)
        if parser is None:
            _logger.debug("Ignoring message type %r", message.code)
            return
        try:
            fields = parser(message.payload)
        except OvmsProtocolError as exc:
            _logger.warning("Dropping malformed %s record: %s", message.code, exc)
            return
        for key, value in fields:
            self._normalizer.ingest_field(key, value)

    async def request_status(self) -> bool:
        if self._state != ProtocolState.ENCRYPTED:
            _logger.warning("Status probe skipped: protocol session not established")
            return False
        # Protocol commands carry no request id; the reply is matched by command code.
        _logger.debug("Sending status probe")
        await self._send(MSG_COMMAND, f"{STATUS_COMMAND_CODE},{STATUS_COMMAND_VERB}")
        return True

    async def _send(self, code: str, payload: str = "") -> None:
        session, writer = self._session, self._writer
        if session is None or writer is None:
            raise OvmsTransportError("Protocol session not established", endpoint=self.endpoint)
        writer.write(session.encode(f"{ENCRYPTED_PREFIX}{code}{payload}"))
        await writer.drain()

    async def _keepalive(self) -> None:
        while True:
            await asyncio.sleep(self._config.keepalive_interval)
            try:
                await self._send(MSG_PING)
            except (OvmsTransportError, OSError) as exc:
                _logger.debug("Keep-alive failed: %s", exc)
                return

    async def close(self) -> None:
        """Cancel the keep-alive, drop cipher state and close the stream."""
        task = self._keepalive_task
        self._keepalive_task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        writer = self._writer
        self._writer = None
        self._session = None
        self._state = ProtocolState.DISCONNECTED
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                _logger.debug("Error while closing protocol stream", exc_info=True)
