"""Custom exception hierarchy for pyovms."""

from __future__ import annotations


class OvmsError(Exception):
    """Base exception for all pyovms errors."""


class OvmsConfigError(OvmsError):
    """Invalid or missing configuration."""


class OvmsCryptoError(OvmsError):
    """Key derivation or stream cipher failure."""


class OvmsTransportError(OvmsError):
    """Connection-level failure (refused, reset, closed by peer)."""

    def __init__(self, message: str, *, endpoint: str = "") -> None:
        self.endpoint = endpoint
        super().__init__(message)


class OvmsProtocolError(OvmsTransportError):
    """Malformed frame or record on the binary protocol."""


class OvmsHandshakeError(OvmsProtocolError):
    """The peer's welcome line was missing, malformed, or unsupported."""


class OvmsStoreError(OvmsError):
    """Telemetry store write failed (network, non-2xx response)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        table: str = "",
    ) -> None:
        self.status_code = status_code
        self.table = table
        super().__init__(message)
