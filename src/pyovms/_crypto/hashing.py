"""Keyed-hash key schedule for the binary protocol handshake.

The server welcome carries a token; both sides derive the same session key
from it and the shared vehicle secret. Direction keys for the two stream
ciphers are then derived from the session key with fixed labels.
"""

from __future__ import annotations

import base64
import hashlib
import hmac

from pyovms._constants import RX_KEY_LABEL, TX_KEY_LABEL


def hmac_md5(key: bytes, message: bytes) -> bytes:
    """Compute HMAC-MD5 of *message* under *key* (16-byte digest)."""
    return hmac.new(key, message, hashlib.md5).digest()


def derive_session_key(secret: str, server_token: str) -> bytes:
    """Derive the shared session key from the vehicle secret and the peer's token."""
    return hmac_md5(secret.encode("utf-8"), server_token.encode("ascii"))


def compute_client_digest(session_key: bytes, client_token: str) -> str:
    """Digest proving knowledge of the session key, base64 encoded for the wire."""
    digest = hmac_md5(session_key, client_token.encode("ascii"))
    return base64.b64encode(digest).decode("ascii")


def derive_direction_keys(session_key: bytes) -> tuple[bytes, bytes]:
    """Return ``(rx_key, tx_key)`` from the client's point of view."""
    return hmac_md5(session_key, RX_KEY_LABEL), hmac_md5(session_key, TX_KEY_LABEL)
