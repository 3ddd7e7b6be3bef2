"""Cryptographic primitives for the binary protocol."""

from __future__ import annotations

from pyovms._crypto.hashing import compute_client_digest, derive_direction_keys, derive_session_key, hmac_md5
from pyovms._crypto.rc4 import StreamCipher

__all__ = [
    "StreamCipher",
    "compute_client_digest",
    "derive_direction_keys",
    "derive_session_key",
    "hmac_md5",
]
