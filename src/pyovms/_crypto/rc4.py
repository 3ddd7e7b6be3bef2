"""RC4 stream cipher with keystream discard.

Each protocol direction owns one :class:`StreamCipher`. The first
``discard`` keystream bytes are thrown away before use.
"""

from __future__ import annotations

from cryptography.hazmat.decrepit.ciphers.algorithms import ARC4
from cryptography.hazmat.primitives.ciphers import Cipher

from pyovms._constants import CIPHER_DISCARD_BYTES
from pyovms.exceptions import OvmsCryptoError


class StreamCipher:
    """Stateful RC4 keystream; encryption and decryption are the same operation."""

    def __init__(self, key: bytes, *, discard: int = CIPHER_DISCARD_BYTES) -> None:
        try:
            self._ctx = Cipher(ARC4(key), mode=None).encryptor()
        except ValueError as exc:
            raise OvmsCryptoError(f"Invalid stream cipher key: {exc}") from exc
        if discard > 0:
            self._ctx.update(b"\x00" * discard)

    def apply(self, data: bytes) -> bytes:
        """XOR *data* with the next ``len(data)`` keystream bytes."""
        return self._ctx.update(data)

    encrypt = apply
    decrypt = apply
