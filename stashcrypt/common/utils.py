"""Encoding helpers: b64e, b64d, b64url_int, hex_d, sha256_digest."""

import base64
import binascii
import hashlib
from typing import Optional

from stashcrypt.errors import ProtocolError


def b64e(b: bytes) -> str:
    """Base64-encodes bytes into a string."""
    return base64.b64encode(b).decode('ascii')


def b64d(s: str, field: str = "value") -> bytes:
    """Base64-decodes a string into bytes, strictly."""
    try:
        return base64.b64decode(s, validate=True)
    except (binascii.Error, TypeError, ValueError) as e:
        raise ProtocolError(f"{field} is not valid base64: {e}") from e


def b64url_int(s: str, field: str = "value") -> int:
    """
    Decodes an unpadded base64url string into a big-endian integer.

    Padding is tolerated when the server does send it.
    """
    try:
        s = s.rstrip("=")
        raw = base64.b64decode(s + "=" * (-len(s) % 4), altchars=b"-_", validate=True)
    except (binascii.Error, AttributeError, TypeError, ValueError) as e:
        raise ProtocolError(f"{field} is not valid base64url: {e}") from e
    if not raw:
        raise ProtocolError(f"{field} is empty")
    return int.from_bytes(raw, "big")


def b64url_uint(value: int) -> str:
    """Encodes a non-negative integer as unpadded base64url."""
    raw = value.to_bytes(max(1, (value.bit_length() + 7) // 8), "big")
    return base64.urlsafe_b64encode(raw).decode('ascii').rstrip("=")


def hex_d(s: str, field: str = "value") -> bytes:
    """Hex-decodes a string into bytes."""
    try:
        return bytes.fromhex(s)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"{field} is not valid hex: {e}") from e


def optional_hex_d(s: Optional[str], field: str = "value") -> Optional[bytes]:
    """Like hex_d, but an absent or empty string stays None."""
    if not s:
        return None
    return hex_d(s, field)


def sha256_digest(data: bytes) -> bytes:
    """Returns the raw SHA-256 digest of data."""
    return hashlib.sha256(data).digest()
