"""
Compression codec for cached values.

Values are serialized to JSON, deflated with zlib and base64-encoded so the
stored form is a plain string. Only values that JSON restores unchanged are
accepted, so decoding always returns a value equal to the original.
"""

import base64
import binascii
import json
import zlib
from typing import Any


class CompressionError(Exception):
    """Raised when a value cannot be encoded or an encoded payload is corrupt."""
    pass


def serialize(data: Any) -> str:
    """Serialize a value to canonical JSON text."""
    try:
        return json.dumps(data, separators=(',', ':'), sort_keys=True)
    except (TypeError, ValueError) as e:
        raise CompressionError(f"Value is not JSON serializable: {e}") from e


def serialized_size(data: Any) -> int:
    """Approximate size of a value in bytes.

    Falls back to ``str()`` for values JSON cannot represent.
    """
    if isinstance(data, str):
        return len(data.encode('utf-8'))
    try:
        text = serialize(data)
    except CompressionError:
        text = str(data)
    return len(text.encode('utf-8'))


def should_compress(data: Any, threshold: int = 1024) -> bool:
    return serialized_size(data) > threshold


def compress(data: Any) -> str:
    """Encode a value into its compressed string form.

    Values JSON would alter, such as tuples or non-string dict keys, are
    rejected with ``CompressionError``.
    """
    text = serialize(data)
    if json.loads(text) != data:
        raise CompressionError("Value does not survive a JSON round trip")
    raw = text.encode('utf-8')
    return base64.b64encode(zlib.compress(raw)).decode('ascii')


def decompress(payload: str) -> Any:
    """Decode a compressed string back into the original value."""
    try:
        raw = zlib.decompress(base64.b64decode(payload.encode('ascii'), validate=True))
        return json.loads(raw.decode('utf-8'))
    except (binascii.Error, zlib.error, UnicodeError, ValueError, AttributeError) as e:
        raise CompressionError(f"Corrupt compressed payload: {e}") from e
