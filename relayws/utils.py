"""
Helpers for raw socket payloads.
"""

from __future__ import annotations

from typing import Any, Optional, Union

from cryptography.hazmat.primitives import constant_time

SocketData = Union[bytes, bytearray, memoryview, str]


def is_nil(value: Any) -> bool:
    """Check if a value is None."""
    return value is None


def is_valid_socket_data(value: Any) -> bool:
    """
    Check if a value is a frame payload the protocol understands.

    Text frames arrive as ``str``, binary frames as a bytes-like object.
    Anything else (fragment lists, ``None``, decoded objects) is invalid.
    """
    return isinstance(value, (bytes, bytearray, memoryview, str))


def as_bytes(value: Optional[SocketData], encoding: str = "utf-8") -> Optional[bytes]:
    """
    Convert socket data to ``bytes``.

    Args:
        value: Text or bytes-like payload (``None`` passes through)
        encoding: Encoding used for text

    Returns:
        The payload as bytes, or ``None``
    """
    if value is None:
        return None
    if isinstance(value, str):
        return value.encode(encoding)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    raise TypeError(f"Cannot convert {type(value).__name__} to bytes")


def buffers_equal(x: bytes, y: bytes) -> bool:
    """
    Compare two byte sequences.

    True iff both have the same length and the same content. Sequences of
    equal length are compared in constant time.
    """
    if x is y:
        return True
    if len(x) != len(y):
        return False
    return constant_time.bytes_eq(bytes(x), bytes(y))
