"""
Message Envelope - Typed, correlatable message unit.

Wire format (one transport frame = one UTF-8 JSON object):

    {
        "type": "Ping",     // required, non-empty string
        "data": ...,        // optional payload
        "ref": ...          // optional correlation token
    }

The codec never raises on decode; it returns either an ``Envelope`` or a
``MalformedEnvelope`` describing why the frame was rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Union
import json

from .faults import Fault, WS_MALFORMED_FRAME

# Types emitted by the protocol itself
TYPE_OK = "ok"
TYPE_ERROR = "error"
TYPE_AUTH_FAILED = "auth_failed"

RESERVED_TYPES = frozenset({TYPE_OK, TYPE_ERROR})


@dataclass(frozen=True)
class Envelope:
    """
    Message envelope.

    ``data`` and ``ref`` are ``None`` when absent; absent fields are
    omitted from the encoded form.
    """

    type: str
    data: Any = None
    ref: Any = None

    def __post_init__(self):
        if not isinstance(self.type, str) or not self.type:
            raise ValueError("Envelope type must be a non-empty string")

    @property
    def is_reply(self) -> bool:
        """True for ``ok``/``error`` envelopes."""
        return self.type in RESERVED_TYPES

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary, omitting absent fields."""
        obj: Dict[str, Any] = {"type": self.type}
        if self.data is not None:
            obj["data"] = self.data
        if self.ref is not None:
            obj["ref"] = self.ref
        return obj

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> Envelope:
        """Deserialize from dictionary."""
        return cls(
            type=obj["type"],
            data=obj.get("data"),
            ref=obj.get("ref"),
        )


@dataclass(frozen=True)
class MalformedEnvelope:
    """Result of decoding a frame that is not a valid envelope."""

    reason: str

    def fault(self) -> Fault:
        return WS_MALFORMED_FRAME(self.reason)

    def __bool__(self) -> bool:
        return False


DecodeResult = Union[Envelope, MalformedEnvelope]


class MessageCodec(Protocol):
    """Protocol for message encoding/decoding."""

    def encode(self, envelope: Envelope) -> bytes:
        """Encode envelope to bytes."""
        ...

    def decode(self, data: Union[bytes, str]) -> DecodeResult:
        """Decode bytes to envelope."""
        ...


class JSONCodec:
    """JSON message codec."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def encode(self, envelope: Envelope) -> bytes:
        """
        Encode envelope to JSON bytes.

        Raises:
            TypeError: If ``data`` or ``ref`` are not JSON serializable
        """
        return json.dumps(
            envelope.to_dict(),
            ensure_ascii=False,
            separators=(",", ":"),
        ).encode(self.encoding)

    def decode(self, data: Union[bytes, bytearray, memoryview, str]) -> DecodeResult:
        """Decode JSON bytes to envelope."""
        if isinstance(data, (bytes, bytearray, memoryview)):
            try:
                data = bytes(data).decode(self.encoding)
            except UnicodeDecodeError as e:
                return MalformedEnvelope(f"invalid {self.encoding}: {e.reason}")
        elif not isinstance(data, str):
            return MalformedEnvelope(f"unsupported frame type {type(data).__name__}")

        try:
            obj = json.loads(data)
        except ValueError as e:
            return MalformedEnvelope(f"invalid JSON: {e}")
        except RecursionError:
            return MalformedEnvelope("invalid JSON: nesting too deep")

        if not isinstance(obj, dict):
            return MalformedEnvelope(f"expected object, got {type(obj).__name__}")

        kind = obj.get("type")
        if not isinstance(kind, str):
            return MalformedEnvelope("'type' must be a string")
        if not kind:
            return MalformedEnvelope("'type' must not be empty")

        return Envelope.from_dict(obj)


_default_codec = JSONCodec()


def encode(type: str, data: Any = None, ref: Any = None) -> bytes:
    """Build and encode an envelope with the default codec."""
    return _default_codec.encode(Envelope(type=str(type), data=data, ref=ref))


def decode(data: Union[bytes, str]) -> DecodeResult:
    """Decode a frame with the default codec."""
    return _default_codec.decode(data)
