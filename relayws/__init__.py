"""
relayws - Bidirectional message protocol over websockets

Typed, correlated request/response envelopes over a raw duplex
connection:
- Shared-key authentication on the first frame
- Ordered (filter, handler) dispatch with ok/error replies
- Correlation by ``ref`` instead of ordering
- Peer registry with best-effort broadcast
- Transports for websockets, ASGI and in-process pairs
"""

__version__ = "0.5.0"

from .envelope import (
    Envelope,
    MalformedEnvelope,
    JSONCodec,
    MessageCodec,
    encode,
    decode,
    TYPE_OK,
    TYPE_ERROR,
    TYPE_AUTH_FAILED,
)

from .events import (
    EventKind,
    ConnectionEvent,
    MessageEvent,
    CloseEvent,
    Observers,
    Subscription,
)

from .dispatch import (
    Dispatcher,
    HandlerContext,
    type_is,
)

from .connection import (
    Connection,
    ConnectionState,
    normalize_error,
)

from .registry import (
    PeerRegistry,
    BroadcastResult,
)

from .server import Server

from .config import (
    ConnectionConfig,
    ServerConfig,
    ConfigLoader,
    ConfigError,
)

from .faults import (
    Fault,
    ProtocolFault,
)

from .utils import (
    as_bytes,
    buffers_equal,
    is_nil,
    is_valid_socket_data,
)

__all__ = [
    # Envelope
    "Envelope",
    "MalformedEnvelope",
    "JSONCodec",
    "MessageCodec",
    "encode",
    "decode",
    "TYPE_OK",
    "TYPE_ERROR",
    "TYPE_AUTH_FAILED",

    # Events
    "EventKind",
    "ConnectionEvent",
    "MessageEvent",
    "CloseEvent",
    "Observers",
    "Subscription",

    # Dispatch
    "Dispatcher",
    "HandlerContext",
    "type_is",

    # Connection
    "Connection",
    "ConnectionState",
    "normalize_error",

    # Server
    "Server",
    "PeerRegistry",
    "BroadcastResult",

    # Config
    "ConnectionConfig",
    "ServerConfig",
    "ConfigLoader",
    "ConfigError",

    # Faults
    "Fault",
    "ProtocolFault",

    # Utils
    "as_bytes",
    "buffers_equal",
    "is_nil",
    "is_valid_socket_data",
]
