"""
Faults - Structured fault handling for relayws.

Core exports:
- Fault: Base fault class
- FaultDomain: Domain enumeration
- Severity: Severity levels
- ProtocolFault and the WS_* factories
"""

from .core import (
    Fault,
    FaultDomain,
    Severity,
)

from .protocol import (
    ProtocolFault,
    WS_CONNECTION_CLOSED,
    WS_NOT_AUTHENTICATED,
    WS_CONNECT_FAILED,
    WS_SEND_FAILED,
    WS_ENCODE_FAILED,
    WS_INVALID_SOCKET_DATA,
    WS_MALFORMED_FRAME,
    WS_AUTH_FAILED,
)

__all__ = [
    "Fault",
    "FaultDomain",
    "Severity",
    "ProtocolFault",
    "WS_CONNECTION_CLOSED",
    "WS_NOT_AUTHENTICATED",
    "WS_CONNECT_FAILED",
    "WS_SEND_FAILED",
    "WS_ENCODE_FAILED",
    "WS_INVALID_SOCKET_DATA",
    "WS_MALFORMED_FRAME",
    "WS_AUTH_FAILED",
]
