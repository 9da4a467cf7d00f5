"""
Protocol Faults - Structured errors for connection and transport operations.

Protocol-level failures (malformed frames, failed authentication) are
never raised to application code; they close the connection. The
factories for them exist so the close reason can be logged with a stable
code. Caller-facing failures (sending on a closed connection, failed
writes, failed connects) are raised as these faults.
"""

from .core import Fault, FaultDomain, Severity


class ProtocolFault(Fault):
    """Base fault for connection and transport operations."""

    def __init__(
        self,
        code: str,
        message: str,
        severity: Severity = Severity.WARN,
        retryable: bool = False,
        **kwargs
    ):
        super().__init__(
            code=code,
            message=message,
            domain=FaultDomain.NETWORK,
            severity=severity,
            retryable=retryable,
            **kwargs
        )


# Connection faults

WS_CONNECTION_CLOSED = lambda reason="": ProtocolFault(
    code="WS_CONNECTION_CLOSED",
    message=f"Connection closed{': ' + reason if reason else ''}",
    severity=Severity.INFO,
    metadata={'ws_close_code': 1000},
)

WS_NOT_AUTHENTICATED = lambda: ProtocolFault(
    code="WS_NOT_AUTHENTICATED",
    message="Connection has not sent its key yet",
    severity=Severity.WARN,
    retryable=True,
)

WS_CONNECT_FAILED = lambda reason="": ProtocolFault(
    code="WS_CONNECT_FAILED",
    message=f"Could not connect: {reason}",
    severity=Severity.ERROR,
    retryable=True,
)

# Send faults

WS_SEND_FAILED = lambda reason="": ProtocolFault(
    code="WS_SEND_FAILED",
    message=f"Failed to send message: {reason}",
    severity=Severity.ERROR,
)

WS_ENCODE_FAILED = lambda reason="": ProtocolFault(
    code="WS_ENCODE_FAILED",
    message=f"Message could not be encoded: {reason}",
    severity=Severity.ERROR,
)

# Inbound frame faults

WS_INVALID_SOCKET_DATA = lambda kind="": ProtocolFault(
    code="WS_INVALID_SOCKET_DATA",
    message=f"Frame is not text or binary data: {kind}",
    metadata={'ws_close_code': 1003},
)

WS_MALFORMED_FRAME = lambda reason="": ProtocolFault(
    code="WS_MALFORMED_FRAME",
    message=f"Malformed envelope: {reason}",
    metadata={'ws_close_code': 1003},
)

WS_AUTH_FAILED = lambda: ProtocolFault(
    code="WS_AUTH_FAILED",
    message="Key sent by remote does not match",
    metadata={'ws_close_code': 1008},
)
