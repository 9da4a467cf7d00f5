"""
Transports - Raw duplex channels under a connection.
"""

from .base import Frame, Transport, TransportClosed, TransportError
from .asgi import ASGITransport
from .memory import MemoryTransport
from .ws import WebSocketTransport

__all__ = [
    "Frame",
    "Transport",
    "TransportError",
    "TransportClosed",
    "ASGITransport",
    "MemoryTransport",
    "WebSocketTransport",
]
