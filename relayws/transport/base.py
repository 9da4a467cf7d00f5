"""
Transport Base - Protocol for the raw duplex channel under a connection.

A transport delivers whole frames (text as ``str``, binary as ``bytes``)
and accepts whole frames for sending. It knows nothing about envelopes
or authentication.
"""

from __future__ import annotations

from typing import Any, Protocol, Union

Frame = Union[bytes, str]


class TransportError(Exception):
    """The underlying channel failed."""


class TransportClosed(TransportError):
    """The underlying channel is closed."""


class Transport(Protocol):
    """
    Transport protocol.

    Implementations:
    - WebSocketTransport: ``websockets`` client and server connections
    - ASGITransport: an ASGI websocket scope (uvicorn, hypercorn, ...)
    - MemoryTransport: in-process linked pair (dev/testing)
    """

    async def open(self) -> None:
        """
        Open the channel (initiating side).

        Transports that are created already open treat this as a no-op.

        Raises:
            TransportError: If the channel cannot be opened
        """
        ...

    async def send(self, data: Frame) -> None:
        """
        Write one frame.

        Raises:
            TransportClosed: If the channel is closed
            TransportError: If the write fails
        """
        ...

    async def receive(self) -> Any:
        """
        Wait for the next frame.

        Returns whatever the channel delivered; the connection validates it.

        Raises:
            TransportClosed: When the channel has closed
        """
        ...

    async def close(self) -> None:
        """Request shutdown of the channel. Idempotent."""
        ...
