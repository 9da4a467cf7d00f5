"""
In-Memory Transport - Linked pair of in-process transports.

For development and testing. Frames written to one end arrive at the
other end in order. Closing either end closes both.
"""

from __future__ import annotations

from typing import Any, List, Optional, Tuple
import asyncio

from .base import Frame, TransportClosed

_CLOSED = object()


class MemoryTransport:
    """One end of an in-process duplex channel."""

    def __init__(self):
        self.peer: Optional[MemoryTransport] = None
        self.closed = False
        self.sent: List[Frame] = []
        self._inbox: asyncio.Queue = asyncio.Queue()

    @classmethod
    def pair(cls) -> Tuple[MemoryTransport, MemoryTransport]:
        """Create two linked ends."""
        a, b = cls(), cls()
        a.peer, b.peer = b, a
        return a, b

    async def open(self) -> None:
        if self.closed:
            raise TransportClosed("memory transport is closed")

    async def send(self, data: Frame) -> None:
        if self.closed or self.peer is None or self.peer.closed:
            raise TransportClosed("memory transport is closed")
        self.sent.append(data)
        self.peer._inbox.put_nowait(data)

    async def receive(self) -> Any:
        item = await self._inbox.get()
        if item is _CLOSED:
            # Keep the marker so later receives fail the same way
            self._inbox.put_nowait(_CLOSED)
            raise TransportClosed("memory transport is closed")
        return item

    def feed(self, frame: Any) -> None:
        """Deliver an arbitrary frame to this end, as if the peer sent it."""
        self._inbox.put_nowait(frame)

    async def close(self) -> None:
        self._shutdown()
        if self.peer is not None:
            self.peer._shutdown()

    def _shutdown(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._inbox.put_nowait(_CLOSED)
