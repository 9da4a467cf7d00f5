"""
WebSocket Transport - Adapter over the ``websockets`` library.

Wraps either a server-side connection handed to a ``websockets.serve``
handler, or a client connection opened lazily from a URL.
"""

from __future__ import annotations

from typing import Any, Optional
import logging

from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidURI, WebSocketException

from .base import Frame, TransportClosed, TransportError

logger = logging.getLogger("relayws.transport.ws")


class WebSocketTransport:
    """Transport backed by a ``websockets`` connection."""

    def __init__(self, websocket: Any = None, *, url: Optional[str] = None, **options: Any):
        """
        Args:
            websocket: An open ``websockets`` connection (server side)
            url: URL to connect to on ``open()`` (client side)
            **options: Passed to ``websockets.asyncio.client.connect``
        """
        if websocket is None and url is None:
            raise ValueError("Either websocket or url is required")

        self.websocket = websocket
        self.url = url
        self.options = options

    async def open(self) -> None:
        if self.websocket is not None:
            return

        try:
            self.websocket = await connect(self.url, **self.options)
        except (OSError, InvalidURI, WebSocketException) as e:
            raise TransportError(f"cannot open {self.url}: {e}") from e

        logger.debug(f"Opened websocket to {self.url}")

    async def send(self, data: Frame) -> None:
        if self.websocket is None:
            raise TransportClosed("websocket is not open")
        try:
            await self.websocket.send(data)
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e
        except (OSError, WebSocketException) as e:
            raise TransportError(str(e)) from e

    async def receive(self) -> Any:
        if self.websocket is None:
            raise TransportClosed("websocket is not open")
        try:
            return await self.websocket.recv()
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e
        except (OSError, WebSocketException) as e:
            raise TransportError(str(e)) from e

    async def close(self) -> None:
        if self.websocket is None:
            return
        try:
            await self.websocket.close()
        except (OSError, WebSocketException) as e:
            raise TransportError(str(e)) from e

    def __repr__(self) -> str:
        target = self.url or getattr(self.websocket, "remote_address", None)
        return f"WebSocketTransport({target!r})"
