"""
ASGI Transport - Adapter over an ASGI websocket scope.

Lets a connection run inside any ASGI server (uvicorn, hypercorn) so the
protocol can share a port with an HTTP application.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict
import logging

from .base import Frame, TransportClosed, TransportError

logger = logging.getLogger("relayws.transport.asgi")

Receive = Callable[[], Awaitable[Dict[str, Any]]]
Send = Callable[[Dict[str, Any]], Awaitable[None]]


class ASGITransport:
    """Transport over ASGI ``receive``/``send`` callables."""

    def __init__(self, receive: Receive, send: Send, close_code: int = 1000):
        self._receive = receive
        self._send = send
        self.close_code = close_code
        self.accepted = False
        self.closed = False

    async def accept(self) -> None:
        """
        Complete the websocket handshake.

        Raises:
            TransportClosed: If the client disconnected before the handshake
        """
        message = await self._receive()
        if message["type"] != "websocket.connect":
            self.closed = True
            raise TransportClosed(f"unexpected ASGI message {message['type']!r}")

        await self._asgi_send({"type": "websocket.accept"})
        self.accepted = True

    async def open(self) -> None:
        if not self.accepted:
            await self.accept()

    async def send(self, data: Frame) -> None:
        if self.closed:
            raise TransportClosed("websocket is closed")

        if isinstance(data, str):
            await self._asgi_send({"type": "websocket.send", "text": data})
        else:
            await self._asgi_send({"type": "websocket.send", "bytes": bytes(data)})

    async def receive(self) -> Any:
        if self.closed:
            raise TransportClosed("websocket is closed")

        message = await self._receive()
        kind = message["type"]

        if kind == "websocket.receive":
            if message.get("bytes") is not None:
                return message["bytes"]
            # Neither text nor bytes is an invalid frame; the connection rejects it
            return message.get("text")

        if kind == "websocket.disconnect":
            self.closed = True
            raise TransportClosed(f"client disconnected (code {message.get('code', 1000)})")

        raise TransportError(f"unexpected ASGI message {kind!r}")

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._asgi_send({"type": "websocket.close", "code": self.close_code})

    async def _asgi_send(self, message: Dict[str, Any]) -> None:
        try:
            await self._send(message)
        except (OSError, RuntimeError) as e:
            self.closed = True
            raise TransportClosed(str(e)) from e
