"""
ASGI integration - Share one port between an HTTP app and a Server.

Websocket scopes (optionally restricted to one path) are handed to the
server; every other scope goes to the wrapped ASGI application.

Example:
    ```python
    server = Server(key="s3cret")
    app = mount(server, http_app, path="/ws")
    run(app, port=8080)
    ```
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional
import logging

import uvicorn

from .config import ServerConfig
from .connection import Key
from .server import Server
from .transport.asgi import ASGITransport
from .transport.base import TransportClosed

logger = logging.getLogger("relayws.asgi")

ASGIApp = Callable[[Dict[str, Any], Callable, Callable], Awaitable[None]]


class SocketMount:
    """ASGI application routing websocket scopes to a ``Server``."""

    def __init__(self, server: Server, app: Optional[ASGIApp] = None, path: Optional[str] = None):
        self.server = server
        self.app = app
        self.path = path

    def matches(self, scope: Dict[str, Any]) -> bool:
        if scope["type"] != "websocket":
            return False
        return self.path is None or scope.get("path") == self.path

    async def __call__(self, scope: Dict[str, Any], receive: Callable, send: Callable) -> None:
        if self.matches(scope):
            transport = ASGITransport(receive, send)
            try:
                await transport.accept()
            except TransportClosed as e:
                logger.debug(f"Websocket handshake aborted: {e}")
                return
            await self.server.handle(transport)
            return

        if self.app is not None:
            await self.app(scope, receive, send)
            return

        await self._fallback(scope, receive, send)

    async def _fallback(self, scope: Dict[str, Any], receive: Callable, send: Callable) -> None:
        kind = scope["type"]

        if kind == "http":
            await send({
                "type": "http.response.start",
                "status": 404,
                "headers": [(b"content-type", b"text/plain; charset=utf-8")],
            })
            await send({"type": "http.response.body", "body": b"Not Found"})

        elif kind == "websocket":
            # No matching websocket path - reject handshake
            await send({"type": "websocket.close", "code": 1003})

        elif kind == "lifespan":
            while True:
                message = await receive()
                if message["type"] == "lifespan.startup":
                    await send({"type": "lifespan.startup.complete"})
                elif message["type"] == "lifespan.shutdown":
                    await self.server.close()
                    await send({"type": "lifespan.shutdown.complete"})
                    return


def mount(server: Server, app: Optional[ASGIApp] = None, path: Optional[str] = None) -> SocketMount:
    """Wrap an ASGI app so that ``server`` handles its websocket traffic."""
    return SocketMount(server, app, path)


def with_asgi(
    app: Optional[ASGIApp] = None,
    *,
    key: Optional[Key] = None,
    config: Optional[ServerConfig] = None,
) -> SocketMount:
    """
    Create a server and mount it next to an ASGI app.

    The websocket path is taken from ``config.path`` (all paths if unset).
    """
    config = config or ServerConfig()
    return SocketMount(Server(key, config=config), app, config.path)


def run(app: ASGIApp, host: str = "127.0.0.1", port: int = 8080, **options: Any) -> None:
    """Serve an ASGI app with uvicorn (blocking)."""
    uvicorn.run(app, host=host, port=port, **options)


async def serve(app: ASGIApp, host: str = "127.0.0.1", port: int = 8080, **options: Any) -> None:
    """Serve an ASGI app with uvicorn on the running event loop."""
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, **options))
    await server.serve()
