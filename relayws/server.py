"""
Server - Accepting endpoint.

Wraps every accepted transport in a ``Connection`` that must send the
shared key as its first frame. Authenticated connections are tracked in
the peer registry, which backs ``send()`` (broadcast) and ``clients``.

Example:
    ```python
    server = Server(key="s3cret")

    server.on_message(
        lambda ctx: ctx.data * 2,
        type_is("Ping"),
    )

    await server.listen("127.0.0.1", 8080)
    ```
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union
import asyncio
import logging

from websockets.asyncio.server import serve

from .config import ServerConfig
from .connection import Connection, Key
from .dispatch import Dispatcher, Filter, Handler
from .events import EventKind, Observer, Observers, Subscription
from .registry import BroadcastResult, PeerRegistry
from .transport.base import Transport
from .transport.ws import WebSocketTransport
from .utils import as_bytes

logger = logging.getLogger("relayws.server")


class Server:
    """
    Accepting side of the protocol.

    Manages:
    - Key check for new connections
    - Peer registry and broadcast
    - Server-wide message handlers (run before per-connection handlers)
    - Lifecycle events for all of its connections
    """

    def __init__(
        self,
        key: Optional[Key] = None,
        *,
        config: Optional[ServerConfig] = None,
        registry: Optional[PeerRegistry] = None,
    ):
        """
        Initialize server.

        Args:
            key: Shared secret (overrides ``config.key``); ``None`` or empty disables the check
            config: Server options
            registry: Peer registry (default: new PeerRegistry)
        """
        self.config = config or ServerConfig()
        self._key = as_bytes(key if key is not None else self.config.key) or None
        self.registry = registry or PeerRegistry()
        self.dispatcher = Dispatcher()
        self.observers = Observers()

        # Every live connection, authenticated or not
        self._connections: Dict[str, Connection] = {}
        self._listener = None

    @property
    def key(self) -> Optional[bytes]:
        """Key as bytes (``str`` keys are UTF-8 encoded)."""
        return self._key

    @property
    def clients(self) -> List[Connection]:
        """Authenticated connections."""
        return self.registry.connections()

    @property
    def connections(self) -> List[Connection]:
        """All open connections, including ones still authenticating."""
        return list(self._connections.values())

    def accept(self, transport: Transport) -> Connection:
        """
        Take ownership of an accepted transport and start receiving.

        Returns:
            The new (unauthenticated) connection
        """
        conn = Connection(transport, server=self)
        self._connections[conn.connection_id] = conn
        logger.info(f"Accepted connection {conn.connection_id}")
        conn.start()
        return conn

    async def handle(self, transport: Transport) -> None:
        """Accept a transport and wait until its connection closes."""
        conn = self.accept(transport)
        await conn.wait_closed()

    def forget(self, connection: Connection) -> None:
        """Drop a closed connection from bookkeeping."""
        self._connections.pop(connection.connection_id, None)
        self.registry.remove(connection)

    def on_message(self, handler: Handler, filter: Optional[Filter] = None) -> Subscription:
        """
        Register a handler for envelopes from any connection.

        The handler context exposes ``connection`` and ``server``.
        """
        return self.dispatcher.register(handler, filter)

    def observe(self, kind: Union[EventKind, str], callback: Observer) -> Subscription:
        """Register an observer for events of all connections."""
        return self.observers.subscribe(kind, callback)

    def on_connection(self, callback: Observer) -> Subscription:
        return self.observe(EventKind.CONNECTION, callback)

    def on_close(self, callback: Observer) -> Subscription:
        return self.observe(EventKind.CLOSE, callback)

    async def send(self, type: str, data: Any = None, ref: Any = None) -> BroadcastResult:
        """Send an envelope to all authenticated connections."""
        return await self.registry.broadcast(type, data, ref)

    async def listen(self, host: Optional[str] = None, port: Optional[int] = None) -> None:
        """
        Start a dedicated websocket listener.

        Args:
            host: Bind address (default: ``config.host``)
            port: Port (default: ``config.port``)
        """
        if self._listener is not None:
            raise RuntimeError("Server is already listening")

        host = host if host is not None else self.config.host
        port = port if port is not None else self.config.port

        async def handler(websocket):
            await self.handle(WebSocketTransport(websocket))

        self._listener = await serve(handler, host, port)
        logger.info(f"Listening on ws://{host}:{port}")

    @property
    def sockets(self) -> list:
        """Listening sockets (empty when not listening)."""
        if self._listener is None:
            return []
        return list(self._listener.sockets)

    async def serve_forever(self) -> None:
        """Listen (if not already) and block until closed."""
        if self._listener is None:
            await self.listen()
        await self._listener.wait_closed()

    async def close(self) -> None:
        """Stop listening and close every connection."""
        if self._listener is not None:
            self._listener.close()
            await self._listener.wait_closed()
            self._listener = None

        connections = self.connections
        if connections:
            await asyncio.gather(*(c.close() for c in connections), return_exceptions=True)

        logger.info("Server closed")

    async def __aenter__(self) -> Server:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
