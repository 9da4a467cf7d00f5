"""
Connection - One duplex transport plus protocol state.

Lifecycle:

    UNAUTHENTICATED --(key frame ok)--> AUTHENTICATED --(close)--> CLOSED
           |                                                         ^
           +----------(bad frame / bad key / transport close)--------+

Accepting side: the first frame must equal the configured key (any
valid frame passes when no key is set). Initiating side: ``connect()``
sends the key right after the transport opens and is authenticated as
soon as that send succeeds.

Any failure while handling a frame closes the connection. Protocol
failures are never raised to application code; they surface only as a
``close`` event.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Set, Union, TYPE_CHECKING
import asyncio
import logging
import traceback
import uuid

from .config import ConnectionConfig
from .dispatch import Dispatcher, Filter, Handler
from .envelope import (
    Envelope,
    JSONCodec,
    MalformedEnvelope,
    MessageCodec,
    TYPE_AUTH_FAILED,
    TYPE_ERROR,
    TYPE_OK,
)
from .events import (
    CloseEvent,
    ConnectionEvent,
    Event,
    EventKind,
    MessageEvent,
    Observer,
    Observers,
    Subscription,
)
from .faults import (
    Fault,
    WS_AUTH_FAILED,
    WS_CONNECTION_CLOSED,
    WS_CONNECT_FAILED,
    WS_ENCODE_FAILED,
    WS_INVALID_SOCKET_DATA,
    WS_NOT_AUTHENTICATED,
    WS_SEND_FAILED,
)
from .transport.base import Transport, TransportClosed, TransportError
from .utils import as_bytes, buffers_equal, is_valid_socket_data

if TYPE_CHECKING:
    from .server import Server

logger = logging.getLogger("relayws.connection")

Key = Union[str, bytes]


class ConnectionState(str, Enum):
    """Connection lifecycle state."""
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


def normalize_error(err: Any, include_stack: bool = True) -> Any:
    """
    Convert a handler failure to a JSON-serializable value.

    Exceptions become ``{"name", "message", "stack"}`` (plus ``code`` for
    faults); anything else is stringified.
    """
    if not isinstance(err, BaseException):
        return str(err)

    data = {
        "name": type(err).__name__,
        "message": err.message if isinstance(err, Fault) else str(err),
    }
    if isinstance(err, Fault):
        data["code"] = err.code
    if include_stack:
        data["stack"] = "".join(
            traceback.format_exception(type(err), err, err.__traceback__)
        )
    return data


class Connection:
    """
    Protocol endpoint over one transport.

    Provides:
    - Envelope sending (send, ok, error)
    - Handler registration (on_message)
    - Lifecycle observation (observe, on_close)
    - Initiator handshake (connect, connect_to)
    """

    def __init__(
        self,
        transport: Transport,
        *,
        server: Optional[Server] = None,
        key: Optional[Key] = None,
        config: Optional[ConnectionConfig] = None,
        codec: Optional[MessageCodec] = None,
        connection_id: Optional[str] = None,
    ):
        """
        Initialize connection.

        Args:
            transport: Underlying duplex transport (owned by this connection)
            server: Accepting server; supplies key, config, peer registry
                and server-wide handlers
            key: Shared secret expected as first frame (accepting side)
            config: Connection options
            codec: Envelope codec (default: JSON)
            connection_id: Identifier used in logs (default: uuid4)
        """
        self.transport = transport
        self.server = server
        self.connection_id = connection_id or str(uuid.uuid4())

        if server is not None:
            self.config = config or server.config
            # An empty key means no key
            self._key = (as_bytes(key) or None) if key is not None else server.key
            self.dispatcher = Dispatcher(parent=server.dispatcher)
        else:
            self.config = config or ConnectionConfig()
            self._key = as_bytes(key) or None
            self.dispatcher = Dispatcher()

        self.codec = codec or JSONCodec()
        self.observers = Observers()

        self.state = ConnectionState.UNAUTHENTICATED
        self._initiator = False
        self._reader: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._closed = asyncio.Event()
        self._close_emitted = False

        self.created_at = datetime.now(timezone.utc)
        self.last_activity = self.created_at

        # Metrics
        self.messages_sent = 0
        self.messages_received = 0
        self.bytes_sent = 0
        self.bytes_received = 0

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def from_url(cls, url: str, **options: Any) -> Connection:
        """
        Create an unconnected initiator for a websocket URL.

        Args:
            url: ``ws://`` or ``wss://`` URL
            **options: Passed to ``websockets`` when connecting
        """
        from .transport.ws import WebSocketTransport

        return cls(WebSocketTransport(url=url, **options))

    @classmethod
    async def connect_to(cls, url: str, key: Optional[Key] = None, **options: Any) -> Connection:
        """
        Open a connection to a remote host and send the key.

        Returns:
            Authenticated connection
        """
        conn = cls.from_url(url, **options)
        await conn.connect(key)
        return conn

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def key(self) -> Optional[bytes]:
        """Key expected from the remote (accepting side)."""
        return self._key

    @property
    def is_authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED

    @property
    def is_closed(self) -> bool:
        return self.state is ConnectionState.CLOSED

    @property
    def is_initiator(self) -> bool:
        return self._initiator

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    async def connect(self, key: Optional[Key] = None) -> None:
        """
        Open the transport and send the key (initiating side).

        An empty binary frame is sent when no key is given. Resolves once
        the key has been written.

        Raises:
            ProtocolFault: WS_CONNECT_FAILED if opening or the key send fails
        """
        if self.state is ConnectionState.CLOSED:
            raise WS_CONNECTION_CLOSED()

        self._initiator = True
        try:
            await self.transport.open()
            await self.transport.send(key if key is not None else b"")
        except TransportError as e:
            logger.warning(f"Connection {self.connection_id} could not connect: {e}")
            await self.close()
            raise WS_CONNECT_FAILED(str(e)) from e

        self.state = ConnectionState.AUTHENTICATED
        logger.info(f"Connection {self.connection_id} connected")
        self.start()

    async def send(self, type: str, data: Any = None, ref: Any = None) -> None:
        """
        Send an envelope to the remote.

        Args:
            type: Message type
            data: Optional payload
            ref: Optional correlation token

        Raises:
            ProtocolFault: WS_CONNECTION_CLOSED, WS_NOT_AUTHENTICATED,
                WS_ENCODE_FAILED or WS_SEND_FAILED
        """
        if self.state is ConnectionState.CLOSED:
            raise WS_CONNECTION_CLOSED()
        if self._initiator and self.state is ConnectionState.UNAUTHENTICATED:
            raise WS_NOT_AUTHENTICATED()

        try:
            frame = self.codec.encode(Envelope(type=str(type), data=data, ref=ref))
        except (TypeError, ValueError) as e:
            raise WS_ENCODE_FAILED(str(e)) from e

        try:
            await self.transport.send(frame.decode("utf-8") if self.config.text_frames else frame)
        except TransportError as e:
            logger.debug(f"Send on {self.connection_id} failed: {e}")
            await self.close()
            raise WS_SEND_FAILED(str(e)) from e

        self.messages_sent += 1
        self.bytes_sent += len(frame)
        self.last_activity = datetime.now(timezone.utc)

    async def ok(self, data: Any = None, ref: Any = None) -> None:
        """Send an ``ok`` envelope."""
        await self.send(TYPE_OK, data, ref)

    async def error(self, err: Any, ref: Any = None) -> None:
        """Send an ``error`` envelope with the normalized error."""
        await self.send(TYPE_ERROR, normalize_error(err, self.config.include_error_stack), ref)

    def on_message(self, handler: Handler, filter: Optional[Filter] = None) -> Subscription:
        """
        Register a message handler for this connection.

        The handler's return value (or awaited result) is sent back as an
        ``ok`` reply; an exception is sent back as an ``error`` reply.
        Both carry the inbound ``ref``.
        """
        return self.dispatcher.register(handler, filter)

    def observe(self, kind: EventKind, callback: Observer) -> Subscription:
        """Register a lifecycle observer."""
        return self.observers.subscribe(kind, callback)

    def on_close(self, callback: Observer) -> Subscription:
        return self.observe(EventKind.CLOSE, callback)

    async def close(self) -> None:
        """
        Close the connection.

        Removes it from the peer registry and closes the transport.
        Closing an already closed connection does nothing.
        """
        if self.state is ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSED
        if self.server is not None:
            self.server.registry.remove(self)

        try:
            await self.transport.close()
        except TransportError as e:
            logger.debug(f"Transport close for {self.connection_id} failed: {e}")

        logger.info(f"Connection closed: {self.connection_id}")
        self._finish()

    async def wait_closed(self) -> None:
        """Wait until the connection is closed."""
        await self._closed.wait()

    # ------------------------------------------------------------------
    # Frame handling
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Start the receive loop in a task (idempotent)."""
        if self._reader is None:
            self._reader = asyncio.ensure_future(self.serve())
        return self._reader

    async def serve(self) -> None:
        """Receive and handle frames until the connection closes."""
        try:
            while self.state is not ConnectionState.CLOSED:
                try:
                    frame = await self.transport.receive()
                except TransportClosed:
                    logger.debug(f"Transport of {self.connection_id} closed by remote")
                    break
                except TransportError as e:
                    logger.warning(f"Transport of {self.connection_id} failed: {e}")
                    break

                try:
                    await self._handle_frame(frame)
                except Fault as e:
                    logger.log(e.severity.log_level, f"Closing {self.connection_id}: {e}")
                    await self.close()
                except Exception as e:
                    logger.error(f"Frame handling error on {self.connection_id}: {e}", exc_info=True)
                    await self.close()
        finally:
            await self.close()

    async def _handle_frame(self, frame: Any) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        if not is_valid_socket_data(frame):
            raise WS_INVALID_SOCKET_DATA(type(frame).__name__)

        self._record_received(frame)

        if self.state is ConnectionState.UNAUTHENTICATED:
            await self._authenticate(frame)
            return

        result = self.codec.decode(frame)
        if isinstance(result, MalformedEnvelope):
            raise result.fault()

        self.dispatcher.dispatch(result, self)
        self._emit(MessageEvent(envelope=result, connection=self))

    async def _authenticate(self, frame: Any) -> None:
        if self._key is not None and not buffers_equal(as_bytes(frame), self._key):
            if self.config.auth_failed_notice:
                try:
                    await self.send(TYPE_AUTH_FAILED)
                except Fault as e:
                    logger.debug(f"auth_failed notice to {self.connection_id} not delivered: {e}")
            raise WS_AUTH_FAILED()

        self.state = ConnectionState.AUTHENTICATED
        if self.server is not None:
            self.server.registry.add(self)
        logger.info(f"Connection {self.connection_id} authenticated")

        if self.config.acknowledge_auth:
            await self.ok()

        self._emit(ConnectionEvent(connection=self))

    def _record_received(self, frame: Any) -> None:
        self.messages_received += 1
        self.bytes_received += len(as_bytes(frame))
        self.last_activity = datetime.now(timezone.utc)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def spawn(self, coro) -> asyncio.Task:
        """Run a coroutine owned by this connection."""
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight handler task."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _emit(self, event: Event) -> None:
        self.observers.emit(event)
        if self.server is not None:
            self.server.observers.emit(event)

    def _finish(self) -> None:
        if self._close_emitted:
            return
        self._close_emitted = True
        self._closed.set()

        if self.server is not None:
            self.server.forget(self)

        try:
            self._emit(CloseEvent(connection=self))
        except Exception as e:
            logger.error(f"Close observer error on {self.connection_id}: {e}", exc_info=True)

    async def __aenter__(self) -> Connection:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def __repr__(self) -> str:
        return (
            f"Connection(id={self.connection_id}, "
            f"state={self.state.value}, "
            f"initiator={self._initiator})"
        )
