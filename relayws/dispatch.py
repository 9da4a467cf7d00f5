"""
Handler Registry & Dispatcher.

Handlers are kept in insertion order, keyed by a stable id. Dispatch
iterates over a snapshot and skips entries disposed after the snapshot
was taken, so handlers may register or dispose handlers while an
envelope is being routed.

Every matching handler runs and produces its own reply:

    {"type": "ok", "data": <result>, "ref": <inbound ref>}
    {"type": "error", "data": <normalized error>, "ref": <inbound ref>}
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING
import asyncio
import inspect
import itertools
import logging

from .envelope import Envelope
from .events import Subscription

if TYPE_CHECKING:
    from .connection import Connection
    from .server import Server

logger = logging.getLogger("relayws.dispatch")


@dataclass
class HandlerContext:
    """Context passed to a message handler."""
    envelope: Envelope
    connection: Connection

    @property
    def server(self) -> Optional[Server]:
        """Accepting server, if the connection belongs to one."""
        return self.connection.server

    @property
    def data(self) -> Any:
        return self.envelope.data

    @property
    def ref(self) -> Any:
        return self.envelope.ref


Filter = Callable[[Envelope], bool]
Handler = Callable[[HandlerContext], Any]


def accept_all(envelope: Envelope) -> bool:
    return True


def type_is(*types: str) -> Filter:
    """Build a filter matching envelopes of the given types."""
    wanted = frozenset(types)

    def _filter(envelope: Envelope) -> bool:
        return envelope.type in wanted

    return _filter


@dataclass(eq=False)
class HandlerEntry:
    """One (filter, handler) registration."""
    handler: Handler
    filter: Filter = accept_all
    active: bool = field(default=True)


class Dispatcher:
    """
    Ordered (filter, handler) registry.

    A dispatcher may have a parent; the parent's handlers run before this
    dispatcher's own. Servers use this to share handlers across all of
    their connections.
    """

    def __init__(self, parent: Optional[Dispatcher] = None):
        self.parent = parent
        self._entries: Dict[int, HandlerEntry] = {}
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._entries)

    def register(self, handler: Handler, filter: Optional[Filter] = None) -> Subscription:
        """
        Register a message handler.

        Args:
            handler: Callable receiving a ``HandlerContext``; may be async
            filter: Optional predicate over the envelope (default: match all)

        Returns:
            Subscription that unregisters exactly this entry
        """
        entry = HandlerEntry(handler=handler, filter=filter or accept_all)
        entry_id = next(self._ids)
        self._entries[entry_id] = entry

        def dispose():
            entry.active = False
            self._entries.pop(entry_id, None)

        return Subscription(dispose)

    def snapshot(self) -> List[HandlerEntry]:
        """Entries in dispatch order (parent chain first)."""
        entries = self.parent.snapshot() if self.parent else []
        entries.extend(self._entries.values())
        return entries

    def dispatch(self, envelope: Envelope, connection: Connection) -> List[asyncio.Task]:
        """
        Route an envelope to every matching handler.

        Handler outcomes are settled in tasks; this method returns as soon
        as every matching handler has been started. If a filter or a
        handler raises synchronously, the remaining handlers are skipped
        and an error reply is sent for the failure.

        Returns:
            Tasks settling the replies
        """
        tasks: List[asyncio.Task] = []
        ref = envelope.ref

        for entry in self.snapshot():
            if not entry.active:
                continue
            try:
                if not entry.filter(envelope):
                    continue
                outcome = entry.handler(HandlerContext(envelope=envelope, connection=connection))
            except Exception as e:
                logger.debug(f"Handler for {envelope.type!r} failed synchronously: {e!r}")
                tasks.append(connection.spawn(_reply(connection, connection.error(e, ref))))
                break

            tasks.append(connection.spawn(_settle(connection, outcome, ref)))

        return tasks


async def _settle(connection: Connection, outcome: Any, ref: Any) -> None:
    """Await a handler outcome and send the correlated reply."""
    try:
        result = await outcome if inspect.isawaitable(outcome) else outcome
    except Exception as e:
        await _reply(connection, connection.error(e, ref))
        return

    await _reply(connection, connection.ok(result, ref))


async def _reply(connection: Connection, send: Awaitable[None]) -> None:
    """Send a reply; a failed reply closes the connection."""
    try:
        await send
    except Exception as e:
        logger.debug(f"Reply on {connection.connection_id} failed: {e}")
        await connection.close()
