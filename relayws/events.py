"""
Observer events - Typed notifications for connection lifecycle.

Three event kinds exist and no others:

- ``CONNECTION``: a peer passed authentication (accepting side)
- ``MESSAGE``: a valid envelope arrived
- ``CLOSE``: a connection reached its closed state (emitted once)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set, Union, TYPE_CHECKING
import asyncio
import itertools
import inspect
import logging

if TYPE_CHECKING:
    from .connection import Connection
    from .envelope import Envelope

logger = logging.getLogger("relayws.events")


class Subscription:
    """
    Disposable registration token.

    Disposing removes exactly the registration that produced the token.
    Can be used as a context manager.
    """

    def __init__(self, dispose: Callable[[], None]):
        self._dispose = dispose
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """Remove the registration. Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True
        self._dispose()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()


class EventKind(str, Enum):
    """Observable event kinds."""
    CONNECTION = "connection"
    MESSAGE = "message"
    CLOSE = "close"


@dataclass(frozen=True)
class ConnectionEvent:
    """A peer completed authentication."""
    connection: Connection
    kind: EventKind = field(default=EventKind.CONNECTION, init=False)


@dataclass(frozen=True)
class MessageEvent:
    """A valid envelope was received."""
    envelope: Envelope
    connection: Connection
    kind: EventKind = field(default=EventKind.MESSAGE, init=False)


@dataclass(frozen=True)
class CloseEvent:
    """A connection was closed."""
    connection: Connection
    kind: EventKind = field(default=EventKind.CLOSE, init=False)


Event = Union[ConnectionEvent, MessageEvent, CloseEvent]
Observer = Callable[[Event], Any]


class Observers:
    """
    Per-kind observer registry.

    Callbacks are stored by id so that a callback disposing itself (or
    another one) during ``emit`` does not disturb the delivery in
    progress. Callbacks may be coroutine functions; their coroutines are
    scheduled on the running loop and failures are logged.
    """

    def __init__(self):
        self._callbacks: Dict[EventKind, Dict[int, Observer]] = {
            kind: {} for kind in EventKind
        }
        self._ids = itertools.count(1)
        self._pending: Set[asyncio.Future] = set()

    def subscribe(self, kind: EventKind, callback: Observer) -> Subscription:
        """
        Register callback for one event kind.

        Args:
            kind: Event kind to observe
            callback: Callable receiving the event object

        Returns:
            Subscription that removes the callback when disposed
        """
        kind = EventKind(kind)
        callback_id = next(self._ids)
        self._callbacks[kind][callback_id] = callback

        def dispose():
            self._callbacks[kind].pop(callback_id, None)

        return Subscription(dispose)

    def count(self, kind: Optional[EventKind] = None) -> int:
        """Number of registered callbacks (for one kind or all)."""
        if kind is not None:
            return len(self._callbacks[EventKind(kind)])
        return sum(len(callbacks) for callbacks in self._callbacks.values())

    def emit(self, event: Event) -> None:
        """
        Deliver event to every callback registered for its kind.

        Exceptions from synchronous callbacks propagate to the caller.
        """
        callbacks = self._callbacks[event.kind]
        for callback_id, callback in list(callbacks.items()):
            if callback_id not in callbacks:
                continue
            result = callback(event)
            if inspect.isawaitable(result):
                self._schedule(result, event)

    def _schedule(self, awaitable, event: Event) -> None:
        future = asyncio.ensure_future(awaitable)
        self._pending.add(future)

        def done(fut: asyncio.Future):
            self._pending.discard(fut)
            if not fut.cancelled() and fut.exception() is not None:
                logger.error(
                    f"Observer for {event.kind.value} event failed",
                    exc_info=fut.exception(),
                )

        future.add_done_callback(done)
