"""
Peer Registry - Authenticated connections of an accepting server.

A connection is present iff it is authenticated and not yet closed.
Connections are keyed by their transport, so adding or removing the same
connection twice is harmless.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple, TYPE_CHECKING
import asyncio
import logging

if TYPE_CHECKING:
    from .connection import Connection

logger = logging.getLogger("relayws.registry")


@dataclass
class BroadcastResult:
    """Outcome of a broadcast."""
    delivered: List[Connection] = field(default_factory=list)
    failures: List[Tuple[Connection, BaseException]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """True if every send succeeded."""
        return not self.failures

    def raise_first(self) -> None:
        """Re-raise the first failure, if any."""
        if self.failures:
            raise self.failures[0][1]


class PeerRegistry:
    """
    In-memory set of authenticated connections.

    Only connection state transitions mutate it; application handlers
    read it through ``connections()`` and ``broadcast()``.
    """

    def __init__(self):
        # {transport: connection}
        self._peers: Dict[Any, Connection] = {}

    def add(self, connection: Connection) -> bool:
        """
        Register connection.

        Returns:
            True if newly added, False if already present
        """
        if connection.transport in self._peers:
            return False
        self._peers[connection.transport] = connection
        logger.debug(f"Registered connection {connection.connection_id}")
        return True

    def remove(self, connection: Connection) -> bool:
        """
        Unregister connection.

        Returns:
            True if it was present, False otherwise
        """
        if self._peers.pop(connection.transport, None) is None:
            return False
        logger.debug(f"Unregistered connection {connection.connection_id}")
        return True

    def get(self, transport: Any) -> Optional[Connection]:
        return self._peers.get(transport)

    def connections(self) -> List[Connection]:
        """Snapshot of registered connections."""
        return list(self._peers.values())

    def __contains__(self, connection: Connection) -> bool:
        return self._peers.get(connection.transport) is connection

    def __len__(self) -> int:
        return len(self._peers)

    def __iter__(self) -> Iterator[Connection]:
        return iter(self.connections())

    async def broadcast(
        self,
        type: str,
        data: Any = None,
        ref: Any = None,
        *,
        exclude: Optional[Connection] = None,
    ) -> BroadcastResult:
        """
        Send one envelope to every registered connection.

        Sends run concurrently. Delivery is best-effort: a failed send
        (which also closes that connection) is collected in the result
        and does not stop delivery to the others.

        Args:
            type: Message type
            data: Optional payload
            ref: Optional correlation token
            exclude: Optional connection to skip

        Returns:
            BroadcastResult with delivered connections and failures
        """
        targets = [c for c in self.connections() if c is not exclude]
        result = BroadcastResult()

        if not targets:
            return result

        outcomes = await asyncio.gather(
            *(c.send(type, data, ref) for c in targets),
            return_exceptions=True,
        )

        for connection, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                result.failures.append((connection, outcome))
            else:
                result.delivered.append(connection)

        if result.failures:
            logger.warning(
                f"Broadcast of {type!r} failed for {len(result.failures)} "
                f"of {len(targets)} connections"
            )
        else:
            logger.debug(f"Broadcast of {type!r} to {len(targets)} connections")

        return result
