"""
Shared test fixtures and helpers for the relayws test suite.
"""

import asyncio
import json
from typing import Any, Optional, Tuple

import pytest

from relayws import Server, ServerConfig
from relayws.connection import Connection
from relayws.transport import MemoryTransport, TransportClosed


# ============================================================================
# Helpers
# ============================================================================


def envelope_frame(type: str, data: Any = None, ref: Any = None) -> str:
    """Build a raw envelope frame as a client would send it."""
    obj = {"type": type}
    if data is not None:
        obj["data"] = data
    if ref is not None:
        obj["ref"] = ref
    return json.dumps(obj)


async def recv_json(transport: MemoryTransport, timeout: float = 1.0) -> dict:
    """Receive the next frame from a raw transport and parse it."""
    frame = await asyncio.wait_for(transport.receive(), timeout)
    return json.loads(frame)


async def expect_closed(transport: MemoryTransport, timeout: float = 1.0) -> None:
    """Assert the next receive reports the channel as closed."""
    with pytest.raises(TransportClosed):
        await asyncio.wait_for(transport.receive(), timeout)


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def accept_client(server: Server) -> Tuple[MemoryTransport, Connection]:
    """Attach a raw in-memory client to the server."""
    client, remote = MemoryTransport.pair()
    return client, server.accept(remote)


async def authenticated_client(server: Server, key: Optional[str] = "secret") -> Tuple[MemoryTransport, Connection]:
    """Attach a raw client, send the key and consume the auth acknowledgement."""
    client, conn = accept_client(server)
    await client.send(key if key is not None else b"")
    ack = await recv_json(client)
    assert ack == {"type": "ok"}
    return client, conn


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def server_config() -> ServerConfig:
    return ServerConfig(include_error_stack=False)


@pytest.fixture
def make_server(server_config):
    def factory(key: Optional[str] = "secret", **options) -> Server:
        config = ServerConfig(**{**server_config.__dict__, **options})
        return Server(key, config=config)
    return factory
