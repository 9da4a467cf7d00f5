"""
Peer registry and broadcast (registry.py)
"""

from types import SimpleNamespace

import pytest

from relayws import BroadcastResult, PeerRegistry
from relayws.faults import ProtocolFault

from .conftest import accept_client, authenticated_client, recv_json


def fake_connection(name: str):
    return SimpleNamespace(transport=object(), connection_id=name)


# ============================================================================
# Membership
# ============================================================================

class TestMembership:

    def test_add_is_idempotent(self):
        registry = PeerRegistry()
        conn = fake_connection("a")

        assert registry.add(conn) is True
        assert registry.add(conn) is False
        assert len(registry) == 1
        assert registry.connections() == [conn]

    def test_remove_is_idempotent(self):
        registry = PeerRegistry()
        conn = fake_connection("a")
        registry.add(conn)

        assert registry.remove(conn) is True
        assert registry.remove(conn) is False
        assert conn not in registry

    def test_keyed_by_transport(self):
        registry = PeerRegistry()
        conn = fake_connection("a")
        registry.add(conn)

        assert registry.get(conn.transport) is conn
        assert fake_connection("b") not in registry

    def test_iteration_is_a_snapshot(self):
        registry = PeerRegistry()
        conns = [fake_connection(str(i)) for i in range(3)]
        for conn in conns:
            registry.add(conn)

        for conn in registry:
            registry.remove(conn)

        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_tracks_authenticated_only(self, make_server):
        server = make_server()
        pending_client, pending = accept_client(server)
        client, conn = await authenticated_client(server)

        assert server.clients == [conn]
        assert set(server.connections) == {pending, conn}

        await conn.close()
        assert server.clients == []


# ============================================================================
# Broadcast
# ============================================================================

class TestBroadcast:

    @pytest.mark.asyncio
    async def test_broadcast_reaches_everyone(self, make_server):
        server = make_server()
        clients = [await authenticated_client(server) for _ in range(3)]

        result = await server.send("News", {"headline": "hi"})

        assert result.ok
        assert len(result.delivered) == 3
        for client, _ in clients:
            assert await recv_json(client) == {"type": "News", "data": {"headline": "hi"}}

    @pytest.mark.asyncio
    async def test_broadcast_is_best_effort(self, make_server):
        server = make_server()
        (a, conn_a), (b, conn_b), (c, conn_c) = [
            await authenticated_client(server) for _ in range(3)
        ]

        # Gone, but the server has not noticed yet
        await b.close()
        result = await server.send("News", 1)

        assert not result.ok
        assert set(result.delivered) == {conn_a, conn_c}
        assert [conn for conn, _ in result.failures] == [conn_b]
        assert isinstance(result.failures[0][1], ProtocolFault)
        assert result.failures[0][1].code == "WS_SEND_FAILED"

        assert await recv_json(a) == {"type": "News", "data": 1}
        assert await recv_json(c) == {"type": "News", "data": 1}

        # The failed peer was closed and unregistered
        assert conn_b.is_closed
        assert conn_b not in server.registry
        assert len(server.registry) == 2

    @pytest.mark.asyncio
    async def test_broadcast_exclude(self, make_server):
        server = make_server()
        a, conn_a = await authenticated_client(server)
        b, conn_b = await authenticated_client(server)

        result = await server.registry.broadcast("Echo", "x", exclude=conn_a)

        assert result.delivered == [conn_b]
        assert await recv_json(b) == {"type": "Echo", "data": "x"}

    @pytest.mark.asyncio
    async def test_broadcast_from_handler(self, make_server):
        server = make_server()

        async def relay(ctx):
            await ctx.server.registry.broadcast("Chat", ctx.data, exclude=ctx.connection)
            return "sent"

        server.on_message(relay, lambda envelope: envelope.type == "Say")
        a, conn_a = await authenticated_client(server)
        b, conn_b = await authenticated_client(server)

        await a.send('{"type": "Say", "data": "hello", "ref": 1}')

        assert await recv_json(b) == {"type": "Chat", "data": "hello"}
        assert await recv_json(a) == {"type": "ok", "data": "sent", "ref": 1}

    @pytest.mark.asyncio
    async def test_broadcast_to_nobody(self, make_server):
        server = make_server()
        result = await server.send("News")
        assert result.ok
        assert result.delivered == []


class TestBroadcastResult:

    def test_raise_first(self):
        err = RuntimeError("first")
        result = BroadcastResult(failures=[("a", err), ("b", RuntimeError("second"))])

        with pytest.raises(RuntimeError, match="first"):
            result.raise_first()

    def test_raise_first_without_failures(self):
        BroadcastResult(delivered=["a"]).raise_first()
