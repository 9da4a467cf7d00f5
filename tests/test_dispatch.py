"""
Handler registry and dispatch (dispatch.py)

Tests ok/error replies, ref correlation, ordering, disposal during
dispatch and reply failures.
"""

import asyncio

import pytest

from relayws import Dispatcher, EventKind, type_is
from relayws.faults import Fault, FaultDomain

from .conftest import (
    authenticated_client,
    envelope_frame,
    expect_closed,
    recv_json,
    settle,
)


# ============================================================================
# Replies
# ============================================================================

class TestReplies:

    @pytest.mark.asyncio
    async def test_ok_reply_carries_ref(self, make_server):
        server = make_server()
        server.on_message(lambda ctx: ctx.data + 1, type_is("Ping"))
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Ping", 1, "r1"))

        assert await recv_json(client) == {"type": "ok", "data": 2, "ref": "r1"}

    @pytest.mark.asyncio
    async def test_reply_without_ref(self, make_server):
        server = make_server()
        server.on_message(lambda ctx: "pong", type_is("Ping"))
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Ping"))

        assert await recv_json(client) == {"type": "ok", "data": "pong"}

    @pytest.mark.asyncio
    async def test_none_result_omits_data(self, make_server):
        server = make_server()
        server.on_message(lambda ctx: None)
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Notify", ref=3))

        assert await recv_json(client) == {"type": "ok", "ref": 3}

    @pytest.mark.asyncio
    async def test_error_reply(self, make_server):
        server = make_server()

        def boom(ctx):
            raise ValueError("boom")

        server.on_message(boom, type_is("Boom"))
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Boom"))

        assert await recv_json(client) == {
            "type": "error",
            "data": {"name": "ValueError", "message": "boom"},
        }
        assert conn.is_authenticated

    @pytest.mark.asyncio
    async def test_error_reply_with_stack(self, make_server):
        server = make_server(include_error_stack=True)

        def boom(ctx):
            raise ValueError("boom")

        server.on_message(boom)
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Boom", ref="e1"))

        reply = await recv_json(client)
        assert reply["type"] == "error"
        assert reply["ref"] == "e1"
        assert "ValueError: boom" in reply["data"]["stack"]

    @pytest.mark.asyncio
    async def test_fault_reply_includes_code(self, make_server):
        server = make_server()

        def deny(ctx):
            raise Fault("APP_DENIED", "denied", domain=FaultDomain.FLOW)

        server.on_message(deny)
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Secret", ref="f1"))

        assert await recv_json(client) == {
            "type": "error",
            "data": {"name": "Fault", "message": "denied", "code": "APP_DENIED"},
            "ref": "f1",
        }

    @pytest.mark.asyncio
    async def test_async_handler(self, make_server):
        server = make_server()

        async def double(ctx):
            await asyncio.sleep(0)
            return ctx.data * 2

        server.on_message(double, type_is("Double"))
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Double", 21, "a1"))

        assert await recv_json(client) == {"type": "ok", "data": 42, "ref": "a1"}

    @pytest.mark.asyncio
    async def test_async_handler_error(self, make_server):
        server = make_server()

        async def fail(ctx):
            await asyncio.sleep(0)
            raise RuntimeError("later")

        server.on_message(fail)
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Fail", ref="a2"))

        assert await recv_json(client) == {
            "type": "error",
            "data": {"name": "RuntimeError", "message": "later"},
            "ref": "a2",
        }

    @pytest.mark.asyncio
    async def test_handler_context(self, make_server):
        server = make_server()
        client, conn = await authenticated_client(server)
        conn.on_message(lambda ctx: [
            ctx.server is server,
            ctx.connection is conn,
            ctx.data,
            ctx.ref,
        ])

        await client.send(envelope_frame("Inspect", {"x": 1}, "c1"))

        assert await recv_json(client) == {
            "type": "ok",
            "data": [True, True, {"x": 1}, "c1"],
            "ref": "c1",
        }


# ============================================================================
# Ordering and multiple matches
# ============================================================================

class TestOrdering:

    @pytest.mark.asyncio
    async def test_every_matching_handler_replies(self, make_server):
        server = make_server()
        server.on_message(lambda ctx: 1, type_is("Multi"))
        server.on_message(lambda ctx: 2, type_is("Multi"))
        server.on_message(lambda ctx: 3, type_is("Other"))
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Multi", ref="m"))

        assert await recv_json(client) == {"type": "ok", "data": 1, "ref": "m"}
        assert await recv_json(client) == {"type": "ok", "data": 2, "ref": "m"}

    @pytest.mark.asyncio
    async def test_server_handlers_run_first(self, make_server):
        server = make_server()
        client, conn = await authenticated_client(server)
        conn.on_message(lambda ctx: "connection", type_is("Order"))
        server.on_message(lambda ctx: "server", type_is("Order"))

        await client.send(envelope_frame("Order"))

        assert (await recv_json(client))["data"] == "server"
        assert (await recv_json(client))["data"] == "connection"

    @pytest.mark.asyncio
    async def test_filter_error_stops_dispatch(self, make_server):
        server = make_server()
        called = []

        def bad_filter(envelope):
            raise KeyError("nope")

        server.on_message(lambda ctx: "never", bad_filter)
        server.on_message(lambda ctx: called.append(ctx.ref))
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Any", ref="x"))

        reply = await recv_json(client)
        assert reply["type"] == "error"
        assert reply["data"]["name"] == "KeyError"
        assert reply["ref"] == "x"

        await settle()
        assert called == []

    @pytest.mark.asyncio
    async def test_sync_handler_error_stops_dispatch(self, make_server):
        server = make_server()
        called = []

        def boom(ctx):
            raise ValueError("first")

        server.on_message(boom)
        server.on_message(lambda ctx: called.append(ctx.ref))
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Any", ref="y"))

        assert (await recv_json(client))["type"] == "error"
        await settle()
        assert called == []

    @pytest.mark.asyncio
    async def test_message_event_without_match(self, make_server):
        server = make_server()
        seen = []
        server.observe(EventKind.MESSAGE, lambda event: seen.append(event.envelope))
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Nobody", 5, "n1"))
        await settle()

        assert [(e.type, e.data, e.ref) for e in seen] == [("Nobody", 5, "n1")]
        assert conn.is_authenticated

    @pytest.mark.asyncio
    async def test_message_event_after_handler_error(self, make_server):
        server = make_server()
        seen = []

        def boom(ctx):
            raise ValueError("sync")

        server.on_message(boom)
        server.observe("message", lambda event: seen.append(event.envelope.type))
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Boom"))
        await recv_json(client)

        assert seen == ["Boom"]


# ============================================================================
# Disposal
# ============================================================================

class TestDisposal:

    @pytest.mark.asyncio
    async def test_disposed_handler_not_invoked(self, make_server):
        server = make_server()
        sub = server.on_message(lambda ctx: "A", type_is("A"))
        server.on_message(lambda ctx: "B", type_is("B"))
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("A", ref=1))
        assert await recv_json(client) == {"type": "ok", "data": "A", "ref": 1}

        sub.dispose()
        await client.send(envelope_frame("A", ref=2))
        await client.send(envelope_frame("B", ref=3))

        assert await recv_json(client) == {"type": "ok", "data": "B", "ref": 3}

    @pytest.mark.asyncio
    async def test_dispose_does_not_cancel_in_flight(self, make_server):
        server = make_server()
        gate = asyncio.Event()

        async def slow(ctx):
            await gate.wait()
            return "late"

        sub = server.on_message(slow)
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Slow", ref="s"))
        await settle()
        sub.dispose()
        gate.set()

        assert await recv_json(client) == {"type": "ok", "data": "late", "ref": "s"}

    @pytest.mark.asyncio
    async def test_handler_disposes_itself(self, make_server):
        server = make_server()
        client, conn = await authenticated_client(server)
        calls = []

        def once(ctx):
            calls.append(ctx.ref)
            sub.dispose()
            return "once"

        sub = conn.on_message(once, type_is("Once"))
        conn.on_message(lambda ctx: "mark", type_is("Mark"))

        await client.send(envelope_frame("Once", ref="r1"))
        await client.send(envelope_frame("Once", ref="r2"))
        await client.send(envelope_frame("Mark", ref="r3"))

        assert await recv_json(client) == {"type": "ok", "data": "once", "ref": "r1"}
        assert await recv_json(client) == {"type": "ok", "data": "mark", "ref": "r3"}
        assert calls == ["r1"]

    @pytest.mark.asyncio
    async def test_registration_during_dispatch(self, make_server):
        server = make_server()
        client, conn = await authenticated_client(server)
        registered = []

        def registrar(ctx):
            if not registered:
                registered.append(conn.on_message(lambda c: "late", type_is("Reg")))
            return "registered"

        conn.on_message(registrar, type_is("Reg"))

        await client.send(envelope_frame("Reg", ref=1))
        assert (await recv_json(client))["data"] == "registered"

        await client.send(envelope_frame("Reg", ref=2))
        assert (await recv_json(client))["data"] == "registered"
        assert (await recv_json(client))["data"] == "late"


# ============================================================================
# Reply failures
# ============================================================================

class TestReplyFailures:

    @pytest.mark.asyncio
    async def test_unserializable_result_closes(self, make_server):
        server = make_server()
        server.on_message(lambda ctx: object())
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Weird"))

        await expect_closed(client)
        await conn.wait_closed()
        assert conn not in server.registry

    @pytest.mark.asyncio
    async def test_reply_after_close_is_harmless(self, make_server):
        server = make_server()
        gate = asyncio.Event()

        async def slow(ctx):
            await gate.wait()
            return "too late"

        server.on_message(slow)
        client, conn = await authenticated_client(server)

        await client.send(envelope_frame("Slow", ref="z"))
        await settle()
        await conn.close()
        gate.set()
        await conn.drain()

        assert conn.is_closed
        assert conn.transport.sent == ['{"type":"ok"}']


# ============================================================================
# Dispatcher
# ============================================================================

class TestDispatcher:

    def test_snapshot_puts_parent_first(self):
        parent = Dispatcher()
        child = Dispatcher(parent=parent)

        def a(ctx): pass
        def b(ctx): pass
        def c(ctx): pass

        child.register(a)
        parent.register(b)
        child.register(c)

        assert [e.handler for e in child.snapshot()] == [b, a, c]
        assert len(child) == 2
        assert len(parent) == 1

    def test_dispose_removes_only_its_entry(self):
        dispatcher = Dispatcher()

        def handler(ctx): pass

        first = dispatcher.register(handler)
        dispatcher.register(handler)

        first.dispose()
        first.dispose()

        assert len(dispatcher) == 1
        assert first.disposed

    def test_type_is(self):
        from relayws import Envelope

        flt = type_is("A", "B")
        assert flt(Envelope("A"))
        assert flt(Envelope("B"))
        assert not flt(Envelope("C"))
