"""
Unit tests for the multi-tenant connection pool
"""
import asyncio

import pytest

from relay.core.connection_pool import ConnectionPool
from relay.models.tenant import ConnectionState
from relay.services.upstream import UpstreamEventFamily

from conftest import FakeSocket


async def settle():
    """Let freshly created tasks run up to their first suspension point"""
    for _ in range(3):
        await asyncio.sleep(0)


class TestConnect:

    async def test_connect_reuses_existing_connection(self, pool, factory):
        assert await pool.connect("alice") is True
        first = pool.get_connection("alice").upstream

        assert await pool.connect("alice") is True

        assert factory.handshakes("alice") == 1
        assert pool.get_connection("alice").upstream is first
        assert pool.list_active() == {"alice"}

    async def test_concurrent_connects_share_one_handshake(self, pool, factory):
        factory.gates["alice"] = asyncio.Event()

        first = asyncio.create_task(pool.connect("alice"))
        second = asyncio.create_task(pool.connect("alice"))
        await settle()
        assert pool.get_connection("alice").state is ConnectionState.CONNECTING

        factory.gates["alice"].set()
        results = await asyncio.gather(first, second)

        assert results == [True, True]
        assert factory.handshakes("alice") == 1
        assert len(factory.created["alice"]) == 1

    async def test_failed_handshake_leaves_no_entry(self, pool, factory):
        factory.failing.add("ghost")

        assert await pool.connect("ghost") is False

        assert pool.get_connection("ghost") is None
        assert pool.tenant_ids() == []
        assert factory.last("ghost").disconnect_calls == 1

    async def test_failed_tenant_can_retry(self, pool, factory):
        factory.failing.add("ghost")
        assert await pool.connect("ghost") is False

        factory.failing.clear()
        assert await pool.connect("ghost") is True
        assert factory.handshakes("ghost") == 2

    async def test_concurrent_callers_all_see_failure(self, pool, factory):
        factory.failing.add("ghost")
        factory.gates["ghost"] = asyncio.Event()

        tasks = [asyncio.create_task(pool.connect("ghost")) for _ in range(3)]
        await settle()
        factory.gates["ghost"].set()

        assert await asyncio.gather(*tasks) == [False, False, False]
        assert factory.handshakes("ghost") == 1

    async def test_client_construction_failure_leaves_no_entry(self, pool, factory):
        factory.broken.add("alice")

        assert await pool.connect("alice") is False
        assert pool.get_connection("alice") is None
        assert pool.tenant_ids() == []

        factory.broken.clear()
        assert await pool.connect("alice") is True
        assert pool.list_active() == {"alice"}

    async def test_handshake_timeout_counts_as_failure(self, broadcaster, factory, clock):
        pool = ConnectionPool(broadcaster, factory, connect_timeout=0.05, clock=clock)
        factory.gates["slow"] = asyncio.Event()

        assert await pool.connect("slow") is False

        assert pool.get_connection("slow") is None
        assert factory.last("slow").disconnect_calls == 1

    async def test_tenants_get_separate_connections(self, pool, factory):
        assert await pool.connect("alice")
        assert await pool.connect("bob")

        assert pool.list_active() == {"alice", "bob"}
        assert factory.last("alice") is not factory.last("bob")


class TestDisconnect:

    async def test_disconnect_unknown_tenant_is_noop(self, pool):
        assert await pool.disconnect("nobody") is False

    async def test_disconnect_closes_upstream_and_removes_entry(self, pool, factory):
        await pool.connect("alice")

        assert await pool.disconnect("alice") is True
        assert await pool.disconnect("alice") is False

        assert pool.get_connection("alice") is None
        assert factory.last("alice").disconnect_calls == 1

    async def test_teardown_errors_are_swallowed(self, pool, factory):
        factory.teardown_error = True
        await pool.connect("alice")

        assert await pool.disconnect("alice") is True
        assert pool.get_connection("alice") is None

    async def test_disconnect_during_handshake_undoes_success(self, pool, factory):
        factory.gates["alice"] = asyncio.Event()
        pending = asyncio.create_task(pool.connect("alice"))
        await settle()

        assert await pool.disconnect("alice") is True
        assert pool.get_connection("alice") is None

        factory.gates["alice"].set()
        assert await pending is False

        assert factory.last("alice").disconnect_calls == 1
        assert pool.list_active() == set()

    async def test_connect_after_disconnect_creates_fresh_connection(self, pool, factory):
        await pool.connect("alice")
        await pool.disconnect("alice")

        assert await pool.connect("alice") is True
        assert len(factory.created["alice"]) == 2

    async def test_shutdown_releases_everything(self, broadcaster, factory, clock):
        pool = ConnectionPool(broadcaster, factory, connect_timeout=1.0, clock=clock)
        await pool.connect("alice")
        await pool.connect("bob")
        factory.gates["carol"] = asyncio.Event()
        pending = asyncio.create_task(pool.connect("carol"))
        await settle()

        await pool.shutdown()

        assert pool.tenant_ids() == []
        assert factory.last("alice").disconnect_calls == 1
        assert factory.last("bob").disconnect_calls == 1
        assert factory.last("carol").disconnect_calls == 1
        with pytest.raises(asyncio.CancelledError):
            await pending


class TestActivity:

    async def test_touch_refreshes_activity(self, pool, clock):
        await pool.connect("alice")
        clock.advance(120)
        assert pool.idle_for("alice") == 120

        pool.touch("alice")

        assert pool.idle_for("alice") == 0

    async def test_touch_unknown_tenant_is_noop(self, pool):
        pool.touch("nobody")
        assert pool.idle_for("nobody") is None

    async def test_reuse_refreshes_activity(self, pool, clock):
        await pool.connect("alice")
        clock.advance(60)

        await pool.connect("alice")

        assert pool.idle_for("alice") == 0

    async def test_upstream_events_refresh_activity(self, pool, factory, clock):
        await pool.connect("alice")
        clock.advance(200)

        factory.last("alice").emit(UpstreamEventFamily.LIKE, {"likeCount": 3})
        await pool.flush("alice")

        assert pool.idle_for("alice") == 0


class TestUpstreamWiring:

    async def test_events_are_broadcast_in_emission_order(self, pool, factory, broadcaster):
        viewer = FakeSocket("viewer")
        broadcaster.join("alice", viewer)
        await pool.connect("alice")
        upstream = factory.last("alice")

        for comment in ["one", "two", "three", "hit", "four"]:
            upstream.emit(UpstreamEventFamily.CHAT, {"comment": comment})
        await pool.flush("alice")

        chats = [m["data"]["comment"] for m in viewer.messages if m["event"] == "tiktok_chat"]
        assert chats == ["one", "two", "three", "hit", "four"]
        assert viewer.event_names()[3:5] == ["tiktok_chat", "player_attack"]

    async def test_events_emitted_during_handshake_are_delivered(self, pool, factory, broadcaster):
        viewer = FakeSocket("viewer")
        broadcaster.join("alice", viewer)
        factory.scripted["alice"] = [(UpstreamEventFamily.CONNECTED, {"roomId": "7312"})]

        await pool.connect("alice")
        await pool.flush("alice")

        assert viewer.messages[0]["event"] == "tiktok_connected"
        assert viewer.messages[0]["data"]["roomId"] == "7312"

    async def test_upstream_disconnect_removes_entry(self, pool, factory, broadcaster):
        viewer = FakeSocket("viewer")
        broadcaster.join("alice", viewer)
        await pool.connect("alice")

        factory.last("alice").emit(UpstreamEventFamily.DISCONNECTED)
        await pool.flush("alice")

        assert viewer.event_names() == ["tiktok_disconnected"]
        assert pool.get_connection("alice") is None
        assert factory.last("alice").disconnect_calls == 1

    async def test_upstream_error_keeps_connection(self, pool, factory, broadcaster):
        viewer = FakeSocket("viewer")
        broadcaster.join("alice", viewer)
        await pool.connect("alice")

        factory.last("alice").emit(UpstreamEventFamily.ERROR, {"message": "websocket hiccup"})
        await pool.flush("alice")

        assert viewer.messages[0]["event"] == "tiktok_error"
        assert viewer.messages[0]["data"]["message"] == "websocket hiccup"
        assert pool.list_active() == {"alice"}

    async def test_events_after_disconnect_are_dropped(self, pool, factory, broadcaster):
        viewer = FakeSocket("viewer")
        broadcaster.join("alice", viewer)
        await pool.connect("alice")
        upstream = factory.last("alice")
        await pool.disconnect("alice")

        upstream.emit(UpstreamEventFamily.CHAT, {"comment": "late"})
        await settle()

        assert viewer.messages == []

    async def test_events_only_reach_their_own_tenant(self, pool, factory, broadcaster):
        alice_viewer = FakeSocket("alice-viewer")
        bob_viewer = FakeSocket("bob-viewer")
        broadcaster.join("alice", alice_viewer)
        broadcaster.join("bob", bob_viewer)
        await pool.connect("alice")
        await pool.connect("bob")

        factory.last("alice").emit(UpstreamEventFamily.GIFT, {"diamondCount": 150, "giftName": "Lion"})
        factory.last("bob").emit(UpstreamEventFamily.CHAT, {"comment": "hello"})
        await pool.flush("alice")
        await pool.flush("bob")

        assert alice_viewer.event_names() == ["tiktok_gift", "gift_received"]
        assert bob_viewer.event_names() == ["tiktok_chat"]
