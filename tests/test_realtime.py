"""
Realtime broadcast: event bus, connection registry, coordinator, WebSocket endpoint.

No database involved; sockets are fakes with an async ``send_json``.
"""

import asyncio

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from app.errors import ValidationFailed
from app.events import EventBus, Notification
from app.realtime import AdmissionQuota, BroadcastCoordinator, ConnectionRegistry
from app.realtime.topics import category_topic, match_topic, parse_topic
from app.realtime.ws import router as ws_router


class FakeSocket:
    def __init__(self):
        self.frames = []

    async def send_json(self, frame):
        self.frames.append(frame)


class BrokenSocket:
    async def send_json(self, frame):
        raise RuntimeError("connection reset")


class StalledSocket:
    async def send_json(self, frame):
        await asyncio.sleep(10)


class RecordingBus:
    def __init__(self):
        self.emitted = []

    def emit(self, notification):
        self.emitted.append(notification)
        return True


MATCH = {"id": 7, "category_id": 3, "score_1": 1, "score_2": 0, "status": "live"}


# ═══════════════════════════════════════════════════════════════════
# Topics
# ═══════════════════════════════════════════════════════════════════


class TestTopics:
    def test_names(self):
        assert match_topic(42) == "match:42"
        assert category_topic(3) == "category:3"

    def test_parse(self):
        assert parse_topic("match:42") == ("match", 42)

    @pytest.mark.parametrize("topic", ["match:", "team:1", "match:abc", "", None, 42])
    def test_rejects_malformed(self, topic):
        with pytest.raises(ValidationFailed):
            parse_topic(topic)


# ═══════════════════════════════════════════════════════════════════
# Event bus
# ═══════════════════════════════════════════════════════════════════


class TestEventBus:
    @pytest.mark.asyncio
    async def test_dispatches_in_order(self):
        bus = EventBus()
        seen = []

        async def handler(notification):
            seen.append(notification.type)

        bus.subscribe(handler)
        await bus.start()
        for n in range(3):
            bus.emit(Notification(f"t{n}", "match:1", {}))
        await bus.drain()
        await bus.stop()

        assert seen == ["t0", "t1", "t2"]
        assert not bus.running

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_loop(self):
        bus = EventBus()
        seen = []

        async def broken(notification):
            raise RuntimeError("boom")

        async def handler(notification):
            seen.append(notification.type)

        bus.subscribe(broken)
        bus.subscribe(handler)
        await bus.start()
        bus.emit(Notification("a", "match:1", {}))
        bus.emit(Notification("b", "match:1", {}))
        await bus.drain()
        await bus.stop()

        assert seen == ["a", "b"]

    @pytest.mark.asyncio
    async def test_stalled_topic_does_not_hold_back_other_topics(self):
        bus = EventBus()
        registry = ConnectionRegistry(send_timeout=3.0)
        bus.subscribe(registry.publish)
        reached = asyncio.Event()

        class SignallingSocket(FakeSocket):
            async def send_json(self, frame):
                await super().send_json(frame)
                reached.set()

        stalled = await registry.add(StalledSocket(), "10.0.0.1")
        await registry.subscribe(stalled.id, "match:1")
        fast_socket = SignallingSocket()
        fast = await registry.add(fast_socket, "10.0.0.2")
        await registry.subscribe(fast.id, "match:2")

        await bus.start()
        bus.emit(Notification("match:paused", "match:1", {}))
        bus.emit(Notification("match:paused", "match:2", {}))

        await asyncio.wait_for(reached.wait(), timeout=0.5)
        assert [f["topic"] for f in fast_socket.frames] == ["match:2"]

        await bus.drain()
        await bus.stop()
        assert registry.subscribers("match:1") == set()

    @pytest.mark.asyncio
    async def test_same_topic_waits_for_previous_dispatch(self):
        bus = EventBus()
        seen = []

        async def slow_first(notification):
            if notification.type == "first":
                await asyncio.sleep(0.05)
            seen.append(notification.type)

        bus.subscribe(slow_first)
        await bus.start()
        bus.emit(Notification("first", "match:1", {}))
        bus.emit(Notification("second", "match:1", {}))
        await bus.drain()
        await bus.stop()

        assert seen == ["first", "second"]

    def test_full_queue_drops(self):
        bus = EventBus(max_queue_size=1)
        assert bus.emit(Notification("a", "match:1", {})) is True
        assert bus.emit(Notification("b", "match:1", {})) is False
        assert bus.pending_count == 1

    def test_frame_is_json_ready(self):
        frame = Notification("match:started", "match:1", {"id": 1}).to_frame()
        assert frame["type"] == "match:started"
        assert frame["topic"] == "match:1"
        assert isinstance(frame["timestamp"], str)


# ═══════════════════════════════════════════════════════════════════
# Registry
# ═══════════════════════════════════════════════════════════════════


class TestConnectionRegistry:
    @pytest.mark.asyncio
    async def test_subscribe_cooldown(self):
        registry = ConnectionRegistry(cooldown_seconds=2)
        conn = await registry.add(FakeSocket(), "10.0.0.1")

        assert await registry.subscribe(conn.id, "match:1") is True
        assert await registry.subscribe(conn.id, "match:1") is False
        assert registry.subscribers("match:1") == {conn.id}
        # Cooldown is per topic
        assert await registry.subscribe(conn.id, "match:2") is True

    @pytest.mark.asyncio
    async def test_cooldown_is_per_connection(self):
        registry = ConnectionRegistry(cooldown_seconds=2)
        first = await registry.add(FakeSocket(), "10.0.0.1")
        second = await registry.add(FakeSocket(), "10.0.0.1")

        assert await registry.subscribe(first.id, "match:1")
        assert await registry.subscribe(second.id, "match:1")
        assert registry.subscribers("match:1") == {first.id, second.id}

    @pytest.mark.asyncio
    async def test_unknown_connection(self):
        registry = ConnectionRegistry()
        assert await registry.subscribe("nope", "match:1") is False
        assert await registry.unsubscribe("nope", "match:1") is False

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        registry = ConnectionRegistry()
        conn = await registry.add(FakeSocket(), "10.0.0.1")
        await registry.subscribe(conn.id, "match:1")

        assert await registry.unsubscribe(conn.id, "match:1") is True
        assert await registry.unsubscribe(conn.id, "match:1") is False
        assert registry.topic_count == 0
        assert conn.topics == set()

    @pytest.mark.asyncio
    async def test_publish_reaches_only_topic_subscribers(self):
        registry = ConnectionRegistry()
        follower, bystander = FakeSocket(), FakeSocket()
        conn = await registry.add(follower, "10.0.0.1")
        other = await registry.add(bystander, "10.0.0.2")
        await registry.subscribe(conn.id, "match:1")
        await registry.subscribe(other.id, "match:2")

        delivered = await registry.publish(Notification("match:started", "match:1", {"id": 1}))

        assert delivered == 1
        assert [f["type"] for f in follower.frames] == ["match:started"]
        assert bystander.frames == []

    @pytest.mark.asyncio
    async def test_failed_sockets_are_pruned(self):
        registry = ConnectionRegistry(send_timeout=0.05)
        healthy = FakeSocket()
        good = await registry.add(healthy, "10.0.0.1")
        broken = await registry.add(BrokenSocket(), "10.0.0.2")
        stalled = await registry.add(StalledSocket(), "10.0.0.3")
        for conn in (good, broken, stalled):
            await registry.subscribe(conn.id, "match:1")

        delivered = await registry.publish(Notification("match:paused", "match:1", {}))

        assert delivered == 1
        assert len(healthy.frames) == 1
        assert registry.subscribers("match:1") == {good.id}
        assert registry.connection_count == 1

    @pytest.mark.asyncio
    async def test_remove_is_idempotent(self):
        registry = ConnectionRegistry()
        conn = await registry.add(FakeSocket(), "10.0.0.1")
        await registry.subscribe(conn.id, "category:3")

        await registry.remove(conn.id)
        await registry.remove(conn.id)

        assert registry.connection_count == 0
        assert registry.topic_count == 0

    @pytest.mark.asyncio
    async def test_topic_locks_released_when_topic_empties(self):
        registry = ConnectionRegistry()
        first = await registry.add(FakeSocket(), "10.0.0.1")
        second = await registry.add(FakeSocket(), "10.0.0.2")
        await registry.subscribe(first.id, "match:1")
        await registry.subscribe(second.id, "match:1")
        await registry.subscribe(first.id, "match:2")

        await registry.unsubscribe(first.id, "match:1")
        assert set(registry._topic_locks) == {"match:1", "match:2"}

        await registry.unsubscribe(second.id, "match:1")
        await registry.remove(first.id)
        assert registry._topic_locks == {}

    @pytest.mark.asyncio
    async def test_publish_to_unfollowed_topic_creates_no_lock(self):
        registry = ConnectionRegistry()
        conn = await registry.add(FakeSocket(), "10.0.0.1")

        for match_id in range(100):
            assert await registry.publish(Notification("match:updated", f"match:{match_id}", {})) == 0
        assert await registry.unsubscribe(conn.id, "match:5") is False
        assert registry._topic_locks == {}


class TestAdmissionQuota:
    def test_fifty_first_hit_is_rejected(self):
        quota = AdmissionQuota(per_minute=50)
        assert all(quota.admit("10.0.0.1") for _ in range(50))
        assert quota.admit("10.0.0.1") is False
        # Other origins have their own window
        assert quota.admit("10.0.0.2") is True

    def test_reset(self):
        quota = AdmissionQuota(per_minute=1)
        quota.admit("10.0.0.1")
        quota.reset()
        assert quota.remaining("10.0.0.1") == 1


# ═══════════════════════════════════════════════════════════════════
# Coordinator
# ═══════════════════════════════════════════════════════════════════


class TestBroadcastCoordinator:
    def test_transition_goes_to_match_and_category(self):
        bus = RecordingBus()
        BroadcastCoordinator(bus).match_transitioned("start", MATCH)
        assert [(n.type, n.topic) for n in bus.emitted] == [
            ("match:started", "match:7"),
            ("match:started", "category:3"),
        ]

    def test_finish_also_publishes_standings(self):
        bus = RecordingBus()
        BroadcastCoordinator(bus).match_finished(MATCH, [{"team_id": 1, "points": 3}])
        assert [(n.type, n.topic) for n in bus.emitted] == [
            ("match:finished", "match:7"),
            ("match:finished", "category:3"),
            ("standings:updated", "category:3"),
        ]
        assert bus.emitted[-1].data["standings"] == [{"team_id": 1, "points": 3}]

    def test_goal_adds_score_update(self):
        bus = RecordingBus()
        BroadcastCoordinator(bus).event_added({"id": 1, "kind": "GOAL"}, MATCH)
        assert [(n.type, n.topic) for n in bus.emitted] == [
            ("match:event_added", "match:7"),
            ("match:score_updated", "match:7"),
            ("match:score_updated", "category:3"),
        ]

    def test_card_has_no_score_update(self):
        bus = RecordingBus()
        BroadcastCoordinator(bus).event_added({"id": 2, "kind": "YELLOW_CARD"}, MATCH)
        assert [n.type for n in bus.emitted] == ["match:event_added"]

    def test_created_goes_to_category_only(self):
        bus = RecordingBus()
        BroadcastCoordinator(bus).match_created(MATCH)
        assert [(n.type, n.topic) for n in bus.emitted] == [("match:updated", "category:3")]

    @pytest.mark.asyncio
    async def test_end_to_end_through_bus(self):
        bus = EventBus()
        registry = ConnectionRegistry()
        bus.subscribe(registry.publish)
        socket = FakeSocket()
        conn = await registry.add(socket, "10.0.0.1")
        await registry.subscribe(conn.id, "match:7")

        await bus.start()
        BroadcastCoordinator(bus).score_updated(MATCH)
        await bus.drain()
        await bus.stop()

        assert len(socket.frames) == 1
        frame = socket.frames[0]
        assert frame["type"] == "match:score_updated"
        assert frame["data"]["score_1"] == 1


# ═══════════════════════════════════════════════════════════════════
# WebSocket endpoint
# ═══════════════════════════════════════════════════════════════════


def ws_app(per_minute: int = 50) -> FastAPI:
    app = FastAPI()
    app.include_router(ws_router)
    app.state.registry = ConnectionRegistry(cooldown_seconds=2)
    app.state.admission = AdmissionQuota(per_minute=per_minute)
    return app


class TestWebSocketEndpoint:
    def test_ping_and_subscribe(self):
        app = ws_app()
        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            ws.send_json({"op": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            ws.send_json({"op": "subscribe", "topic": "match:5"})
            assert ws.receive_json() == {"type": "subscribed", "topic": "match:5"}

            # Within cooldown: silently ignored, next reply is the pong
            ws.send_json({"op": "subscribe", "topic": "match:5"})
            ws.send_json({"op": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            ws.send_json({"op": "unsubscribe", "topic": "match:5"})
            assert ws.receive_json() == {"type": "unsubscribed", "topic": "match:5"}

    def test_invalid_frames(self):
        app = ws_app()
        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            ws.send_json({"op": "subscribe", "topic": "team:1"})
            assert ws.receive_json()["error"]["kind"] == "ValidationFailed"

            ws.send_json({"op": "dance"})
            assert ws.receive_json()["error"]["kind"] == "ValidationFailed"

    def test_operations_count_against_quota(self):
        app = ws_app(per_minute=3)
        with TestClient(app) as client, client.websocket_connect("/ws") as ws:
            ws.send_json({"op": "ping"})
            assert ws.receive_json()["type"] == "pong"
            ws.send_json({"op": "ping"})
            assert ws.receive_json()["type"] == "pong"
            ws.send_json({"op": "ping"})
            assert ws.receive_json() == {
                "type": "error",
                "error": {"kind": "RateLimited", "message": "Too many requests, slow down"},
            }

    def test_handshake_refused_when_quota_exhausted(self):
        app = ws_app(per_minute=1)
        with TestClient(app) as client:
            with client.websocket_connect("/ws"):
                pass
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/ws"):
                    pass
        assert exc_info.value.code == 1013

