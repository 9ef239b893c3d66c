"""
Connection registry: who is connected and which topics they follow.

Owned by the application lifespan (``app.state.registry``), never a module
global. Locking is fine-grained: one lock per topic guards its subscriber
set, one lock per connection serializes frames written to its socket.
Publishing to one match never waits on another match's subscribers.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter
from starlette.websockets import WebSocket

from app.events.bus import Notification
from app.telemetry.metrics import record_deliveries, record_dropped, set_active_connections

logger = logging.getLogger(__name__)


class Connection:
    """One accepted WebSocket plus its subscriptions."""

    def __init__(self, websocket: WebSocket, origin: str, send_timeout: float = 5.0):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.origin = origin
        self.send_timeout = send_timeout
        self.topics: set[str] = set()
        self.connected_at = datetime.now(timezone.utc)
        self._send_lock = asyncio.Lock()

    async def send(self, frame: dict[str, Any]) -> None:
        async with self._send_lock:
            await asyncio.wait_for(self.websocket.send_json(frame), timeout=self.send_timeout)

    def __repr__(self):
        return f"Connection({self.id[:8]}, origin={self.origin}, topics={len(self.topics)})"


class ConnectionRegistry:
    """Topic subscriptions with a per-connection, per-topic subscribe cooldown."""

    def __init__(self, cooldown_seconds: int = 2, send_timeout: float = 5.0):
        self.send_timeout = send_timeout
        self._connections: dict[str, Connection] = {}
        self._subscribers: dict[str, set[str]] = {}
        self._topic_locks: dict[str, asyncio.Lock] = {}
        self._cooldown_item = RateLimitItemPerSecond(1, cooldown_seconds)
        self._cooldown_storage = MemoryStorage()
        self._cooldown = MovingWindowRateLimiter(self._cooldown_storage)

    def _lock_for(self, topic: str) -> asyncio.Lock:
        lock = self._topic_locks.get(topic)
        if lock is None:
            lock = self._topic_locks[topic] = asyncio.Lock()
        return lock

    def _release_lock(self, topic: str) -> None:
        # A topic nobody follows keeps no lock around
        lock = self._topic_locks.get(topic)
        if lock is not None and topic not in self._subscribers and not lock.locked():
            del self._topic_locks[topic]

    # ── Mutators ────────────────────────────────────────────────────────────

    async def add(self, websocket: WebSocket, origin: str) -> Connection:
        connection = Connection(websocket, origin, self.send_timeout)
        self._connections[connection.id] = connection
        set_active_connections(len(self._connections))
        logger.info(f"[BROADCAST] Connected {connection.id[:8]} from {origin} (active={len(self._connections)})")
        return connection

    async def remove(self, conn_id: str) -> None:
        """Forget a connection and all of its subscriptions. Safe to call twice."""
        connection = self._connections.pop(conn_id, None)
        if connection is None:
            return
        for topic in list(connection.topics):
            async with self._lock_for(topic):
                subscribers = self._subscribers.get(topic)
                if subscribers is not None:
                    subscribers.discard(conn_id)
                    if not subscribers:
                        del self._subscribers[topic]
            self._release_lock(topic)
        connection.topics.clear()
        set_active_connections(len(self._connections))
        logger.info(f"[BROADCAST] Disconnected {conn_id[:8]} (active={len(self._connections)})")

    async def subscribe(self, conn_id: str, topic: str) -> bool:
        """
        Add ``conn_id`` to ``topic``.

        Returns False without changing anything when the same connection
        asked for the same topic inside the cooldown window.
        """
        connection = self._connections.get(conn_id)
        if connection is None:
            return False
        if not self._cooldown.hit(self._cooldown_item, conn_id, topic):
            logger.debug(f"[BROADCAST] Subscribe cooldown: {conn_id[:8]} -> {topic}")
            return False
        async with self._lock_for(topic):
            if conn_id in self._connections:
                self._subscribers.setdefault(topic, set()).add(conn_id)
                connection.topics.add(topic)
        self._release_lock(topic)
        return topic in connection.topics

    async def unsubscribe(self, conn_id: str, topic: str) -> bool:
        connection = self._connections.get(conn_id)
        if connection is None:
            return False
        removed = False
        async with self._lock_for(topic):
            subscribers = self._subscribers.get(topic)
            if subscribers and conn_id in subscribers:
                subscribers.discard(conn_id)
                if not subscribers:
                    del self._subscribers[topic]
                connection.topics.discard(topic)
                removed = True
        self._release_lock(topic)
        return removed

    async def publish(self, notification: Notification) -> int:
        """
        Deliver to every current subscriber of the notification's topic.

        Returns the number of connections that received the frame. Dead or
        stalled connections are pruned.
        """
        lock = self._topic_locks.get(notification.topic)
        if lock is None:
            return 0
        async with lock:
            targets = [
                self._connections[conn_id]
                for conn_id in self._subscribers.get(notification.topic, ())
                if conn_id in self._connections
            ]
        if not targets:
            return 0

        frame = notification.to_frame()
        results = await asyncio.gather(*(self._deliver(connection, frame) for connection in targets))
        delivered = sum(1 for ok in results if ok)
        record_deliveries(delivered)
        logger.debug(f"[BROADCAST] {notification.type} -> {notification.topic}: {delivered}/{len(targets)}")
        return delivered

    async def _deliver(self, connection: Connection, frame: dict[str, Any]) -> bool:
        try:
            await connection.send(frame)
            return True
        except asyncio.TimeoutError:
            record_dropped("send_timeout")
            logger.warning(f"[BROADCAST] Send timeout to {connection.id[:8]}, pruning")
        except Exception as e:
            record_dropped("send_failed")
            logger.info(f"[BROADCAST] Send failed to {connection.id[:8]} ({e}), pruning")
        await self.remove(connection.id)
        return False

    # ── Read-only ───────────────────────────────────────────────────────────

    def get(self, conn_id: str) -> Optional[Connection]:
        return self._connections.get(conn_id)

    def subscribers(self, topic: str) -> set[str]:
        return set(self._subscribers.get(topic, ()))

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def topic_count(self) -> int:
        return len(self._subscribers)
