"""
Event Bus: in-process notification queue with a background consumer.

Design:
- asyncio.Queue decouples the HTTP request from broadcast delivery
- emit() never blocks: a full queue drops the notification (no replay)
- one consumer task drains the queue and hands each notification to a
  dispatch task; dispatches for the same topic are chained so a topic keeps
  its order, while different topics never wait on each other
- handler failures are logged and never stop the loop
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi.encoders import jsonable_encoder

from app.telemetry.metrics import record_dropped, record_notification

logger = logging.getLogger(__name__)

Handler = Callable[["Notification"], Awaitable[Any]]


# ── Notification ─────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class Notification:
    """Typed notification bound to one topic."""

    type: str
    topic: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_frame(self) -> Dict[str, Any]:
        return jsonable_encoder({
            "type": self.type,
            "topic": self.topic,
            "data": self.data,
            "timestamp": self.timestamp,
        })

    def __repr__(self):
        return f"Notification({self.type}, topic={self.topic})"


# ── EventBus ─────────────────────────────────────────────────────────────────
class EventBus:
    """
    In-memory notification bus with async consumer.

    Notifications are dispatched to handlers in subscription order. Delivery
    is best-effort: nothing is persisted, and a notification emitted while
    the bus is stopped or full is lost.
    """

    def __init__(self, max_queue_size: int = 1000):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self._handlers: List[Handler] = []
        self._task: Optional[asyncio.Task] = None
        self._running = False
        # Latest dispatch task per topic; the next one for that topic waits on it
        self._inflight: Dict[str, asyncio.Task] = {}

    def subscribe(self, handler: Handler):
        """Register an async handler for every notification."""
        self._handlers.append(handler)
        logger.info(f"EventBus: subscribed {getattr(handler, '__name__', handler)}")

    def emit(self, notification: Notification) -> bool:
        """Enqueue without blocking. Returns False if the notification was dropped."""
        try:
            self._queue.put_nowait(notification)
        except asyncio.QueueFull:
            logger.error(f"EventBus: queue full ({self._queue.maxsize}), dropping {notification}")
            record_dropped("queue_full")
            return False
        record_notification(notification.type)
        logger.debug(f"EventBus: emitted {notification}")
        return True

    async def start(self):
        """Start the background consumer task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._consumer_loop())
        logger.info("EventBus: started consumer loop")

    async def stop(self):
        """Graceful shutdown: drain queue then stop."""
        self._running = False
        if self._task:
            # Sentinel to unblock the consumer
            await self._queue.put(None)
            try:
                await asyncio.wait_for(self._task, timeout=10.0)
            except asyncio.TimeoutError:
                self._task.cancel()
                logger.warning("EventBus: consumer did not finish in 10s, cancelled")
            self._task = None
        await self._finish_inflight()
        logger.info(f"EventBus: stopped (pending={self._queue.qsize()})")

    async def drain(self):
        """Wait until every queued notification has been dispatched."""
        await self._queue.join()

    async def _consumer_loop(self):
        """Take notifications off the queue and start their dispatch without awaiting it."""
        while True:
            notification = await self._queue.get()
            if notification is None:
                self._queue.task_done()
                break
            try:
                self._schedule(notification)
            except Exception as e:
                logger.error(f"EventBus: consumer loop error: {e}", exc_info=True)
                self._queue.task_done()

    def _schedule(self, notification: Notification):
        topic = notification.topic
        previous = self._inflight.get(topic)
        task = asyncio.create_task(self._dispatch_after(previous, notification))
        self._inflight[topic] = task
        task.add_done_callback(lambda done: self._on_dispatched(topic, done))

    def _on_dispatched(self, topic: str, task: asyncio.Task):
        # queue.join() in drain() returns only once delivery finished
        if self._inflight.get(topic) is task:
            del self._inflight[topic]
        self._queue.task_done()

    async def _dispatch_after(self, previous: Optional[asyncio.Task], notification: Notification):
        if previous is not None:
            await asyncio.wait([previous])
        await self._dispatch(notification)

    async def _finish_inflight(self, timeout: float = 10.0):
        pending = list(self._inflight.values())
        if not pending:
            return
        _, not_done = await asyncio.wait(pending, timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            logger.warning(f"EventBus: cancelled {len(not_done)} dispatches still running after {timeout}s")

    async def _dispatch(self, notification: Notification):
        for handler in self._handlers:
            try:
                await handler(notification)
            except Exception as e:
                logger.error(
                    f"EventBus: handler {getattr(handler, '__name__', handler)} failed for {notification}: {e}",
                    exc_info=True,
                )

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._running
