"""
In-process notification bus.

Usage:
    from app.events import EventBus, Notification

    bus = EventBus(max_queue_size=1000)
    bus.subscribe(registry.publish)
    await bus.start()
    bus.emit(Notification("match:started", "match:42", {"id": 42}))
"""

from app.events.bus import EventBus, Notification

__all__ = [
    "EventBus",
    "Notification",
]
