"""
Realtime broadcast: topics, connection registry, admission quota, coordinator.

Usage:
    from app.realtime import BroadcastCoordinator, ConnectionRegistry

    registry = ConnectionRegistry(cooldown_seconds=2)
    bus.subscribe(registry.publish)
    coordinator = BroadcastCoordinator(bus)
    coordinator.match_transitioned("start", match)
"""

from app.realtime.admission import AdmissionQuota
from app.realtime.coordinator import BroadcastCoordinator
from app.realtime.registry import Connection, ConnectionRegistry
from app.realtime.topics import category_topic, match_topic, parse_topic

__all__ = [
    "AdmissionQuota",
    "BroadcastCoordinator",
    "Connection",
    "ConnectionRegistry",
    "category_topic",
    "match_topic",
    "parse_topic",
]
