"""
Broadcast coordinator: turns committed command results into notifications.

Every method here is called AFTER the command's unit of work committed.
Nothing blocks: notifications are queued on the EventBus and delivered
by its consumer.
"""

import logging
from typing import Any

from app.events.bus import EventBus, Notification
from app.realtime.topics import category_topic, match_topic

logger = logging.getLogger(__name__)

MATCH_UPDATED = "match:updated"
MATCH_EVENT_ADDED = "match:event_added"
MATCH_SCORE_UPDATED = "match:score_updated"
MATCH_STARTED = "match:started"
MATCH_PAUSED = "match:paused"
MATCH_RESUMED = "match:resumed"
MATCH_FINISHED = "match:finished"
MATCH_CANCELLED = "match:cancelled"
MATCH_DELETED = "match:deleted"
STANDINGS_UPDATED = "standings:updated"
SCHEDULE_GENERATED = "schedule:generated"

TRANSITION_NOTIFICATIONS = {
    "start": MATCH_STARTED,
    "pause": MATCH_PAUSED,
    "resume": MATCH_RESUMED,
    "finish": MATCH_FINISHED,
    "cancel": MATCH_CANCELLED,
}

SCORING_KINDS = {"GOAL", "OWN_GOAL"}


class BroadcastCoordinator:
    def __init__(self, bus: EventBus):
        self.bus = bus

    def notify(self, notification_type: str, topic: str, data: dict[str, Any]) -> bool:
        return self.bus.emit(Notification(notification_type, topic, data))

    def _match_and_category(self, notification_type: str, match: dict[str, Any]) -> None:
        self.notify(notification_type, match_topic(match["id"]), match)
        self.notify(notification_type, category_topic(match["category_id"]), match)

    def match_created(self, match: dict[str, Any]) -> None:
        self.notify(MATCH_UPDATED, category_topic(match["category_id"]), match)

    def match_updated(self, match: dict[str, Any]) -> None:
        self._match_and_category(MATCH_UPDATED, match)

    def match_deleted(self, match: dict[str, Any]) -> None:
        self._match_and_category(MATCH_DELETED, {"id": match["id"], "category_id": match["category_id"]})

    def match_transitioned(self, command: str, match: dict[str, Any]) -> None:
        self._match_and_category(TRANSITION_NOTIFICATIONS[command], match)

    def match_finished(self, match: dict[str, Any], standings: list[dict[str, Any]]) -> None:
        """``match:finished`` on both topics, then the new table on the category topic."""
        self.match_transitioned("finish", match)
        self.notify(STANDINGS_UPDATED, category_topic(match["category_id"]), {
            "category_id": match["category_id"],
            "match_id": match["id"],
            "standings": standings,
        })

    def event_added(self, event: dict[str, Any], match: dict[str, Any]) -> None:
        self.notify(MATCH_EVENT_ADDED, match_topic(match["id"]), {"event": event, "match": match})
        if event["kind"] in SCORING_KINDS:
            self.score_updated(match)

    def score_updated(self, match: dict[str, Any]) -> None:
        self._match_and_category(MATCH_SCORE_UPDATED, {
            "id": match["id"],
            "category_id": match["category_id"],
            "score_1": match["score_1"],
            "score_2": match["score_2"],
            "status": match["status"],
        })

    def schedule_generated(self, category_id: int, payload: dict[str, Any]) -> None:
        self.notify(SCHEDULE_GENERATED, category_topic(category_id), payload)
