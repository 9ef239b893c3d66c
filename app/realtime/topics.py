"""Broadcast topic names: ``match:{id}`` and ``category:{id}``."""

import re

from app.errors import ValidationFailed

MATCH_PREFIX = "match"
CATEGORY_PREFIX = "category"

_TOPIC_RE = re.compile(r"^(match|category):(\d+)$")


def match_topic(match_id: int) -> str:
    return f"{MATCH_PREFIX}:{match_id}"


def category_topic(category_id: int) -> str:
    return f"{CATEGORY_PREFIX}:{category_id}"


def parse_topic(topic) -> tuple[str, int]:
    """Split a client-supplied topic into (family, id), rejecting anything else."""
    match = _TOPIC_RE.match(topic) if isinstance(topic, str) else None
    if not match:
        raise ValidationFailed(
            "Topic must be 'match:{id}' or 'category:{id}'", {"topic": topic}
        )
    return match.group(1), int(match.group(2))
