"""
Prometheus metrics for the match lifecycle engine.

Design principles:
- Low cardinality (controlled labels)
- Best-effort (never block main flow)

=============================================================================
CARDINALITY CONTROL (CRITICAL)
=============================================================================

ALLOWED LABELS (bounded sets):
- command:  "start", "pause", "resume", "finish", "cancel", "add_event", ...
- result:   "ok" or an error kind ("InvalidTransition", "StorageFailure", ...)
- kind:     "GOAL", "OWN_GOAL", "YELLOW_CARD", "RED_CARD"
- type:     notification type ("match:started", "standings:updated", ...)
- stage:    "handshake", "operation"
- reason:   "queue_full", "send_failed", "send_timeout"

FORBIDDEN AS LABELS: match_id, category_id, team/player ids, topics,
client addresses. Use logs for per-match debugging.
=============================================================================
"""

import logging
import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from app.errors import MatchEngineError

logger = logging.getLogger(__name__)

# =============================================================================
# LIFECYCLE METRICS
# =============================================================================

lifecycle_commands_total = Counter(
    "lifecycle_commands_total",
    "Lifecycle commands by outcome",
    ["command", "result"],
)

lifecycle_command_latency_ms = Histogram(
    "lifecycle_command_latency_ms",
    "Command latency in milliseconds (includes commit)",
    ["command"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000],
)

match_events_total = Counter(
    "match_events_total",
    "Ledger events recorded",
    ["kind"],
)

fixtures_generated_total = Counter(
    "fixtures_generated_total",
    "Matches created by the schedule generator",
    ["stage"],  # group, bracket
)

# =============================================================================
# BROADCAST METRICS
# =============================================================================

broadcast_notifications_total = Counter(
    "broadcast_notifications_total",
    "Notifications published by type",
    ["type"],
)

broadcast_deliveries_total = Counter(
    "broadcast_deliveries_total",
    "Frames delivered to subscribed connections",
)

broadcast_dropped_total = Counter(
    "broadcast_dropped_total",
    "Notifications or frames dropped",
    ["reason"],
)

ws_connections_active = Gauge(
    "ws_connections_active",
    "Currently registered WebSocket connections",
)

ws_admission_rejected_total = Counter(
    "ws_admission_rejected_total",
    "Work rejected by the per-origin admission quota",
    ["stage"],
)


# =============================================================================
# HELPERS
# =============================================================================


@contextmanager
def track_command(command: str) -> Iterator[None]:
    """
    Count and time a lifecycle command.

    Usage:
        with track_command("finish"):
            ...

    Domain errors are labelled with their kind; anything else is "internal".
    Exceptions always propagate.
    """
    start = time.perf_counter()
    result = "ok"
    try:
        yield
    except MatchEngineError as e:
        result = e.kind
        raise
    except Exception:
        result = "internal"
        raise
    finally:
        try:
            lifecycle_commands_total.labels(command=command, result=result).inc()
            lifecycle_command_latency_ms.labels(command=command).observe(
                (time.perf_counter() - start) * 1000
            )
        except Exception as e:
            logger.warning(f"Failed to record command metrics: {e}")


def record_match_event(kind: str) -> None:
    try:
        match_events_total.labels(kind=kind).inc()
    except Exception as e:
        logger.warning(f"Failed to record match event metric: {e}")


def record_fixtures_generated(stage: str, count: int) -> None:
    try:
        fixtures_generated_total.labels(stage=stage).inc(count)
    except Exception as e:
        logger.warning(f"Failed to record fixture metric: {e}")


def record_notification(notification_type: str) -> None:
    try:
        broadcast_notifications_total.labels(type=notification_type).inc()
    except Exception as e:
        logger.warning(f"Failed to record notification metric: {e}")


def record_deliveries(count: int) -> None:
    try:
        if count:
            broadcast_deliveries_total.inc(count)
    except Exception as e:
        logger.warning(f"Failed to record delivery metric: {e}")


def record_dropped(reason: str, count: int = 1) -> None:
    try:
        broadcast_dropped_total.labels(reason=reason).inc(count)
    except Exception as e:
        logger.warning(f"Failed to record drop metric: {e}")


def set_active_connections(count: int) -> None:
    try:
        ws_connections_active.set(count)
    except Exception as e:
        logger.warning(f"Failed to set connection gauge: {e}")


def record_admission_rejected(stage: str) -> None:
    try:
        ws_admission_rejected_total.labels(stage=stage).inc()
    except Exception as e:
        logger.warning(f"Failed to record admission metric: {e}")


def get_metrics_text() -> tuple[str, str]:
    """
    Generate Prometheus metrics text output.

    Returns:
        Tuple of (content, content_type)
    """
    return generate_latest(REGISTRY).decode("utf-8"), CONTENT_TYPE_LATEST
