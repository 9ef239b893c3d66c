"""
Lifecycle Telemetry Module

Provides Prometheus metrics for:
- Lifecycle commands (outcome, latency)
- Ledger events and generated fixtures
- Broadcast fan-out (notifications, deliveries, drops)
- WebSocket connections and admission control
"""

from app.telemetry.metrics import (
    # Lifecycle
    lifecycle_commands_total,
    lifecycle_command_latency_ms,
    match_events_total,
    fixtures_generated_total,
    # Broadcast
    broadcast_notifications_total,
    broadcast_deliveries_total,
    broadcast_dropped_total,
    ws_connections_active,
    ws_admission_rejected_total,
    # Helpers
    track_command,
    record_match_event,
    record_fixtures_generated,
    record_notification,
    record_deliveries,
    record_dropped,
    set_active_connections,
    record_admission_rejected,
    get_metrics_text,
)

__all__ = [
    "lifecycle_commands_total",
    "lifecycle_command_latency_ms",
    "match_events_total",
    "fixtures_generated_total",
    "broadcast_notifications_total",
    "broadcast_deliveries_total",
    "broadcast_dropped_total",
    "ws_connections_active",
    "ws_admission_rejected_total",
    "track_command",
    "record_match_event",
    "record_fixtures_generated",
    "record_notification",
    "record_deliveries",
    "record_dropped",
    "set_active_connections",
    "record_admission_rejected",
    "get_metrics_text",
]
