"""
Match lifecycle engine: state machine, event ledger and command surface.

Usage:
    from app.lifecycle import start_match, add_match_event, finish_match

    match = await start_match(session, match_id, period=1, actor="referee-7")
    event, match = await add_match_event(session, match_id, team_id, player_id, "GOAL", 12)
    match, standings = await finish_match(session, match_id)
"""

from app.lifecycle.commands import (
    add_match_event,
    cancel_match,
    create_match,
    delete_match,
    finish_match,
    pause_match,
    resume_match,
    start_match,
    update_match,
    update_score,
)
from app.lifecycle.queries import (
    get_match,
    get_match_detail,
    get_statistics,
    get_timeline,
    list_live_matches,
    match_view,
    verify_ledger,
)
from app.lifecycle.state_machine import TRANSITIONS

__all__ = [
    "add_match_event",
    "cancel_match",
    "create_match",
    "delete_match",
    "finish_match",
    "pause_match",
    "resume_match",
    "start_match",
    "update_match",
    "update_score",
    "get_match",
    "get_match_detail",
    "get_statistics",
    "get_timeline",
    "list_live_matches",
    "match_view",
    "verify_ledger",
    "TRANSITIONS",
]
