"""
Lifecycle command surface.

Stateless functions taking an explicit AsyncSession. Each command is one
unit of work: guard checks, mutation, bracket status mirror and audit row
commit together or not at all. Commands return plain dicts; broadcasting
is the caller's job and only happens after the command returned.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import unit_of_work
from app.errors import InvalidTransition, NotFound, SchedulingConflict, ValidationFailed
from app.lifecycle import ledger
from app.lifecycle.queries import event_view, find_booking_conflicts, match_view, team_names
from app.lifecycle.state_machine import (
    apply_transition,
    ensure_mutable,
    ensure_not_cancelled,
    lock_match,
)
from app.models import BRACKET_AWAITING, Bracket, Match, MatchEvent, MatchStatus, utcnow
from app.ops.audit import record_match_action
from app.roster import RosterService
from app.standings import StandingService, TableStandingService
from app.telemetry.metrics import record_match_event, track_command

logger = logging.getLogger(__name__)


async def _view(session: AsyncSession, match: Match) -> dict[str, Any]:
    names = await team_names(session, [match.team_1_id, match.team_2_id])
    return match_view(match, names)


async def _mirror_bracket_status(session: AsyncSession, match: Match) -> None:
    """Brackets linked to the match follow its lifecycle status."""
    await session.execute(
        update(Bracket)
        .where(Bracket.match_id == match.id)
        .values(status=match.status)
        .execution_options(synchronize_session=False)
    )


async def _ensure_no_conflict(
    session: AsyncSession,
    team_ids: list[int],
    scheduled_at: Optional[datetime],
    exclude_match_id: Optional[int] = None,
) -> None:
    conflicts = await find_booking_conflicts(session, team_ids, scheduled_at, exclude_match_id)
    if conflicts:
        raise SchedulingConflict(
            f"A team is already booked at {scheduled_at.isoformat()}",
            {
                "scheduled_at": scheduled_at.isoformat(),
                "team_ids": team_ids,
                "conflicting_match_ids": [m.id for m in conflicts],
            },
        )


# =============================================================================
# CRUD
# =============================================================================


async def create_match(
    session: AsyncSession,
    category_id: int,
    team_1_id: int,
    team_2_id: int,
    scheduled_at: Optional[datetime] = None,
    group_label: Optional[str] = None,
    actor: Optional[str] = None,
) -> dict[str, Any]:
    """Create a SCHEDULED match between two teams of the category."""
    with track_command("create"):
        async with unit_of_work(session):
            if team_1_id == team_2_id:
                raise ValidationFailed(
                    "A match needs two different teams",
                    {"team_1_id": team_1_id, "team_2_id": team_2_id},
                )

            registered = await RosterService(session).registered_teams(category_id, [team_1_id, team_2_id])
            missing = {team_1_id, team_2_id} - {team.team_id for team in registered}
            if missing:
                raise NotFound(
                    f"Teams {sorted(missing)} are not registered in category {category_id}",
                    {"category_id": category_id, "team_ids": sorted(missing)},
                )

            await _ensure_no_conflict(session, [team_1_id, team_2_id], scheduled_at)

            match = Match(
                category_id=category_id,
                team_1_id=team_1_id,
                team_2_id=team_2_id,
                scheduled_at=scheduled_at,
                group_label=group_label,
                created_by=actor,
                updated_by=actor,
            )
            session.add(match)
            await session.flush()

            await record_match_action(session, "CREATE_MATCH", match.id, actor, {
                "category_id": category_id,
                "team_1_id": team_1_id,
                "team_2_id": team_2_id,
                "scheduled_at": scheduled_at.isoformat() if scheduled_at else None,
                "group": group_label,
            })
            view = await _view(session, match)

    logger.info(f"[LIFECYCLE] Created match {view['id']} in category {category_id}")
    return view


async def update_match(
    session: AsyncSession,
    match_id: int,
    scheduled_at: Optional[datetime] = None,
    group_label: Optional[str] = None,
    actor: Optional[str] = None,
) -> tuple[dict[str, Any], bool]:
    """
    Reschedule or relabel a match. A new kickoff is re-checked for conflicts.

    Returns the match view and whether anything actually changed.
    """
    with track_command("update"):
        async with unit_of_work(session):
            match = await lock_match(session, match_id)
            ensure_mutable(match)
            ensure_not_cancelled(match, "update")

            changes: dict[str, Any] = {}
            if scheduled_at is not None and scheduled_at != match.scheduled_at:
                await _ensure_no_conflict(
                    session, [match.team_1_id, match.team_2_id], scheduled_at, exclude_match_id=match.id
                )
                changes["scheduled_at"] = scheduled_at
            if group_label is not None and group_label != match.group_label:
                changes["group_label"] = group_label

            if changes:
                previous = {key: getattr(match, key) for key in changes}
                await session.execute(
                    update(Match)
                    .where(Match.id == match.id)
                    .values(**changes, updated_by=actor, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                await session.refresh(match)
                await record_match_action(session, "UPDATE_MATCH", match.id, actor, {
                    "previous": {k: v.isoformat() if isinstance(v, datetime) else v for k, v in previous.items()},
                    "new": {k: v.isoformat() if isinstance(v, datetime) else v for k, v in changes.items()},
                })
            view = await _view(session, match)

    return view, bool(changes)


async def delete_match(session: AsyncSession, match_id: int, actor: Optional[str] = None) -> dict[str, Any]:
    """
    Delete a match that is not in play and not finished.

    The match's events go with it; linked brackets are detached and go back
    to awaiting.
    """
    with track_command("delete"):
        async with unit_of_work(session):
            match = await lock_match(session, match_id)
            ensure_mutable(match)
            if match.status in (MatchStatus.LIVE.value, MatchStatus.PAUSED.value):
                raise InvalidTransition(
                    f"Cannot delete match {match_id} while it is in progress",
                    {"match_id": match_id, "status": match.status},
                )

            view = await _view(session, match)

            await session.execute(delete(MatchEvent).where(MatchEvent.match_id == match.id))
            detached = await session.execute(
                update(Bracket)
                .where(Bracket.match_id == match.id)
                .values(match_id=None, status=BRACKET_AWAITING)
                .execution_options(synchronize_session=False)
            )
            await session.delete(match)
            await session.flush()

            await record_match_action(session, "DELETE_MATCH", match_id, actor, {
                "status": view["status"],
                "brackets_detached": detached.rowcount,
            })

    logger.info(f"[LIFECYCLE] Deleted match {match_id} by {actor}")
    return view


# =============================================================================
# TRANSITIONS
# =============================================================================


async def start_match(
    session: AsyncSession, match_id: int, period: int = 1, actor: Optional[str] = None
) -> dict[str, Any]:
    with track_command("start"):
        if period < 1:
            raise ValidationFailed("Period must be >= 1", {"period": period})
        async with unit_of_work(session):
            match = await lock_match(session, match_id)
            await apply_transition(session, match, "start", actor, period=period, started_at=utcnow())
            await _mirror_bracket_status(session, match)
            await record_match_action(session, "START_MATCH", match.id, actor, {"period": period})
            view = await _view(session, match)
    return view


async def pause_match(session: AsyncSession, match_id: int, actor: Optional[str] = None) -> dict[str, Any]:
    with track_command("pause"):
        async with unit_of_work(session):
            match = await lock_match(session, match_id)
            await apply_transition(session, match, "pause", actor)
            await _mirror_bracket_status(session, match)
            await record_match_action(session, "PAUSE_MATCH", match.id, actor)
            view = await _view(session, match)
    return view


async def resume_match(session: AsyncSession, match_id: int, actor: Optional[str] = None) -> dict[str, Any]:
    with track_command("resume"):
        async with unit_of_work(session):
            match = await lock_match(session, match_id)
            await apply_transition(session, match, "resume", actor)
            await _mirror_bracket_status(session, match)
            await record_match_action(session, "RESUME_MATCH", match.id, actor)
            view = await _view(session, match)
    return view


async def finish_match(
    session: AsyncSession,
    match_id: int,
    actor: Optional[str] = None,
    standings: Optional[StandingService] = None,
) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    """
    Finish a LIVE match and recompute the category table in the same transaction.

    Returns (final match, recomputed standings).
    """
    standings = standings or TableStandingService()

    with track_command("finish"):
        async with unit_of_work(session):
            match = await lock_match(session, match_id)
            await apply_transition(session, match, "finish", actor, finished_at=utcnow())
            await _mirror_bracket_status(session, match)
            table = await standings.recompute(session, match.category_id)
            await record_match_action(session, "FINISH_MATCH", match.id, actor, {
                "score_1": match.score_1,
                "score_2": match.score_2,
            })
            view = await _view(session, match)

    return view, [entry.to_dict() for entry in table]


async def cancel_match(session: AsyncSession, match_id: int, actor: Optional[str] = None) -> dict[str, Any]:
    with track_command("cancel"):
        async with unit_of_work(session):
            match = await lock_match(session, match_id)
            await apply_transition(session, match, "cancel", actor)
            await _mirror_bracket_status(session, match)
            await record_match_action(session, "CANCEL_MATCH", match.id, actor)
            view = await _view(session, match)
    return view


# =============================================================================
# LEDGER
# =============================================================================


async def add_match_event(
    session: AsyncSession,
    match_id: int,
    team_id: int,
    player_id: int,
    kind: str,
    minute: int,
    actor: Optional[str] = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Record an event; returns (enriched event, updated match)."""
    with track_command("add_event"):
        async with unit_of_work(session):
            event, match = await ledger.add_event(session, match_id, team_id, player_id, kind, minute, actor)
            await record_match_action(session, "ADD_EVENT", match.id, actor, {
                "event_id": event.id,
                "kind": event.kind,
                "team_id": team_id,
                "player_id": player_id,
                "minute": minute,
            })
            event_data = await event_view(session, event)
            view = await _view(session, match)

    record_match_event(event_data["kind"])
    return event_data, view


async def update_score(
    session: AsyncSession,
    match_id: int,
    score_1: int,
    score_2: int,
    actor: Optional[str] = None,
) -> dict[str, Any]:
    """Administrative score override, audited with previous and new values."""
    with track_command("update_score"):
        async with unit_of_work(session):
            match, previous = await ledger.update_score(session, match_id, score_1, score_2, actor)
            await record_match_action(session, "UPDATE_SCORE", match.id, actor, {
                "previous": previous,
                "new": {"score_1": score_1, "score_2": score_2},
            })
            view = await _view(session, match)
    return view
