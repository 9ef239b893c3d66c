"""
Read side of the lifecycle engine.

All functions take an explicit session and never write. HTTP handlers run
them through ``read_with_retry`` so a dropped connection is retried once.
"""

import logging
from typing import Any, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.errors import NotFound
from app.models import EventKind, Match, MatchEvent, MatchStatus, PlayerRegistration, Team

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (MatchStatus.LIVE.value, MatchStatus.PAUSED.value)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def match_view(match: Match, team_names: Optional[dict[int, str]] = None) -> dict[str, Any]:
    """Serializable representation of a match."""
    names = team_names or {}
    return {
        "id": match.id,
        "category_id": match.category_id,
        "team_1": {"id": match.team_1_id, "name": names.get(match.team_1_id)},
        "team_2": {"id": match.team_2_id, "name": names.get(match.team_2_id)},
        "scheduled_at": _iso(match.scheduled_at),
        "group": match.group_label,
        "status": match.status,
        "period": match.period,
        "score_1": match.score_1,
        "score_2": match.score_2,
        "started_at": _iso(match.started_at),
        "finished_at": _iso(match.finished_at),
        "created_by": match.created_by,
        "updated_by": match.updated_by,
        "updated_at": _iso(match.updated_at),
    }


async def team_names(session: AsyncSession, team_ids: list[int]) -> dict[int, str]:
    if not team_ids:
        return {}
    result = await session.execute(select(Team.id, Team.name).where(Team.id.in_(team_ids)))
    return {row.id: row.name for row in result}


async def get_match(session: AsyncSession, match_id: int) -> Match:
    match = await session.get(Match, match_id)
    if match is None:
        raise NotFound(f"Match {match_id} not found", {"match_id": match_id})
    return match


def _events_query():
    """Events joined with player and team display data."""
    return (
        select(
            MatchEvent,
            PlayerRegistration.player_name,
            PlayerRegistration.shirt_number,
            Team.name.label("team_name"),
            Team.logo_url.label("team_logo"),
        )
        .join(Team, Team.id == MatchEvent.team_id)
        .outerjoin(
            PlayerRegistration,
            and_(
                PlayerRegistration.player_id == MatchEvent.player_id,
                PlayerRegistration.category_id == MatchEvent.category_id,
                PlayerRegistration.team_id == MatchEvent.team_id,
            ),
        )
    )


def _event_row_view(row) -> dict[str, Any]:
    event = row.MatchEvent
    return {
        "id": event.id,
        "match_id": event.match_id,
        "minute": event.minute,
        "kind": event.kind,
        "player": {
            "id": event.player_id,
            "name": row.player_name,
            "number": row.shirt_number,
        },
        "team": {
            "id": event.team_id,
            "name": row.team_name,
            "logo": row.team_logo,
        },
        "created_by": event.created_by,
        "timestamp": _iso(event.created_at),
    }


async def event_view(session: AsyncSession, event: MatchEvent) -> dict[str, Any]:
    """Enrich a single ledger event for the response and the broadcast."""
    result = await session.execute(_events_query().where(MatchEvent.id == event.id))
    return _event_row_view(result.one())


async def get_timeline(session: AsyncSession, match_id: int) -> dict[str, Any]:
    """Events ordered by minute, then by insertion."""
    await get_match(session, match_id)
    result = await session.execute(
        _events_query()
        .where(MatchEvent.match_id == match_id)
        .order_by(MatchEvent.minute, MatchEvent.created_at, MatchEvent.id)
    )
    return {"match_id": match_id, "events": [_event_row_view(row) for row in result]}


async def get_match_detail(session: AsyncSession, match_id: int) -> dict[str, Any]:
    match = await get_match(session, match_id)
    names = await team_names(session, [match.team_1_id, match.team_2_id])
    timeline = await get_timeline(session, match_id)
    detail = match_view(match, names)
    detail["events"] = timeline["events"]
    return detail


async def get_statistics(session: AsyncSession, match_id: int) -> dict[int, dict[str, Any]]:
    """Per-team event counts, keyed by team id. Both teams are always present."""
    match = await get_match(session, match_id)
    names = await team_names(session, [match.team_1_id, match.team_2_id])

    stats = {
        team_id: {
            "team_name": names.get(team_id),
            "goals": 0,
            "own_goals": 0,
            "yellow_cards": 0,
            "red_cards": 0,
        }
        for team_id in (match.team_1_id, match.team_2_id)
    }
    field_for = {
        EventKind.GOAL.value: "goals",
        EventKind.OWN_GOAL.value: "own_goals",
        EventKind.YELLOW_CARD.value: "yellow_cards",
        EventKind.RED_CARD.value: "red_cards",
    }

    result = await session.execute(
        select(MatchEvent.team_id, MatchEvent.kind, func.count().label("count"))
        .where(MatchEvent.match_id == match_id)
        .group_by(MatchEvent.team_id, MatchEvent.kind)
    )
    for row in result:
        if row.team_id in stats and row.kind in field_for:
            stats[row.team_id][field_for[row.kind]] = row.count
    return stats


async def ledger_scores(session: AsyncSession, match: Match) -> tuple[int, int]:
    """Scores derived from the ledger alone (GOAL credits its team, OWN_GOAL the opponent)."""
    result = await session.execute(
        select(MatchEvent.team_id, MatchEvent.kind, func.count().label("count"))
        .where(
            MatchEvent.match_id == match.id,
            MatchEvent.kind.in_([EventKind.GOAL.value, EventKind.OWN_GOAL.value]),
        )
        .group_by(MatchEvent.team_id, MatchEvent.kind)
    )
    scores = {1: 0, 2: 0}
    for row in result:
        credited = row.team_id if row.kind == EventKind.GOAL.value else match.opponent_of(row.team_id)
        side = match.team_side(credited)
        if side:
            scores[side] += row.count
    return scores[1], scores[2]


async def verify_ledger(session: AsyncSession, match_id: int) -> dict[str, Any]:
    """
    Compare the cached scores with the ledger.

    A mismatch is legitimate only after an administrative score override,
    which is always present in the audit log.
    """
    match = await get_match(session, match_id)
    derived_1, derived_2 = await ledger_scores(session, match)
    consistent = (derived_1, derived_2) == (match.score_1, match.score_2)
    if not consistent:
        logger.warning(
            f"[LEDGER] Match {match_id} cached score {match.score_1}-{match.score_2} "
            f"differs from ledger {derived_1}-{derived_2}"
        )
    return {
        "match_id": match_id,
        "cached": {"score_1": match.score_1, "score_2": match.score_2},
        "ledger": {"score_1": derived_1, "score_2": derived_2},
        "consistent": consistent,
    }


async def list_live_matches(session: AsyncSession, category_id: Optional[int] = None) -> list[dict[str, Any]]:
    """LIVE and PAUSED matches with team names, oldest kickoff first."""
    team_1 = aliased(Team)
    team_2 = aliased(Team)
    stmt = (
        select(Match, team_1.name.label("team_1_name"), team_2.name.label("team_2_name"))
        .join(team_1, team_1.id == Match.team_1_id)
        .join(team_2, team_2.id == Match.team_2_id)
        .where(Match.status.in_(ACTIVE_STATUSES))
        .order_by(Match.scheduled_at, Match.id)
    )
    if category_id is not None:
        stmt = stmt.where(Match.category_id == category_id)

    result = await session.execute(stmt)
    return [
        match_view(row.Match, {row.Match.team_1_id: row.team_1_name, row.Match.team_2_id: row.team_2_name})
        for row in result
    ]


async def find_booking_conflicts(
    session: AsyncSession,
    team_ids: list[int],
    scheduled_at,
    exclude_match_id: Optional[int] = None,
) -> list[Match]:
    """Non-cancelled matches involving any of ``team_ids`` at exactly ``scheduled_at``."""
    if scheduled_at is None:
        return []
    stmt = select(Match).where(
        Match.scheduled_at == scheduled_at,
        Match.status != MatchStatus.CANCELLED.value,
        or_(Match.team_1_id.in_(team_ids), Match.team_2_id.in_(team_ids)),
    )
    if exclude_match_id is not None:
        stmt = stmt.where(Match.id != exclude_match_id)
    result = await session.execute(stmt)
    return list(result.scalars().all())
