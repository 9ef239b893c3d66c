"""
Match state machine.

The stored ``matches.status`` column IS the state. A transition is:

1. lock the match row (SELECT ... FOR UPDATE on PostgreSQL; on SQLite the
   transaction already holds the write lock via BEGIN IMMEDIATE)
2. check the guard against the freshly read status
3. conditional UPDATE ... WHERE status = :expected

all inside the caller's unit of work. If the conditional update touches no
row, another writer got there first and the command fails with
InvalidTransition.
"""

import logging
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ImmutableState, InvalidTransition, NotFound
from app.models import Match, MatchStatus, utcnow

logger = logging.getLogger(__name__)

# command -> (allowed source states, target state)
TRANSITIONS: dict[str, tuple[frozenset[MatchStatus], MatchStatus]] = {
    "start": (frozenset({MatchStatus.SCHEDULED}), MatchStatus.LIVE),
    "pause": (frozenset({MatchStatus.LIVE}), MatchStatus.PAUSED),
    "resume": (frozenset({MatchStatus.PAUSED}), MatchStatus.LIVE),
    "finish": (frozenset({MatchStatus.LIVE}), MatchStatus.FINISHED),
    "cancel": (frozenset({MatchStatus.SCHEDULED}), MatchStatus.CANCELLED),
}


async def lock_match(session: AsyncSession, match_id: int) -> Match:
    """Read the match for update inside the current transaction."""
    result = await session.execute(
        select(Match)
        .where(Match.id == match_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    match = result.scalar_one_or_none()
    if match is None:
        raise NotFound(f"Match {match_id} not found", {"match_id": match_id})
    return match


def ensure_mutable(match: Match) -> None:
    """Reject any mutation of a FINISHED match."""
    if match.status == MatchStatus.FINISHED.value:
        raise ImmutableState(
            f"Match {match.id} is finished and can no longer be modified",
            {"match_id": match.id, "status": match.status},
        )


def ensure_not_cancelled(match: Match, command: str) -> None:
    if match.status == MatchStatus.CANCELLED.value:
        raise InvalidTransition(
            f"Cannot {command} match {match.id}: match is cancelled",
            {"match_id": match.id, "status": match.status, "command": command},
        )


def check_transition(command: str, match: Match) -> MatchStatus:
    """Return the target state of ``command`` or raise if the guard fails."""
    allowed, target = TRANSITIONS[command]
    ensure_mutable(match)
    if MatchStatus(match.status) not in allowed:
        raise InvalidTransition(
            f"Cannot {command} match {match.id} in status {match.status}",
            {
                "match_id": match.id,
                "status": match.status,
                "command": command,
                "allowed_from": sorted(s.value for s in allowed),
            },
        )
    return target


async def apply_transition(
    session: AsyncSession,
    match: Match,
    command: str,
    actor: Optional[str],
    **values: Any,
) -> Match:
    """
    Move ``match`` to the target state of ``command``.

    Extra column values (period, started_at, finished_at...) are written by
    the same conditional UPDATE.
    """
    target = check_transition(command, match)
    expected = match.status

    result = await session.execute(
        update(Match)
        .where(Match.id == match.id, Match.status == expected)
        .values(status=target.value, updated_by=actor, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise InvalidTransition(
            f"Match {match.id} changed state concurrently; {command} rejected",
            {"match_id": match.id, "expected": expected, "command": command},
        )

    await session.refresh(match)
    logger.info(f"[LIFECYCLE] Match {match.id}: {expected} -> {target.value} ({command}) by {actor}")
    return match
