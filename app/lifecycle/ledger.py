"""
Event ledger: append-only match events and the score/stat deltas they imply.

``add_event`` performs three writes (event insert, score increment, player
goal counter) inside the caller's unit of work. Increments are relative
(``score_1 = score_1 + 1``) so concurrent writers serialize on the row
instead of overwriting each other's read-modify-write.
"""

import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import MatchNotInProgress, PlayerNotEligible, ValidationFailed
from app.lifecycle.state_machine import ensure_mutable, lock_match
from app.models import EventKind, Match, MatchEvent, MatchStatus, PlayerRegistration, SCORING_KINDS, utcnow
from app.roster import RosterService

logger = logging.getLogger(__name__)


def credited_team(match: Match, team_id: int, kind: EventKind) -> Optional[int]:
    """
    Team whose score an event increments.

    GOAL credits the event team; OWN_GOAL credits its opponent. Cards
    credit nobody.
    """
    if kind == EventKind.GOAL:
        return team_id
    if kind == EventKind.OWN_GOAL:
        return match.opponent_of(team_id)
    return None


def _parse_kind(kind) -> EventKind:
    try:
        return EventKind(kind)
    except ValueError:
        raise ValidationFailed(
            f"Unknown event kind: {kind}",
            {"kind": kind, "allowed": [k.value for k in EventKind]},
        )


async def _check_eligibility(
    roster: RosterService,
    match: Match,
    team_id: int,
    player_id: int,
    kind: EventKind,
) -> None:
    details = {"match_id": match.id, "team_id": team_id, "player_id": player_id}

    if match.team_side(team_id) is None:
        raise PlayerNotEligible(f"Team {team_id} is not playing match {match.id}", details)

    if await roster.is_player_eligible(player_id, match.category_id, team_id):
        return

    # An own goal may be booked against the side that benefits from it
    if kind == EventKind.OWN_GOAL and await roster.is_player_eligible(
        player_id, match.category_id, match.opponent_of(team_id)
    ):
        return

    raise PlayerNotEligible(
        f"Player {player_id} is not registered for category {match.category_id} under team {team_id}",
        details,
    )


async def add_event(
    session: AsyncSession,
    match_id: int,
    team_id: int,
    player_id: int,
    kind,
    minute: int,
    actor: Optional[str],
    roster: Optional[RosterService] = None,
) -> tuple[MatchEvent, Match]:
    """
    Record an event on a LIVE match.

    Raises:
        NotFound: unknown match
        ImmutableState: match is finished
        MatchNotInProgress: match is not LIVE
        PlayerNotEligible: team not in the match, or player not registered
        ValidationFailed: unknown kind or negative minute
    """
    event_kind = _parse_kind(kind)
    if minute < 0:
        raise ValidationFailed("Minute must be >= 0", {"minute": minute})

    match = await lock_match(session, match_id)
    ensure_mutable(match)
    if match.status != MatchStatus.LIVE.value:
        raise MatchNotInProgress(
            f"Match {match_id} is {match.status}; events can only be recorded while live",
            {"match_id": match_id, "status": match.status},
        )

    roster = roster or RosterService(session)
    await _check_eligibility(roster, match, team_id, player_id, event_kind)

    event = MatchEvent(
        match_id=match.id,
        category_id=match.category_id,
        team_id=team_id,
        player_id=player_id,
        kind=event_kind.value,
        minute=minute,
        created_by=actor,
    )
    session.add(event)
    await session.flush()

    if event_kind in SCORING_KINDS:
        side = match.team_side(credited_team(match, team_id, event_kind))
        column = "score_1" if side == 1 else "score_2"
        await session.execute(
            update(Match)
            .where(Match.id == match.id)
            .values(**{column: getattr(Match, column) + 1}, updated_by=actor, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

    if event_kind == EventKind.GOAL:
        await session.execute(
            update(PlayerRegistration)
            .where(
                PlayerRegistration.player_id == player_id,
                PlayerRegistration.category_id == match.category_id,
                PlayerRegistration.team_id == team_id,
            )
            .values(goals=PlayerRegistration.goals + 1)
            .execution_options(synchronize_session=False)
        )

    await session.refresh(match)
    logger.info(
        f"[LEDGER] Match {match.id}: {event_kind.value} team={team_id} player={player_id} "
        f"minute={minute} -> {match.score_1}-{match.score_2}"
    )
    return event, match


async def update_score(
    session: AsyncSession,
    match_id: int,
    score_1: int,
    score_2: int,
    actor: Optional[str],
) -> tuple[Match, dict[str, int]]:
    """
    Administrative absolute override of the cached score.

    Never writes a ledger event. Returns the match and the previous scores
    so the caller can audit the change.
    """
    if score_1 < 0 or score_2 < 0:
        raise ValidationFailed(
            "Scores must be non-negative", {"score_1": score_1, "score_2": score_2}
        )

    match = await lock_match(session, match_id)
    ensure_mutable(match)

    previous = {"score_1": match.score_1, "score_2": match.score_2}
    await session.execute(
        update(Match)
        .where(Match.id == match.id)
        .values(score_1=score_1, score_2=score_2, updated_by=actor, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.refresh(match)

    logger.warning(
        f"[LEDGER] Match {match.id}: score overridden {previous['score_1']}-{previous['score_2']} "
        f"-> {score_1}-{score_2} by {actor}"
    )
    return match, previous
