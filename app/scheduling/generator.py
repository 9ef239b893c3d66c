"""
Schedule generator: persists round-robin group fixtures and knockout seeding.

Each generation runs as one unit of work. Every precondition is checked
before the first insert, and any failure afterwards rolls the whole batch
back, so a failed call leaves zero new matches or brackets.
"""

import logging
from datetime import date, time
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.database import unit_of_work
from app.errors import (
    InsufficientQualifiers,
    InsufficientTeams,
    NotFound,
    SchedulingConflict,
    UnsupportedFormat,
    ValidationFailed,
)
from app.lifecycle.queries import find_booking_conflicts, match_view
from app.models import BRACKET_AWAITING, Bracket, BracketRound, Category, Match, MatchStatus
from app.ops.audit import record_match_action
from app.roster import RosterService
from app.scheduling.fixtures import (
    FOUR_TEAM_BRACKET,
    fixture_times,
    rank_qualifiers,
    round_robin_pairings,
    seed_semifinals,
    select_qualifiers,
)
from app.standings import StandingService, TableStandingService
from app.telemetry.metrics import record_fixtures_generated, track_command

logger = logging.getLogger(__name__)

SEMIFINAL_GROUP_LABEL = "semifinal"
PLACEHOLDERS = (
    (BracketRound.FINAL, "F1"),
    (BracketRound.THIRD_PLACE, "TP1"),
)


async def _get_category(session: AsyncSession, category_id: int) -> Category:
    category = await session.get(Category, category_id)
    if category is None:
        raise NotFound(f"Category {category_id} not found", {"category_id": category_id})
    return category


async def generate_group_matches(
    session: AsyncSession,
    category_id: int,
    group: str,
    match_day: date,
    kickoff_time: Optional[time] = None,
    interval_minutes: Optional[int] = None,
    actor: Optional[str] = None,
) -> dict[str, Any]:
    """
    Create every fixture of a group, one kickoff slot after another.

    Teams are paired in alphabetical order (i < j); the k-th fixture kicks
    off at match_day + kickoff_time + k * interval_minutes.
    """
    settings = get_settings()
    kickoff_time = kickoff_time or settings.DEFAULT_KICKOFF_TIME
    interval_minutes = interval_minutes if interval_minutes is not None else settings.FIXTURE_INTERVAL_MINUTES

    with track_command("generate_group"):
        if interval_minutes <= 0:
            raise ValidationFailed("Interval must be positive", {"interval_minutes": interval_minutes})

        async with unit_of_work(session):
            await _get_category(session, category_id)

            roster = await RosterService(session).group_roster(category_id, group)
            if len(roster) < 2:
                raise InsufficientTeams(
                    f"Group {group} of category {category_id} has {len(roster)} team(s); at least 2 required",
                    {"category_id": category_id, "group": group, "teams": len(roster)},
                )

            pairings = list(round_robin_pairings(roster))
            kickoffs = fixture_times(match_day, kickoff_time, interval_minutes, len(pairings))

            matches = []
            for (home, away), kickoff in zip(pairings, kickoffs):
                conflicts = await find_booking_conflicts(session, [home.team_id, away.team_id], kickoff)
                if conflicts:
                    raise SchedulingConflict(
                        f"{home.name} or {away.name} already booked at {kickoff.isoformat()}",
                        {
                            "scheduled_at": kickoff.isoformat(),
                            "team_ids": [home.team_id, away.team_id],
                            "conflicting_match_ids": [m.id for m in conflicts],
                        },
                    )
                match = Match(
                    category_id=category_id,
                    team_1_id=home.team_id,
                    team_2_id=away.team_id,
                    scheduled_at=kickoff,
                    group_label=group,
                    status=MatchStatus.SCHEDULED.value,
                    created_by=actor,
                    updated_by=actor,
                )
                session.add(match)
                matches.append(match)

            await session.flush()
            await record_match_action(session, "GENERATE_GROUP_MATCHES", None, actor, {
                "category_id": category_id,
                "group": group,
                "match_ids": [m.id for m in matches],
            })

            names = {team.team_id: team.name for team in roster}
            views = [match_view(m, names) for m in matches]

    record_fixtures_generated("group", len(views))
    logger.info(
        f"[SCHEDULE] Category {category_id} group {group}: {len(views)} fixtures "
        f"from {kickoff_time.strftime('%H:%M')} every {interval_minutes} min"
    )
    return {"category_id": category_id, "group": group, "matches": views}


async def generate_bracket_matches(
    session: AsyncSession,
    category_id: int,
    actor: Optional[str] = None,
    standings: Optional[StandingService] = None,
) -> dict[str, Any]:
    """
    Seed the four-team knockout stage from the group tables.

    Top qualifiers of each group are ranked tournament-wide; SF1 is seed 1
    v seed 4 and SF2 is seed 2 v seed 3. The final and third-place entries
    are created empty and left awaiting.
    """
    settings = get_settings()
    standings = standings or TableStandingService()

    with track_command("generate_bracket"):
        async with unit_of_work(session):
            category = await _get_category(session, category_id)
            if category.final_format != settings.KNOCKOUT_FORMAT:
                raise UnsupportedFormat(
                    f"Category {category_id} has no {settings.KNOCKOUT_FORMAT} knockout stage",
                    {"category_id": category_id, "final_format": category.final_format},
                )

            existing = await session.scalar(
                select(func.count()).select_from(Bracket).where(Bracket.category_id == category_id)
            )
            if existing:
                raise ValidationFailed(
                    f"Bracket for category {category_id} already generated",
                    {"category_id": category_id, "brackets": existing},
                )

            table = await standings.table(session, category_id)
            qualifiers = select_qualifiers(table, settings.QUALIFIERS_PER_GROUP)
            if len(qualifiers) < FOUR_TEAM_BRACKET:
                raise InsufficientQualifiers(
                    f"Only {len(qualifiers)} team(s) qualified; {FOUR_TEAM_BRACKET} required",
                    {"category_id": category_id, "qualified": [q.team_id for q in qualifiers]},
                )

            ranked = rank_qualifiers(qualifiers)
            names = {entry.team_id: entry.team_name for entry in ranked}

            semifinals = []
            for seeding in seed_semifinals(ranked):
                match = Match(
                    category_id=category_id,
                    team_1_id=seeding.team_1_id,
                    team_2_id=seeding.team_2_id,
                    scheduled_at=None,
                    group_label=SEMIFINAL_GROUP_LABEL,
                    status=MatchStatus.SCHEDULED.value,
                    created_by=actor,
                    updated_by=actor,
                )
                session.add(match)
                await session.flush()

                session.add(Bracket(
                    category_id=category_id,
                    round=BracketRound.SEMIFINAL.value,
                    code=seeding.code,
                    team_1_id=seeding.team_1_id,
                    team_2_id=seeding.team_2_id,
                    match_id=match.id,
                    status=match.status,
                ))
                semifinals.append({"code": seeding.code, "round": BracketRound.SEMIFINAL.value,
                                   "match": match_view(match, names)})

            placeholders = []
            for bracket_round, code in PLACEHOLDERS:
                session.add(Bracket(
                    category_id=category_id,
                    round=bracket_round.value,
                    code=code,
                    status=BRACKET_AWAITING,
                ))
                placeholders.append({"code": code, "round": bracket_round.value, "status": BRACKET_AWAITING})

            await session.flush()
            await record_match_action(session, "GENERATE_BRACKET", None, actor, {
                "category_id": category_id,
                "seeds": [entry.team_id for entry in ranked[:FOUR_TEAM_BRACKET]],
                "match_ids": [sf["match"]["id"] for sf in semifinals],
            })

    record_fixtures_generated("bracket", len(semifinals))
    logger.info(
        f"[SCHEDULE] Category {category_id} bracket seeded: "
        + ", ".join(f"{sf['code']}={sf['match']['team_1']['id']}v{sf['match']['team_2']['id']}" for sf in semifinals)
    )
    return {
        "category_id": category_id,
        "seeds": [entry.to_dict() for entry in ranked[:FOUR_TEAM_BRACKET]],
        "semifinals": semifinals,
        "placeholders": placeholders,
    }
