"""
Standing Service collaborator.

The lifecycle engine only needs two calls: ``recompute`` after a match
finishes and ``table`` when seeding a bracket. TableStandingService is the
default SQL-backed implementation: a plain points table rebuilt from the
FINISHED group matches of a category.
"""

import logging
from abc import ABC, abstractmethod

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models import CategoryTeam, Match, MatchStatus, Standing, Team, utcnow
from app.utils.standings import MatchResult, StandingEntry, compute_group_tables

logger = logging.getLogger(__name__)

StandingsTable = list[StandingEntry]


class StandingService(ABC):
    """Narrow interface consumed by the lifecycle engine."""

    @abstractmethod
    async def recompute(self, session: AsyncSession, category_id: int) -> StandingsTable:
        """Rebuild the category's group tables. Runs inside the caller's transaction."""

    @abstractmethod
    async def table(self, session: AsyncSession, category_id: int) -> StandingsTable:
        """Current tables, ordered by group then rank."""


class TableStandingService(StandingService):
    """Points table (win/draw/loss) persisted in the ``standings`` table."""

    def __init__(self, points_win: int | None = None, points_draw: int | None = None,
                 points_loss: int | None = None):
        settings = get_settings()
        self.points_win = settings.POINTS_WIN if points_win is None else points_win
        self.points_draw = settings.POINTS_DRAW if points_draw is None else points_draw
        self.points_loss = settings.POINTS_LOSS if points_loss is None else points_loss

    async def recompute(self, session: AsyncSession, category_id: int) -> StandingsTable:
        teams_result = await session.execute(
            select(CategoryTeam.team_id, CategoryTeam.group_label).where(
                CategoryTeam.category_id == category_id,
                CategoryTeam.group_label.is_not(None),
            )
        )
        teams = [(row.team_id, row.group_label) for row in teams_result]
        group_of = dict(teams)

        matches_result = await session.execute(
            select(Match.team_1_id, Match.team_2_id, Match.score_1, Match.score_2, Match.group_label).where(
                Match.category_id == category_id,
                Match.status == MatchStatus.FINISHED.value,
            )
        )
        # Only group-stage fixtures count: the match carries the group label both
        # teams share. Knockout matches between teams of one group are skipped.
        results = [
            MatchResult(row.team_1_id, row.team_2_id, row.score_1, row.score_2)
            for row in matches_result
            if row.group_label is not None
            and group_of.get(row.team_1_id) == row.group_label == group_of.get(row.team_2_id)
        ]

        entries = compute_group_tables(
            teams, results,
            points_win=self.points_win,
            points_draw=self.points_draw,
            points_loss=self.points_loss,
        )

        await session.execute(delete(Standing).where(Standing.category_id == category_id))
        now = utcnow()
        for entry in entries:
            session.add(Standing(
                category_id=category_id,
                team_id=entry.team_id,
                group_label=entry.group,
                played=entry.played,
                wins=entry.wins,
                draws=entry.draws,
                losses=entry.losses,
                goals_for=entry.goals_for,
                goals_against=entry.goals_against,
                goal_difference=entry.goal_difference,
                points=entry.points,
                updated_at=now,
            ))
        await session.flush()

        logger.info(f"[STANDINGS] Recomputed category {category_id}: {len(entries)} rows, {len(results)} results")
        return await self.table(session, category_id)

    async def table(self, session: AsyncSession, category_id: int) -> StandingsTable:
        result = await session.execute(
            select(Standing, Team.name)
            .join(Team, Team.id == Standing.team_id)
            .where(Standing.category_id == category_id)
            .order_by(
                Standing.group_label,
                Standing.points.desc(),
                Standing.goal_difference.desc(),
                Standing.goals_for.desc(),
                Standing.id,
            )
        )
        return [
            StandingEntry(
                team_id=row.Standing.team_id,
                group=row.Standing.group_label or "",
                played=row.Standing.played,
                wins=row.Standing.wins,
                draws=row.Standing.draws,
                losses=row.Standing.losses,
                goals_for=row.Standing.goals_for,
                goals_against=row.Standing.goals_against,
                points=row.Standing.points,
                team_name=row.name,
            )
            for row in result
        ]
