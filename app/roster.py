"""
Roster collaborator: who is registered where.

Team and player registration are owned by another service; the lifecycle
engine only asks eligibility questions, always inside the caller's
transaction.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import CategoryTeam, PlayerRegistration, Team

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RosterTeam:
    team_id: int
    name: str
    group: Optional[str] = None


class RosterService:
    """Eligibility and roster lookups over the registration tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def is_player_eligible(self, player_id: int, category_id: int, team_id: int) -> bool:
        """True if ``player_id`` is registered for ``category_id`` under ``team_id``."""
        result = await self.session.execute(
            select(PlayerRegistration.id).where(
                PlayerRegistration.player_id == player_id,
                PlayerRegistration.category_id == category_id,
                PlayerRegistration.team_id == team_id,
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def registered_teams(self, category_id: int, team_ids: list[int]) -> list[RosterTeam]:
        """Subset of ``team_ids`` registered in the category."""
        result = await self.session.execute(
            select(CategoryTeam.team_id, CategoryTeam.group_label, Team.name)
            .join(Team, Team.id == CategoryTeam.team_id)
            .where(
                CategoryTeam.category_id == category_id,
                CategoryTeam.team_id.in_(team_ids),
            )
        )
        return [RosterTeam(row.team_id, row.name, row.group_label) for row in result]

    async def group_roster(self, category_id: int, group: str) -> list[RosterTeam]:
        """Teams of one group, sorted alphabetically by name."""
        result = await self.session.execute(
            select(CategoryTeam.team_id, CategoryTeam.group_label, Team.name)
            .join(Team, Team.id == CategoryTeam.team_id)
            .where(
                CategoryTeam.category_id == category_id,
                CategoryTeam.group_label == group,
            )
            .order_by(Team.name, Team.id)
        )
        teams = [RosterTeam(row.team_id, row.name, row.group_label) for row in result]
        logger.debug(f"[ROSTER] Category {category_id} group {group}: {len(teams)} teams")
        return teams
