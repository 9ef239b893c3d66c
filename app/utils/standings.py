"""
Standings table helpers.

Pure functions shared by the standings collaborator (which builds the
tables) and the bracket seeder (which ranks qualifiers from them).
Ordering inside a group is points desc, goal difference desc, goals for
desc; Python's sort is stable so remaining ties keep their input order.
"""

from dataclasses import asdict, dataclass
from typing import Iterable, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass
class StandingEntry:
    """One team's row in a group table."""

    team_id: int
    group: str
    played: int = 0
    wins: int = 0
    draws: int = 0
    losses: int = 0
    goals_for: int = 0
    goals_against: int = 0
    points: int = 0
    team_name: Optional[str] = None

    @property
    def goal_difference(self) -> int:
        return self.goals_for - self.goals_against

    def to_dict(self) -> dict:
        data = asdict(self)
        data["goal_difference"] = self.goal_difference
        return data


@dataclass(frozen=True)
class MatchResult:
    """Final score of a finished group match."""

    team_1_id: int
    team_2_id: int
    score_1: int
    score_2: int


def ranking_key(entry: StandingEntry) -> tuple[int, int, int]:
    """Sort key: points, then goal difference, then goals scored (all desc)."""
    return (-entry.points, -entry.goal_difference, -entry.goals_for)


def sort_group_table(entries: Iterable[StandingEntry]) -> list[StandingEntry]:
    return sorted(entries, key=ranking_key)


def group_standings_by_name(standings: Iterable[StandingEntry]) -> dict[str, list[StandingEntry]]:
    """
    Group standings entries by their group name, preserving input order.

    Args:
        standings: Flat table (any order)

    Returns:
        Dict mapping group_name -> list of entries
    """
    groups: dict[str, list[StandingEntry]] = {}
    for entry in standings:
        group_name = entry.group or "Unknown"
        if group_name not in groups:
            groups[group_name] = []
        groups[group_name].append(entry)
    return groups


def compute_group_tables(
    teams: Iterable[tuple[int, str]],
    results: Iterable[MatchResult],
    points_win: int = 3,
    points_draw: int = 1,
    points_loss: int = 0,
) -> list[StandingEntry]:
    """
    Build ordered group tables from finished results.

    Args:
        teams: (team_id, group) pairs for every registered team
        results: Finished matches between teams of the same group

    Returns:
        Flat list ordered by group label, then ranking within the group.
        Results involving unknown teams are ignored.
    """
    table: dict[int, StandingEntry] = {
        team_id: StandingEntry(team_id=team_id, group=group) for team_id, group in teams
    }

    for result in results:
        home = table.get(result.team_1_id)
        away = table.get(result.team_2_id)
        if home is None or away is None:
            logger.debug(
                f"[STANDINGS] Skipping result {result.team_1_id}-{result.team_2_id}: team not in table"
            )
            continue

        home.played += 1
        away.played += 1
        home.goals_for += result.score_1
        home.goals_against += result.score_2
        away.goals_for += result.score_2
        away.goals_against += result.score_1

        if result.score_1 > result.score_2:
            home.wins += 1
            away.losses += 1
            home.points += points_win
            away.points += points_loss
        elif result.score_1 < result.score_2:
            away.wins += 1
            home.losses += 1
            away.points += points_win
            home.points += points_loss
        else:
            home.draws += 1
            away.draws += 1
            home.points += points_draw
            away.points += points_draw

    ordered: list[StandingEntry] = []
    groups = group_standings_by_name(table.values())
    for group_name in sorted(groups):
        ordered.extend(sort_group_table(groups[group_name]))
    return ordered
