"""
Pure fixture algorithms: round-robin pairing, kickoff times, bracket seeding.

No database access here; the generator feeds rosters and standings in and
persists what comes out.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterator, Sequence, TypeVar

from app.utils.standings import StandingEntry, group_standings_by_name, ranking_key

T = TypeVar("T")

FOUR_TEAM_BRACKET = 4


@dataclass(frozen=True)
class Seeding:
    """Semifinal pairing for a four-team knockout stage."""

    code: str
    team_1_id: int
    team_2_id: int


def round_robin_pairings(roster: Sequence[T]) -> Iterator[tuple[T, T]]:
    """
    Every unordered pair exactly once, in double-loop order (i < j).

    For [A, B, C, D]: AB, AC, AD, BC, BD, CD.
    """
    for i in range(len(roster)):
        for j in range(i + 1, len(roster)):
            yield roster[i], roster[j]


def fixture_times(match_day: date, kickoff: time, interval_minutes: int, count: int) -> list[datetime]:
    """Kickoff of the k-th fixture: match_day + kickoff + k * interval."""
    first = datetime.combine(match_day, kickoff)
    step = timedelta(minutes=interval_minutes)
    return [first + k * step for k in range(count)]


def select_qualifiers(standings: Sequence[StandingEntry], per_group: int = 2) -> list[StandingEntry]:
    """
    Top ``per_group`` entries of each group.

    ``standings`` must already be ordered within each group (the standings
    collaborator returns it that way); group order is preserved.
    """
    qualifiers: list[StandingEntry] = []
    for entries in group_standings_by_name(standings).values():
        qualifiers.extend(entries[:per_group])
    return qualifiers


def rank_qualifiers(qualifiers: Sequence[StandingEntry]) -> list[StandingEntry]:
    """
    Tournament-wide rank: points, goal difference, goals for (all desc).

    Stable: entries tied on all three keep their relative standings order.
    """
    return sorted(qualifiers, key=ranking_key)


def seed_semifinals(ranked: Sequence[StandingEntry]) -> list[Seeding]:
    """Cross pairing of the top four: seed 1 v seed 4, seed 2 v seed 3."""
    if len(ranked) < FOUR_TEAM_BRACKET:
        raise ValueError(f"Need {FOUR_TEAM_BRACKET} ranked teams, got {len(ranked)}")
    seeds = ranked[:FOUR_TEAM_BRACKET]
    return [
        Seeding("SF1", seeds[0].team_id, seeds[3].team_id),
        Seeding("SF2", seeds[1].team_id, seeds[2].team_id),
    ]
