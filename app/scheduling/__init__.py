"""
Schedule generation.

Usage:
    from app.scheduling import generate_group_matches, generate_bracket_matches

    await generate_group_matches(session, category_id=1, group="A", match_day=date(2026, 3, 7))
    await generate_bracket_matches(session, category_id=1)
"""

from app.scheduling.fixtures import (
    Seeding,
    fixture_times,
    rank_qualifiers,
    round_robin_pairings,
    seed_semifinals,
    select_qualifiers,
)
from app.scheduling.generator import generate_bracket_matches, generate_group_matches

__all__ = [
    "Seeding",
    "fixture_times",
    "rank_qualifiers",
    "round_robin_pairings",
    "seed_semifinals",
    "select_qualifiers",
    "generate_bracket_matches",
    "generate_group_matches",
]
