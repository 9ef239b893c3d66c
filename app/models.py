"""Database models using SQLModel."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, CheckConstraint, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo on round-trip)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MatchStatus(str, Enum):
    """Match lifecycle states. The stored value IS the state machine state."""

    SCHEDULED = "scheduled"
    LIVE = "live"
    PAUSED = "paused"
    FINISHED = "finished"
    CANCELLED = "cancelled"


class EventKind(str, Enum):
    GOAL = "GOAL"
    OWN_GOAL = "OWN_GOAL"
    YELLOW_CARD = "YELLOW_CARD"
    RED_CARD = "RED_CARD"


SCORING_KINDS = frozenset({EventKind.GOAL, EventKind.OWN_GOAL})


class BracketRound(str, Enum):
    SEMIFINAL = "semifinal"
    FINAL = "final"
    THIRD_PLACE = "third_place"


BRACKET_AWAITING = "awaiting"


# =============================================================================
# Collaborator-owned tables (teams, categories, rosters, standings)
# =============================================================================


class Team(SQLModel, table=True):
    """Registered club. Owned by the registration service."""

    __tablename__ = "teams"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255, description="Club name")
    logo_url: Optional[str] = Field(default=None, max_length=500)


class Category(SQLModel, table=True):
    """Tournament category (age group / division) grouping matches and brackets."""

    __tablename__ = "categories"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(max_length=255)
    final_format: str = Field(
        default="none", max_length=30, description="'final_four' enables bracket seeding"
    )
    periods: int = Field(default=2, description="Number of periods per match")
    period_minutes: int = Field(default=20, description="Duration of one period")


class CategoryTeam(SQLModel, table=True):
    """Team registered in a category, optionally assigned to a group."""

    __tablename__ = "category_teams"
    __table_args__ = (
        UniqueConstraint("category_id", "team_id", name="uq_category_team"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    category_id: int = Field(foreign_key="categories.id", index=True)
    team_id: int = Field(foreign_key="teams.id", index=True)
    group_label: Optional[str] = Field(default=None, max_length=20, index=True)


class PlayerRegistration(SQLModel, table=True):
    """Player registered for a category under a team, with career goal counter."""

    __tablename__ = "player_registrations"
    __table_args__ = (
        UniqueConstraint("player_id", "category_id", "team_id", name="uq_player_category_team"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    player_id: int = Field(index=True)
    player_name: str = Field(max_length=255)
    category_id: int = Field(foreign_key="categories.id", index=True)
    team_id: int = Field(foreign_key="teams.id", index=True)
    shirt_number: Optional[int] = Field(default=None)
    goals: int = Field(default=0, description="Goals scored in this category")


class Standing(SQLModel, table=True):
    """Group table row. Recomputed by the standings collaborator."""

    __tablename__ = "standings"
    __table_args__ = (
        UniqueConstraint("category_id", "team_id", name="uq_standing_category_team"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    category_id: int = Field(foreign_key="categories.id", index=True)
    team_id: int = Field(foreign_key="teams.id", index=True)
    group_label: Optional[str] = Field(default=None, max_length=20)

    played: int = Field(default=0)
    wins: int = Field(default=0)
    draws: int = Field(default=0)
    losses: int = Field(default=0)
    goals_for: int = Field(default=0)
    goals_against: int = Field(default=0)
    goal_difference: int = Field(default=0)
    points: int = Field(default=0)
    updated_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# Lifecycle engine tables
# =============================================================================


class Match(SQLModel, table=True):
    """Match owned by the lifecycle engine. Scores are a cache of the event ledger."""

    __tablename__ = "matches"
    __table_args__ = (
        CheckConstraint("score_1 >= 0 AND score_2 >= 0", name="ck_match_scores_non_negative"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    category_id: int = Field(foreign_key="categories.id", index=True)
    team_1_id: int = Field(foreign_key="teams.id", index=True)
    team_2_id: int = Field(foreign_key="teams.id", index=True)

    scheduled_at: Optional[datetime] = Field(
        default=None, index=True, description="NULL for knockout fixtures not yet timed"
    )
    group_label: Optional[str] = Field(
        default=None, max_length=20, description="Group letter, or 'semifinal'"
    )

    status: str = Field(default=MatchStatus.SCHEDULED.value, max_length=20, index=True)
    period: Optional[int] = Field(default=None, description="Active period once started")

    score_1: int = Field(default=0)
    score_2: int = Field(default=0)

    started_at: Optional[datetime] = Field(default=None)
    finished_at: Optional[datetime] = Field(default=None)

    # Audit
    created_by: Optional[str] = Field(default=None, max_length=100)
    updated_by: Optional[str] = Field(default=None, max_length=100)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def team_side(self, team_id: int) -> Optional[int]:
        """1 or 2 for a participating team, None otherwise."""
        if team_id == self.team_1_id:
            return 1
        if team_id == self.team_2_id:
            return 2
        return None

    def opponent_of(self, team_id: int) -> int:
        return self.team_2_id if team_id == self.team_1_id else self.team_1_id


class MatchEvent(SQLModel, table=True):
    """Append-only ledger entry. Sole source of truth for derived scores."""

    __tablename__ = "match_events"
    __table_args__ = (
        CheckConstraint("minute >= 0", name="ck_match_event_minute"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: int = Field(foreign_key="matches.id", index=True)
    category_id: int = Field(foreign_key="categories.id", index=True)
    team_id: int = Field(foreign_key="teams.id")
    player_id: int = Field(index=True)
    kind: str = Field(max_length=20, description="GOAL, OWN_GOAL, YELLOW_CARD, RED_CARD")
    minute: int = Field(description="Match minute (>= 0)")
    created_by: Optional[str] = Field(default=None, max_length=100)
    created_at: datetime = Field(default_factory=utcnow)


class Bracket(SQLModel, table=True):
    """Knockout stage slot. References (never owns) its match."""

    __tablename__ = "brackets"
    __table_args__ = (
        UniqueConstraint("category_id", "code", name="uq_bracket_category_code"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    category_id: int = Field(foreign_key="categories.id", index=True)
    round: str = Field(max_length=20, description="semifinal, final, third_place")
    code: str = Field(max_length=10, description="Seed code: SF1, SF2, F1, TP1")
    team_1_id: Optional[int] = Field(default=None, foreign_key="teams.id")
    team_2_id: Optional[int] = Field(default=None, foreign_key="teams.id")
    match_id: Optional[int] = Field(default=None, foreign_key="matches.id")
    status: str = Field(default=BRACKET_AWAITING, max_length=20)
    created_at: datetime = Field(default_factory=utcnow)


class MatchAuditLog(SQLModel, table=True):
    """Audit trail for lifecycle commands and administrative overrides."""

    __tablename__ = "match_audit_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    match_id: Optional[int] = Field(default=None, index=True)
    action: str = Field(max_length=50, index=True, description="e.g. UPDATE_SCORE, FINISH_MATCH")
    actor: Optional[str] = Field(default=None, max_length=100)
    details: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
