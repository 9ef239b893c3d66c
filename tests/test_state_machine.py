"""
Match state machine: transitions, guards, concurrency.

Validates:
1. SCHEDULED -> LIVE -> PAUSED -> LIVE -> FINISHED is the only path to FINISHED
2. Every illegal transition raises InvalidTransition, FINISHED raises ImmutableState
3. finish recomputes the category table in the same transaction
4. Concurrent finish requests: exactly one wins
"""

import asyncio

import pytest
from sqlalchemy import select

from app.errors import ImmutableState, InvalidTransition, NotFound, ValidationFailed
from app.lifecycle import commands
from app.lifecycle.queries import get_match
from app.lifecycle.state_machine import TRANSITIONS
from app.models import MatchAuditLog, MatchStatus


# ═══════════════════════════════════════════════════════════════════
# Transition table
# ═══════════════════════════════════════════════════════════════════


class TestTransitionTable:
    """Static shape of the state machine."""

    def test_finished_only_reachable_from_live(self):
        sources = [allowed for allowed, target in TRANSITIONS.values() if target == MatchStatus.FINISHED]
        assert sources == [frozenset({MatchStatus.LIVE})]

    def test_cancel_only_from_scheduled(self):
        allowed, target = TRANSITIONS["cancel"]
        assert allowed == frozenset({MatchStatus.SCHEDULED})
        assert target == MatchStatus.CANCELLED

    def test_nothing_leaves_terminal_states(self):
        for allowed, _ in TRANSITIONS.values():
            assert MatchStatus.FINISHED not in allowed
            assert MatchStatus.CANCELLED not in allowed


# ═══════════════════════════════════════════════════════════════════
# Happy path
# ═══════════════════════════════════════════════════════════════════


class TestLifecycle:
    """Full lifecycle of a single match."""

    @pytest.mark.asyncio
    async def test_start_records_period_and_time(self, session, scheduled_match):
        match = await commands.start_match(session, scheduled_match["id"], period=2, actor="ref")
        assert match["status"] == "live"
        assert match["period"] == 2
        assert match["started_at"] is not None
        assert match["updated_by"] == "ref"

    @pytest.mark.asyncio
    async def test_pause_resume_finish(self, session, live_match):
        match_id = live_match["id"]
        assert (await commands.pause_match(session, match_id))["status"] == "paused"
        assert (await commands.resume_match(session, match_id))["status"] == "live"
        match, standings = await commands.finish_match(session, match_id)
        assert match["status"] == "finished"
        assert match["finished_at"] is not None
        assert isinstance(standings, list)

    @pytest.mark.asyncio
    async def test_finish_returns_recomputed_standings(self, session, live_match, tournament):
        alpha = tournament["teams"]["Alpha"]
        await commands.add_match_event(session, live_match["id"], alpha, alpha * 100 + 1, "GOAL", 10)

        match, standings = await commands.finish_match(session, live_match["id"])

        assert (match["score_1"], match["score_2"]) == (1, 0)
        by_team = {row["team_id"]: row for row in standings}
        assert by_team[alpha]["points"] == 3
        assert by_team[alpha]["goal_difference"] == 1
        assert by_team[tournament["teams"]["Bravo"]]["losses"] == 1
        # Group A leader first
        assert standings[0]["team_id"] == alpha

    @pytest.mark.asyncio
    async def test_every_command_writes_audit_row(self, session, live_match):
        await commands.pause_match(session, live_match["id"], actor="ref")
        result = await session.execute(
            select(MatchAuditLog.action).where(MatchAuditLog.match_id == live_match["id"])
        )
        actions = [row.action for row in result]
        assert actions.count("CREATE_MATCH") == 1
        assert actions.count("START_MATCH") == 1
        assert actions.count("PAUSE_MATCH") == 1


# ═══════════════════════════════════════════════════════════════════
# Guards
# ═══════════════════════════════════════════════════════════════════


class TestGuards:
    """Illegal transitions fail and leave the match untouched."""

    @pytest.mark.asyncio
    async def test_pause_requires_live(self, session, scheduled_match):
        with pytest.raises(InvalidTransition):
            await commands.pause_match(session, scheduled_match["id"])

    @pytest.mark.asyncio
    async def test_resume_requires_paused(self, session, live_match):
        with pytest.raises(InvalidTransition):
            await commands.resume_match(session, live_match["id"])

    @pytest.mark.asyncio
    async def test_finish_requires_live(self, session, scheduled_match):
        with pytest.raises(InvalidTransition):
            await commands.finish_match(session, scheduled_match["id"])

    @pytest.mark.asyncio
    async def test_finish_from_paused_is_rejected(self, session, live_match):
        await commands.pause_match(session, live_match["id"])
        with pytest.raises(InvalidTransition):
            await commands.finish_match(session, live_match["id"])

    @pytest.mark.asyncio
    async def test_start_twice(self, session, live_match):
        with pytest.raises(InvalidTransition):
            await commands.start_match(session, live_match["id"])

    @pytest.mark.asyncio
    async def test_invalid_period(self, session, scheduled_match):
        with pytest.raises(ValidationFailed):
            await commands.start_match(session, scheduled_match["id"], period=0)

    @pytest.mark.asyncio
    async def test_finish_twice_is_immutable_and_keeps_score(self, session, live_match, tournament):
        bravo = tournament["teams"]["Bravo"]
        await commands.add_match_event(session, live_match["id"], bravo, bravo * 100 + 2, "GOAL", 33)
        first, _ = await commands.finish_match(session, live_match["id"])

        with pytest.raises(ImmutableState):
            await commands.finish_match(session, live_match["id"])

        session.expire_all()
        match = await get_match(session, live_match["id"])
        assert (match.score_1, match.score_2) == (first["score_1"], first["score_2"]) == (0, 1)

    @pytest.mark.asyncio
    async def test_any_command_on_finished_match_is_immutable(self, session, live_match):
        await commands.finish_match(session, live_match["id"])
        for command in (commands.pause_match, commands.resume_match, commands.cancel_match, commands.start_match):
            with pytest.raises(ImmutableState):
                await command(session, live_match["id"])
        with pytest.raises(ImmutableState):
            await commands.update_score(session, live_match["id"], 5, 5)

    @pytest.mark.asyncio
    async def test_unknown_match(self, session, tournament):
        with pytest.raises(NotFound):
            await commands.start_match(session, 999_999)


class TestCancel:
    """CANCELLED is reachable from SCHEDULED only and is terminal."""

    @pytest.mark.asyncio
    async def test_cancel_scheduled(self, session, scheduled_match):
        match = await commands.cancel_match(session, scheduled_match["id"])
        assert match["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_live_is_rejected(self, session, live_match):
        with pytest.raises(InvalidTransition):
            await commands.cancel_match(session, live_match["id"])

    @pytest.mark.asyncio
    async def test_cancelled_match_cannot_start(self, session, scheduled_match):
        await commands.cancel_match(session, scheduled_match["id"])
        with pytest.raises(InvalidTransition):
            await commands.start_match(session, scheduled_match["id"])


# ═══════════════════════════════════════════════════════════════════
# Concurrency
# ═══════════════════════════════════════════════════════════════════


class TestConcurrentTransitions:
    """Two callers racing on the same match: the stored status decides."""

    @pytest.mark.asyncio
    async def test_concurrent_finish_has_single_winner(self, session_factory, live_match):
        async def finish():
            async with session_factory() as session:
                return await commands.finish_match(session, live_match["id"], actor="racer")

        results = await asyncio.gather(finish(), finish(), return_exceptions=True)

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], (ImmutableState, InvalidTransition))

    @pytest.mark.asyncio
    async def test_concurrent_start_has_single_winner(self, session_factory, scheduled_match):
        async def start():
            async with session_factory() as session:
                return await commands.start_match(session, scheduled_match["id"])

        results = await asyncio.gather(start(), start(), return_exceptions=True)
        assert sum(1 for r in results if isinstance(r, InvalidTransition)) == 1
        assert sum(1 for r in results if isinstance(r, dict)) == 1
