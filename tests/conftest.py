"""
Shared fixtures: a fresh file-backed SQLite database per test and a small
two-category tournament.

File-backed (not :memory:) so that concurrent sessions really are separate
connections contending for the write lock.
"""

from datetime import datetime

import pytest

from app.database import build_engine, build_session_factory, init_db
from app.lifecycle import commands
from app.models import Category, CategoryTeam, PlayerRegistration, Team

GROUP_A = ["Alpha", "Bravo", "Charlie", "Delta"]
GROUP_B = ["Echo", "Foxtrot", "Golf", "Hotel"]


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'matchday-test.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def tournament(session_factory) -> dict:
    """
    Category "U12" (final_four) with groups A and B of four teams each,
    category "U10" (no knockout stage) sharing no teams.

    Every team has two registered players: ids team_id*100+1 and +2.
    """
    async with session_factory() as session:
        u12 = Category(name="U12", final_format="final_four")
        u10 = Category(name="U10", final_format="none")
        session.add_all([u12, u10])
        await session.flush()

        teams = {}
        for group, names in (("A", GROUP_A), ("B", GROUP_B)):
            for name in names:
                team = Team(name=name)
                session.add(team)
                await session.flush()
                teams[name] = team.id
                session.add(CategoryTeam(category_id=u12.id, team_id=team.id, group_label=group))
                for n in (1, 2):
                    session.add(PlayerRegistration(
                        player_id=team.id * 100 + n,
                        player_name=f"{name} Player {n}",
                        category_id=u12.id,
                        team_id=team.id,
                        shirt_number=n,
                    ))

        outsider = Team(name="Zulu")
        session.add(outsider)
        await session.flush()
        session.add(CategoryTeam(category_id=u10.id, team_id=outsider.id, group_label="A"))
        session.add(PlayerRegistration(
            player_id=outsider.id * 100 + 1,
            player_name="Zulu Player 1",
            category_id=u10.id,
            team_id=outsider.id,
        ))
        await session.commit()

        return {
            "category_id": u12.id,
            "no_knockout_category_id": u10.id,
            "teams": teams,
            "outsider_id": outsider.id,
        }


@pytest.fixture
async def scheduled_match(session_factory, tournament) -> dict:
    """Alpha v Bravo, SCHEDULED."""
    async with session_factory() as session:
        return await commands.create_match(
            session,
            category_id=tournament["category_id"],
            team_1_id=tournament["teams"]["Alpha"],
            team_2_id=tournament["teams"]["Bravo"],
            scheduled_at=datetime(2026, 3, 7, 9, 0),
            group_label="A",
            actor="tester",
        )


@pytest.fixture
async def live_match(session_factory, scheduled_match) -> dict:
    """Alpha v Bravo, LIVE in period 1."""
    async with session_factory() as session:
        return await commands.start_match(session, scheduled_match["id"], period=1, actor="tester")
