"""Match routes: lifecycle commands, ledger, schedule generation, read side.

Auth:
- GET endpoints: public, rate limited
- POST/PATCH/PUT/DELETE: X-API-Key (verify_api_key), actor from ACTOR_HEADER

Every mutating endpoint returns once its unit of work committed; the
broadcast is queued afterwards and never delays the response.
"""

import logging
from datetime import date, datetime, time
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from app.database import get_async_session, get_session_factory, read_with_retry
from app.lifecycle import commands, queries
from app.models import EventKind
from app.ops.audit import get_match_audit_trail
from app.realtime.coordinator import BroadcastCoordinator
from app.scheduling import generate_bracket_matches, generate_group_matches
from app.security import get_actor, limiter, verify_api_key

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(prefix="/matches", tags=["matches"])


def get_coordinator(request: Request) -> BroadcastCoordinator:
    return request.app.state.coordinator


# =============================================================================
# Request models
# =============================================================================


class CreateMatchRequest(BaseModel):
    category_id: int
    team_1_id: int
    team_2_id: int
    scheduled_at: Optional[datetime] = None
    group: Optional[str] = Field(default=None, max_length=20)


class UpdateMatchRequest(BaseModel):
    scheduled_at: Optional[datetime] = None
    group: Optional[str] = Field(default=None, max_length=20)


class StartMatchRequest(BaseModel):
    period: int = Field(default=1, ge=1)


class AddEventRequest(BaseModel):
    team_id: int
    player_id: int
    kind: EventKind
    minute: int = Field(..., ge=0)


class ScoreOverrideRequest(BaseModel):
    score_1: int = Field(..., ge=0)
    score_2: int = Field(..., ge=0)


class GenerateGroupRequest(BaseModel):
    category_id: int
    group: str = Field(..., max_length=20)
    match_day: date
    kickoff_time: Optional[time] = None  # defaults to DEFAULT_KICKOFF_TIME
    interval_minutes: Optional[int] = Field(default=None, gt=0)


class GenerateBracketRequest(BaseModel):
    category_id: int


# =============================================================================
# Schedule generation
# =============================================================================


@router.post("/generate/group", status_code=201)
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def generate_group(
    request: Request,
    body: GenerateGroupRequest,
    session: AsyncSession = Depends(get_async_session),
    coordinator: BroadcastCoordinator = Depends(get_coordinator),
    _: bool = Depends(verify_api_key),
):
    """Round-robin fixtures for one group, all on the same match day."""
    result = await generate_group_matches(
        session,
        category_id=body.category_id,
        group=body.group,
        match_day=body.match_day,
        kickoff_time=body.kickoff_time,
        interval_minutes=body.interval_minutes,
        actor=get_actor(request),
    )
    coordinator.schedule_generated(body.category_id, result)
    return result


@router.post("/generate/bracket", status_code=201)
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def generate_bracket(
    request: Request,
    body: GenerateBracketRequest,
    session: AsyncSession = Depends(get_async_session),
    coordinator: BroadcastCoordinator = Depends(get_coordinator),
    _: bool = Depends(verify_api_key),
):
    """Seed the semifinals from the group tables (final_four categories only)."""
    result = await generate_bracket_matches(session, body.category_id, actor=get_actor(request))
    coordinator.schedule_generated(body.category_id, result)
    return result


# =============================================================================
# Read side
# =============================================================================


@router.get("/live")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def live_matches(
    request: Request,
    category_id: Optional[int] = None,
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    return await read_with_retry(
        session_factory, lambda session: queries.list_live_matches(session, category_id)
    )


@router.get("/{match_id}")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def match_detail(
    request: Request,
    match_id: int,
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    return await read_with_retry(session_factory, lambda session: queries.get_match_detail(session, match_id))


@router.get("/{match_id}/timeline")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def match_timeline(
    request: Request,
    match_id: int,
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    return await read_with_retry(session_factory, lambda session: queries.get_timeline(session, match_id))


@router.get("/{match_id}/statistics")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def match_statistics(
    request: Request,
    match_id: int,
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    return await read_with_retry(session_factory, lambda session: queries.get_statistics(session, match_id))


@router.get("/{match_id}/ledger")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def match_ledger_check(
    request: Request,
    match_id: int,
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Cached score vs. score derived from the event ledger."""
    return await read_with_retry(session_factory, lambda session: queries.verify_ledger(session, match_id))


@router.get("/{match_id}/audit")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def match_audit(
    request: Request,
    match_id: int,
    limit: int = 50,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    _: bool = Depends(verify_api_key),
):
    async def _trail(session: AsyncSession):
        await queries.get_match(session, match_id)
        return await get_match_audit_trail(session, match_id, limit=min(limit, 200))

    return await read_with_retry(session_factory, _trail)


# =============================================================================
# CRUD
# =============================================================================


@router.post("", status_code=201)
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def create_match(
    request: Request,
    body: CreateMatchRequest,
    session: AsyncSession = Depends(get_async_session),
    coordinator: BroadcastCoordinator = Depends(get_coordinator),
    _: bool = Depends(verify_api_key),
):
    match = await commands.create_match(
        session,
        category_id=body.category_id,
        team_1_id=body.team_1_id,
        team_2_id=body.team_2_id,
        scheduled_at=body.scheduled_at,
        group_label=body.group,
        actor=get_actor(request),
    )
    coordinator.match_created(match)
    return match


@router.patch("/{match_id}")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def update_match(
    request: Request,
    match_id: int,
    body: UpdateMatchRequest,
    session: AsyncSession = Depends(get_async_session),
    coordinator: BroadcastCoordinator = Depends(get_coordinator),
    _: bool = Depends(verify_api_key),
):
    match, changed = await commands.update_match(
        session, match_id, scheduled_at=body.scheduled_at, group_label=body.group, actor=get_actor(request)
    )
    if changed:
        coordinator.match_updated(match)
    return match


@router.delete("/{match_id}")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def delete_match(
    request: Request,
    match_id: int,
    session: AsyncSession = Depends(get_async_session),
    coordinator: BroadcastCoordinator = Depends(get_coordinator),
    _: bool = Depends(verify_api_key),
):
    match = await commands.delete_match(session, match_id, actor=get_actor(request))
    coordinator.match_deleted(match)
    return {"deleted": True, "match": match}


# =============================================================================
# Lifecycle
# =============================================================================


@router.post("/{match_id}/start")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def start_match(
    request: Request,
    match_id: int,
    body: Optional[StartMatchRequest] = None,
    session: AsyncSession = Depends(get_async_session),
    coordinator: BroadcastCoordinator = Depends(get_coordinator),
    _: bool = Depends(verify_api_key),
):
    period = body.period if body else 1
    match = await commands.start_match(session, match_id, period=period, actor=get_actor(request))
    coordinator.match_transitioned("start", match)
    return match


@router.post("/{match_id}/pause")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def pause_match(
    request: Request,
    match_id: int,
    session: AsyncSession = Depends(get_async_session),
    coordinator: BroadcastCoordinator = Depends(get_coordinator),
    _: bool = Depends(verify_api_key),
):
    match = await commands.pause_match(session, match_id, actor=get_actor(request))
    coordinator.match_transitioned("pause", match)
    return match


@router.post("/{match_id}/resume")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def resume_match(
    request: Request,
    match_id: int,
    session: AsyncSession = Depends(get_async_session),
    coordinator: BroadcastCoordinator = Depends(get_coordinator),
    _: bool = Depends(verify_api_key),
):
    match = await commands.resume_match(session, match_id, actor=get_actor(request))
    coordinator.match_transitioned("resume", match)
    return match


@router.post("/{match_id}/finish")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def finish_match(
    request: Request,
    match_id: int,
    session: AsyncSession = Depends(get_async_session),
    coordinator: BroadcastCoordinator = Depends(get_coordinator),
    _: bool = Depends(verify_api_key),
):
    """Finish the match; the response carries the recomputed category table."""
    match, standings = await commands.finish_match(session, match_id, actor=get_actor(request))
    coordinator.match_finished(match, standings)
    return {"match": match, "standings": standings}


@router.post("/{match_id}/cancel")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def cancel_match(
    request: Request,
    match_id: int,
    session: AsyncSession = Depends(get_async_session),
    coordinator: BroadcastCoordinator = Depends(get_coordinator),
    _: bool = Depends(verify_api_key),
):
    match = await commands.cancel_match(session, match_id, actor=get_actor(request))
    coordinator.match_transitioned("cancel", match)
    return match


# =============================================================================
# Ledger
# =============================================================================


@router.post("/{match_id}/events", status_code=201)
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def add_event(
    request: Request,
    match_id: int,
    body: AddEventRequest,
    session: AsyncSession = Depends(get_async_session),
    coordinator: BroadcastCoordinator = Depends(get_coordinator),
    _: bool = Depends(verify_api_key),
):
    event, match = await commands.add_match_event(
        session,
        match_id,
        team_id=body.team_id,
        player_id=body.player_id,
        kind=body.kind.value,
        minute=body.minute,
        actor=get_actor(request),
    )
    coordinator.event_added(event, match)
    return {"event": event, "match": match}


@router.put("/{match_id}/score")
@limiter.limit(settings.RATE_LIMIT_PER_MINUTE)
async def override_score(
    request: Request,
    match_id: int,
    body: ScoreOverrideRequest,
    session: AsyncSession = Depends(get_async_session),
    coordinator: BroadcastCoordinator = Depends(get_coordinator),
    _: bool = Depends(verify_api_key),
):
    """Administrative override. Audited; never written to the event ledger."""
    match = await commands.update_score(
        session, match_id, score_1=body.score_1, score_2=body.score_2, actor=get_actor(request)
    )
    coordinator.score_updated(match)
    return match
