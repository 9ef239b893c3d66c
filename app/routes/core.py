"""Core routes: health and Prometheus metrics.

Auth per-endpoint:
- /health: public, rate limited
- /metrics: public scrape target (no high-cardinality labels)
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.database import get_session_factory
from app.security import limiter
from app.telemetry import get_metrics_text

logger = logging.getLogger(__name__)

router = APIRouter(tags=["core"])


class HealthResponse(BaseModel):
    status: str
    database: bool
    broadcast_running: bool
    ws_connections: int


@router.get("/health", response_model=HealthResponse)
@limiter.limit("120/minute")
async def health_check(
    request: Request,
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Health check endpoint."""
    database_ok = True
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
        database_ok = False

    bus = getattr(request.app.state, "bus", None)
    registry = getattr(request.app.state, "registry", None)
    return HealthResponse(
        status="ok" if database_ok else "degraded",
        database=database_ok,
        broadcast_running=bool(bus and bus.running),
        ws_connections=registry.connection_count if registry else 0,
    )


@router.get("/metrics")
async def prometheus_metrics():
    """
    Prometheus metrics endpoint.

    Exposes:
    - Lifecycle commands (outcome, latency) and ledger events
    - Fixture generation
    - Broadcast notifications, deliveries, drops
    - WebSocket connections and admission rejections
    """
    content, content_type = get_metrics_text()
    return PlainTextResponse(content=content, media_type=content_type)
