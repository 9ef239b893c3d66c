"""FastAPI application for the Matchday live-match engine."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.config import get_settings
from app.database import close_db, init_db
from app.errors import MatchEngineError, ValidationFailed
from app.events import EventBus
from app.realtime import AdmissionQuota, BroadcastCoordinator, ConnectionRegistry
from app.realtime.ws import router as ws_router
from app.routes.core import router as core_router
from app.routes.matches import router as matches_router
from app.security import limiter
from app.telemetry.sentry import capture_exception, init_sentry

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

init_sentry()


def configure_broadcast(app: FastAPI) -> EventBus:
    """
    Create the broadcast components for this process and attach them to app.state.

    The caller owns the returned bus and must start/stop it.
    """
    bus = EventBus(max_queue_size=settings.BROADCAST_QUEUE_SIZE)
    registry = ConnectionRegistry(
        cooldown_seconds=settings.SUBSCRIBE_COOLDOWN_SECONDS,
        send_timeout=settings.BROADCAST_SEND_TIMEOUT_SECONDS,
    )
    bus.subscribe(registry.publish)

    app.state.bus = bus
    app.state.registry = registry
    app.state.admission = AdmissionQuota(per_minute=settings.WS_ADMISSION_PER_MINUTE)
    app.state.coordinator = BroadcastCoordinator(bus)
    return bus


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Matchday engine...")
    await init_db()

    bus = configure_broadcast(app)
    await bus.start()
    logger.info(
        f"[BROADCAST] Ready: cooldown={settings.SUBSCRIBE_COOLDOWN_SECONDS}s, "
        f"admission={settings.WS_ADMISSION_PER_MINUTE}/min, queue={settings.BROADCAST_QUEUE_SIZE}"
    )

    yield

    # Shutdown
    logger.info("Shutting down...")
    await bus.stop()
    await close_db()


app = FastAPI(
    title="Matchday",
    description="Match lifecycle and live-event engine for multi-category tournaments",
    version="1.0.0",
    lifespan=lifespan,
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(MatchEngineError)
async def match_engine_error_handler(request: Request, exc: MatchEngineError):
    """Domain rule violations: structured body, no stack trace."""
    logger.warning(f"{request.method} {request.url.path} -> {exc.kind}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": jsonable_encoder(exc.to_dict())})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    error = ValidationFailed("Request validation failed", {"errors": exc.errors()})
    return JSONResponse(status_code=error.status_code, content={"error": jsonable_encoder(error.to_dict())})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    capture_exception(exc, path=request.url.path, method=request.method)
    return JSONResponse(
        status_code=500,
        content={"error": {"kind": "Internal", "message": "Internal server error", "details": {}}},
    )


# Include routers
app.include_router(core_router)
app.include_router(matches_router)
app.include_router(ws_router)
