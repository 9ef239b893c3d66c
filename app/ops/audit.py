"""Match audit logging utilities.

Every lifecycle command and administrative override leaves one row in
``match_audit_log``. Rows are written inside the caller's unit of work, so
an audit entry exists if and only if the mutation committed.
"""

import logging
from typing import Any, Optional

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from app.models import MatchAuditLog

logger = logging.getLogger(__name__)


def get_client_origin(connection: HTTPConnection) -> str:
    """Extract client IP for HTTP requests and WebSockets, handling proxies."""
    # Check X-Forwarded-For header (reverse proxy)
    forwarded = connection.headers.get("x-forwarded-for")
    if forwarded:
        # Take first IP in chain
        return forwarded.split(",")[0].strip()

    # Check X-Real-IP
    real_ip = connection.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    # Fallback to client host
    if connection.client:
        return connection.client.host

    return "unknown"


async def record_match_action(
    session: AsyncSession,
    action: str,
    match_id: Optional[int],
    actor: Optional[str],
    details: Optional[dict[str, Any]] = None,
) -> MatchAuditLog:
    """
    Add an audit row to the current transaction.

    Args:
        session: Session of the enclosing unit of work (not committed here)
        action: Action type (e.g., 'START_MATCH', 'UPDATE_SCORE')
        match_id: Affected match, None for category-wide actions
        actor: Identity recorded in audit fields
        details: Action-specific payload (previous/new values, counts...)
    """
    audit = MatchAuditLog(
        match_id=match_id,
        action=action,
        actor=actor,
        details=details,
    )
    session.add(audit)
    await session.flush()

    logger.info(f"[MATCH_AUDIT] action={action} match_id={match_id} actor={actor}")
    return audit


async def get_match_audit_trail(
    session: AsyncSession,
    match_id: int,
    limit: int = 50,
) -> list[dict]:
    """Most recent audit entries for a match, newest first."""
    stmt = (
        select(MatchAuditLog)
        .where(MatchAuditLog.match_id == match_id)
        .order_by(desc(MatchAuditLog.created_at), desc(MatchAuditLog.id))
        .limit(limit)
    )
    result = await session.execute(stmt)
    logs = result.scalars().all()

    return [
        {
            "id": log.id,
            "action": log.action,
            "actor": log.actor,
            "details": log.details,
            "created_at": log.created_at.isoformat() if log.created_at else None,
        }
        for log in logs
    ]
