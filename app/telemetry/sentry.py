"""
Sentry error tracking for the match engine.

Only unexpected failures reach Sentry: domain errors (MatchEngineError) are
answered at the API boundary and never captured. Each captured exception
carries the request path and method as extras.

Scrubbed before sending: the API key and actor headers, cookies, forwarded
addresses, credential-looking query parameters and request bodies.
"""

import logging
import re
from typing import Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from app.config import get_settings

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"
_QUERY_SECRET_RE = re.compile(r"(?i)(token|api_key|key|secret|password)=([^&]*)")

_sentry_initialized = False


def _sensitive_headers() -> set[str]:
    settings = get_settings()
    return {
        settings.API_KEY_HEADER.lower(),
        settings.ACTOR_HEADER.lower(),
        "authorization",
        "cookie",
        "set-cookie",
        "x-forwarded-for",
    }


def _redact_headers(headers: dict) -> dict:
    sensitive = _sensitive_headers()
    return {key: REDACTED if key.lower() in sensitive else value for key, value in headers.items()}


def scrub_sensitive_data(event: dict, hint: dict) -> Optional[dict]:
    """before_send hook. Scrubbing problems are logged, the event is still sent."""
    try:
        request = event.get("request") or {}
        request["headers"] = _redact_headers(request.get("headers") or {})

        query_string = request.get("query_string")
        if isinstance(query_string, str) and query_string:
            request["query_string"] = _QUERY_SECRET_RE.sub(rf"\1={REDACTED}", query_string)

        if "data" in request:
            request["data"] = "[SCRUBBED]"

        event["request"] = request
    except Exception as e:
        logger.warning(f"Sentry scrubbing error (continuing): {e}")

    return event


def init_sentry() -> bool:
    """
    Initialize Sentry SDK if SENTRY_DSN is configured.

    Returns True if Sentry was initialized, False otherwise.
    """
    global _sentry_initialized

    if _sentry_initialized:
        logger.debug("Sentry already initialized, skipping")
        return True

    settings = get_settings()
    if not settings.SENTRY_DSN:
        logger.info("Sentry not configured (SENTRY_DSN not set)")
        return False

    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        environment=settings.SENTRY_ENVIRONMENT,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
            LoggingIntegration(
                level=logging.ERROR,
                event_level=logging.ERROR,
            ),
        ],
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        send_default_pii=False,
        before_send=scrub_sensitive_data,
        ignore_errors=[KeyboardInterrupt, SystemExit],
    )

    _sentry_initialized = True
    logger.info(
        f"Sentry initialized: env={settings.SENTRY_ENVIRONMENT}, "
        f"traces_sample_rate={settings.SENTRY_TRACES_SAMPLE_RATE}"
    )
    return True


def is_sentry_enabled() -> bool:
    return _sentry_initialized


def capture_exception(exception: BaseException, **extra_context) -> None:
    """Capture an unexpected exception with request context attached as extras."""
    if not _sentry_initialized:
        return

    with sentry_sdk.push_scope() as scope:
        for key, value in extra_context.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exception)
