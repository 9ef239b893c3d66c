"""
Domain errors for the match lifecycle engine.

Every rule violation is raised as a MatchEngineError subclass carrying a
stable ``kind`` (used verbatim in API responses) and a human-readable
message. The FastAPI boundary translates them into structured failures;
anything else is treated as an internal error.
"""

from typing import Any, Optional


class MatchEngineError(Exception):
    """Base class for operational (expected) failures."""

    kind = "MatchEngineError"
    status_code = 400

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class InvalidTransition(MatchEngineError):
    """Lifecycle guard violated (e.g. pause on a SCHEDULED match)."""

    kind = "InvalidTransition"
    status_code = 409


class ImmutableState(MatchEngineError):
    """Mutation attempted on a FINISHED match."""

    kind = "ImmutableState"
    status_code = 409


class MatchNotInProgress(MatchEngineError):
    """Event recorded while the match is not LIVE."""

    kind = "MatchNotInProgress"
    status_code = 409


class PlayerNotEligible(MatchEngineError):
    kind = "PlayerNotEligible"
    status_code = 422


class InsufficientTeams(MatchEngineError):
    kind = "InsufficientTeams"
    status_code = 422


class InsufficientQualifiers(MatchEngineError):
    kind = "InsufficientQualifiers"
    status_code = 422


class SchedulingConflict(MatchEngineError):
    """A team is already booked at the requested timestamp."""

    kind = "SchedulingConflict"
    status_code = 409


class UnsupportedFormat(MatchEngineError):
    """Bracket requested for a category without a knockout final stage."""

    kind = "UnsupportedFormat"
    status_code = 422


class NotFound(MatchEngineError):
    kind = "NotFound"
    status_code = 404


class ValidationFailed(MatchEngineError):
    kind = "ValidationFailed"
    status_code = 400


class StorageFailure(MatchEngineError):
    """The unit of work could not commit (lock timeout, dropped connection...)."""

    kind = "StorageFailure"
    status_code = 503
