"""
Error taxonomy for the arena engine.

Every failure the engine reports to its callers is an ``ArenaError`` carrying
a ``kind`` tag and an HTTP-style status code. Outer layers match on ``kind``
instead of inspecting messages.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    POLICY_VIOLATION = "policy_violation"
    UPSTREAM = "upstream"


class ArenaError(Exception):
    """Base class for all domain errors raised by the engine."""

    kind: ErrorKind = ErrorKind.VALIDATION
    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "status_code": self.status_code,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self):
        return f"<{type(self).__name__}(kind='{self.kind.value}', message='{self.message}')>"


class ValidationError(ArenaError):
    """Bad input: amount too small, identical tokens, missing reason."""

    kind = ErrorKind.VALIDATION
    status_code = 400


class NotFoundError(ArenaError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class ConflictError(ArenaError):
    """Participant limit reached, duplicate join, invalid state transition."""

    kind = ErrorKind.CONFLICT
    status_code = 409


class ParticipantLimitReachedError(ConflictError):
    pass


class OwnerAlreadyRegisteredError(ConflictError):
    """The agent's owner already has a different agent in the competition."""


class UnauthorizedError(ArenaError):
    kind = ErrorKind.UNAUTHORIZED
    status_code = 401


class ForbiddenError(ArenaError):
    kind = ErrorKind.FORBIDDEN
    status_code = 403


class PolicyViolationError(ArenaError):
    """Cross-chain disallowed, constraint thresholds unmet, insufficient balance, size cap."""

    kind = ErrorKind.POLICY_VIOLATION
    status_code = 400


class UpstreamError(ArenaError):
    """Price oracle or perps provider unreachable or malformed."""

    kind = ErrorKind.UPSTREAM
    status_code = 502
