"""Domain error taxonomy.

Every rule violation raised by the models and services is one of five
kinds, so callers can branch on ``error.kind`` instead of matching
message strings. A raised ``DomainError`` always means no state changed.
"""

import enum
from datetime import datetime
from typing import Any


class ErrorKind(str, enum.Enum):
    """Closed set of violation kinds."""
    VALIDATION = "validation"          # Malformed or out-of-range input
    PERMISSION = "permission"          # Actor lacks capability, role or ownership
    STATE_CONFLICT = "state_conflict"  # Operation invalid for the current lifecycle state
    POLICY = "policy"                  # Subscription or quota gating
    LOCKOUT = "lockout"                # Credential attempts exceeded


class DomainError(Exception):
    """Base class for all domain rule violations."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "context": self.context,
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.kind.value}: {self.message}>"


class ValidationError(DomainError):
    kind = ErrorKind.VALIDATION


class NotFoundError(ValidationError):
    """Referenced id does not exist (treated as invalid input)."""


class PermissionDeniedError(DomainError):
    kind = ErrorKind.PERMISSION


class StateConflictError(DomainError):
    kind = ErrorKind.STATE_CONFLICT


class ConcurrencyConflictError(StateConflictError):
    """Stored revision no longer matches the revision the caller loaded."""


class PolicyError(DomainError):
    kind = ErrorKind.POLICY


class LockoutError(DomainError):
    kind = ErrorKind.LOCKOUT

    def __init__(self, message: str, retry_at: datetime | None = None, **context: Any):
        super().__init__(message, **context)
        self.retry_at = retry_at
        if retry_at is not None:
            self.context["retry_at"] = retry_at.isoformat()
