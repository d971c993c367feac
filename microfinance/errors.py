"""Typed error hierarchy for the lending core."""

from enum import Enum


class ErrorKind(Enum):
    """Kinds of business failure surfaced to callers"""
    NOT_FOUND = "not_found"
    VALIDATION_FAILED = "validation_failed"
    PERMISSION_DENIED = "permission_denied"
    CONFLICT = "conflict"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    TIME_WINDOW_EXPIRED = "time_window_expired"


class LendingError(Exception):
    """Base error carrying a kind and a human-readable message."""

    kind: ErrorKind = ErrorKind.VALIDATION_FAILED

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.kind.value, "message": self.message}


class NotFoundError(LendingError):
    """Entity absent or soft-deleted."""
    kind = ErrorKind.NOT_FOUND


class ValidationFailedError(LendingError):
    """Input rejected by a business rule."""
    kind = ErrorKind.VALIDATION_FAILED


class PermissionDeniedError(LendingError):
    """Role, branch or ownership mismatch."""
    kind = ErrorKind.PERMISSION_DENIED


class ConflictError(LendingError):
    """Uniqueness or exclusivity rule violated."""
    kind = ErrorKind.CONFLICT


class InvalidStateTransitionError(LendingError):
    """Operation not allowed from the entity's current status."""
    kind = ErrorKind.INVALID_STATE_TRANSITION


class TimeWindowExpiredError(LendingError):
    """Edit window for the record has closed."""
    kind = ErrorKind.TIME_WINDOW_EXPIRED
