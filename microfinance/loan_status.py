"""Loan lifecycle states and the transitions allowed between them."""

from enum import Enum
from typing import Dict, FrozenSet

from .errors import InvalidStateTransitionError


class LoanStatus(Enum):
    """Loan lifecycle states"""
    DRAFT = "DRAFT"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    DEFAULTED = "DEFAULTED"
    WRITTEN_OFF = "WRITTEN_OFF"
    CANCELED = "CANCELED"


TRANSITIONS: Dict[LoanStatus, FrozenSet[LoanStatus]] = {
    LoanStatus.DRAFT: frozenset({LoanStatus.PENDING_APPROVAL, LoanStatus.CANCELED}),
    LoanStatus.PENDING_APPROVAL: frozenset({LoanStatus.APPROVED, LoanStatus.CANCELED}),
    LoanStatus.APPROVED: frozenset({LoanStatus.ACTIVE, LoanStatus.CANCELED}),
    LoanStatus.ACTIVE: frozenset({LoanStatus.COMPLETED, LoanStatus.DEFAULTED, LoanStatus.WRITTEN_OFF}),
    LoanStatus.DEFAULTED: frozenset({LoanStatus.WRITTEN_OFF, LoanStatus.ACTIVE}),
    LoanStatus.COMPLETED: frozenset(),
    LoanStatus.WRITTEN_OFF: frozenset(),
    LoanStatus.CANCELED: frozenset(),
}

# A customer may hold at most one loan in these states
OPEN_LOAN_STATUSES = frozenset({LoanStatus.PENDING_APPROVAL, LoanStatus.APPROVED, LoanStatus.ACTIVE})

DELETABLE_STATUSES = frozenset({LoanStatus.DRAFT, LoanStatus.PENDING_APPROVAL})


def can_transition(current: LoanStatus, target: LoanStatus) -> bool:
    return target in TRANSITIONS[current]


def validate_transition(current: LoanStatus, target: LoanStatus) -> None:
    """
    Check a status change against the transition table

    Raises:
        InvalidStateTransitionError: If ``target`` is not reachable from ``current``
    """
    if not can_transition(current, target):
        raise InvalidStateTransitionError(
            f"Cannot transition from {current.value} to {target.value}"
        )


def is_terminal(status: LoanStatus) -> bool:
    """Terminal statuses close the loan and stamp closed_at"""
    return not TRANSITIONS[status]
