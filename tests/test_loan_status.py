"""
Test suite for the loan state machine
"""

import pytest

from microfinance.errors import ErrorKind, InvalidStateTransitionError
from microfinance.loan_status import LoanStatus, can_transition, is_terminal, validate_transition


class TestTransitions:

    @pytest.mark.parametrize("current,target", [
        (LoanStatus.DRAFT, LoanStatus.PENDING_APPROVAL),
        (LoanStatus.DRAFT, LoanStatus.CANCELED),
        (LoanStatus.PENDING_APPROVAL, LoanStatus.APPROVED),
        (LoanStatus.APPROVED, LoanStatus.ACTIVE),
        (LoanStatus.ACTIVE, LoanStatus.DEFAULTED),
        (LoanStatus.DEFAULTED, LoanStatus.ACTIVE),
        (LoanStatus.DEFAULTED, LoanStatus.WRITTEN_OFF),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)
        validate_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (LoanStatus.DRAFT, LoanStatus.ACTIVE),
        (LoanStatus.DRAFT, LoanStatus.APPROVED),
        (LoanStatus.PENDING_APPROVAL, LoanStatus.DRAFT),
        (LoanStatus.ACTIVE, LoanStatus.CANCELED),
        (LoanStatus.COMPLETED, LoanStatus.ACTIVE),
    ])
    def test_rejected(self, current, target):
        assert not can_transition(current, target)
        with pytest.raises(InvalidStateTransitionError) as exc:
            validate_transition(current, target)
        assert exc.value.kind == ErrorKind.INVALID_STATE_TRANSITION
        assert exc.value.message == f"Cannot transition from {current.value} to {target.value}"

    def test_terminal_states(self):
        assert is_terminal(LoanStatus.COMPLETED)
        assert is_terminal(LoanStatus.WRITTEN_OFF)
        assert is_terminal(LoanStatus.CANCELED)
        assert not is_terminal(LoanStatus.DEFAULTED)
