"""
Repayment Module

Records money received against ACTIVE loans. Creating a repayment allocates
it across the schedule and may complete the loan; deleting one (inside the
edit window) reverses the allocation and may reopen the loan.
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .allocation import PaymentAllocator, RepaymentAllocation
from .config import get_config
from .errors import (
    InvalidStateTransitionError, NotFoundError, PermissionDeniedError,
    TimeWindowExpiredError, ValidationFailedError
)
from .events import DomainEvent, EventDispatcher, EventPublisherMixin
from .loan_status import LoanStatus
from .loans import Loan, LoanManager, REPAYMENT_TABLE, as_utc
from .money import ZERO, to_decimal, Amount
from .pagination import Page, paginate
from .rbac import Actor
from .storage import StorageInterface, StorageRecord


logger = logging.getLogger("microfinance.repayments")


class RepaymentMethod(Enum):
    """How the money was received"""
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    MOBILE_MONEY = "MOBILE_MONEY"
    CHEQUE = "CHEQUE"
    OTHER = "OTHER"


@dataclass
class Repayment(StorageRecord):
    """Money received from a borrower"""
    loan_id: str
    amount: Decimal
    paid_at: datetime
    method: RepaymentMethod
    received_by_user_id: str
    reference: Optional[str] = None
    notes: Optional[str] = None
    deleted_at: Optional[datetime] = None


class RepaymentManager(EventPublisherMixin):
    """Creates, edits and reverses repayments"""

    table_name = REPAYMENT_TABLE

    def __init__(
        self,
        storage: StorageInterface,
        loan_manager: LoanManager,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.loan_manager = loan_manager
        self.allocator: PaymentAllocator = loan_manager.allocator
        self.event_dispatcher = event_dispatcher
        self.clock = loan_manager.clock

    def create_repayment(
        self,
        actor: Actor,
        loan_id: str,
        amount: Amount,
        method: RepaymentMethod,
        paid_at: Optional[datetime] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Repayment:
        """
        Record a repayment and allocate it to the loan's schedule

        The repayment row, its allocations and a possible COMPLETED transition
        are written in one transaction.

        Raises:
            NotFoundError: Loan missing
            PermissionDeniedError: Loan outside the actor's scope
            InvalidStateTransitionError: Loan is not ACTIVE
            ValidationFailedError: Amount not positive
        """
        amount = to_decimal(amount)
        if amount <= ZERO:
            raise ValidationFailedError("Amount must be positive")

        loan = self.loan_manager.get_loan_by_id(actor, loan_id)
        if loan.status != LoanStatus.ACTIVE:
            raise InvalidStateTransitionError("Can only make payments on active loans")

        now = self.clock()
        repayment = Repayment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan.id,
            amount=amount,
            paid_at=as_utc(paid_at) or now,
            method=method,
            received_by_user_id=actor.user_id,
            reference=reference,
            notes=notes
        )

        with self.storage.atomic():
            # Re-read under the transaction so a concurrent status change is seen
            if self.loan_manager.find_loan(loan.id).status != LoanStatus.ACTIVE:
                raise InvalidStateTransitionError("Can only make payments on active loans")
            self._save_repayment(repayment)
            allocations = self.allocator.allocate(repayment.id, loan.id, amount)
            completion = self.loan_manager.complete_if_fully_paid(loan.id)

        logger.info(f"Recorded repayment of {amount} on loan {loan.loan_number}",
                    extra={'user_id': actor.user_id, 'action': 'create', 'resource': 'repayment',
                           'extra': {'allocations': len(allocations), 'loan_completed': completion is not None}})
        self.publish_event(DomainEvent.REPAYMENT_CREATED, "repayment", repayment.id, actor.user_id,
                           after=repayment.to_dict(),
                           allocations=[a.to_dict() for a in allocations])
        if completion:
            before_loan, completed_loan = completion
            self.loan_manager.publish_event(DomainEvent.LOAN_COMPLETED, "loan", completed_loan.id, actor.user_id,
                                            before=before_loan, after=completed_loan.to_dict())
        return repayment

    def get_repayments(
        self,
        actor: Actor,
        loan_id: Optional[str] = None,
        received_by_user_id: Optional[str] = None,
        method: Optional[RepaymentMethod] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Page:
        """List repayments on loans visible to ``actor``, latest payment first"""
        filters: Dict[str, Any] = {'deleted_at': None}
        if loan_id:
            filters['loan_id'] = loan_id
        if received_by_user_id:
            filters['received_by_user_id'] = received_by_user_id
        if method:
            filters['method'] = method.value

        repayments = [Repayment.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        if date_from:
            repayments = [r for r in repayments if r.paid_at >= as_utc(date_from)]
        if date_to:
            repayments = [r for r in repayments if r.paid_at <= as_utc(date_to)]

        visible: Dict[str, bool] = {}
        for repayment in repayments:
            if repayment.loan_id not in visible:
                data = self.storage.load(self.loan_manager.table_name, repayment.loan_id)
                visible[repayment.loan_id] = bool(data) and self.loan_manager.can_access(actor, Loan.from_dict(data))
        repayments = [r for r in repayments if visible[r.loan_id]]

        repayments.sort(key=lambda r: r.paid_at, reverse=True)
        return paginate(repayments, page, limit)

    def get_repayment_by_id(self, actor: Actor, repayment_id: str, verb: str = "view") -> Repayment:
        repayment = self._find_repayment(repayment_id)
        self._check_loan_access(actor, repayment, verb)
        return repayment

    def get_allocations(self, actor: Actor, repayment_id: str) -> List[RepaymentAllocation]:
        repayment = self.get_repayment_by_id(actor, repayment_id)
        return self.allocator.get_allocations(repayment.id)

    def update_repayment(
        self,
        actor: Actor,
        repayment_id: str,
        method: Optional[RepaymentMethod] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Repayment:
        """Edit method, reference or notes within the edit window; the amount is fixed"""
        repayment = self.get_repayment_by_id(actor, repayment_id, verb="update")
        if self._window_expired(repayment):
            raise TimeWindowExpiredError("Cannot update repayment after 24 hours")

        before = repayment.to_dict()
        if method is not None:
            repayment.method = method
        if reference is not None:
            repayment.reference = reference
        if notes is not None:
            repayment.notes = notes
        repayment.updated_at = self.clock()
        self._save_repayment(repayment)

        self.publish_event(DomainEvent.REPAYMENT_UPDATED, "repayment", repayment.id, actor.user_id,
                           before=before, after=repayment.to_dict())
        return repayment

    def delete_repayment(self, actor: Actor, repayment_id: str) -> None:
        """
        Reverse and soft delete a repayment within the edit window

        Credit officers may not delete. When any installment is unpaid
        afterwards the loan is forced back to ACTIVE.
        """
        repayment = self._find_repayment(repayment_id)
        if actor.is_credit_officer:
            raise PermissionDeniedError("Credit officers cannot delete repayments")
        self._check_loan_access(actor, repayment, "delete")
        if self._window_expired(repayment):
            raise TimeWindowExpiredError("Cannot delete repayment after 24 hours. Contact admin.")

        before = repayment.to_dict()
        with self.storage.atomic():
            touched = self.allocator.reverse(repayment.id)
            repayment.deleted_at = self.clock()
            repayment.updated_at = repayment.deleted_at
            self._save_repayment(repayment)
            reopened = self.loan_manager.reopen_if_unpaid(repayment.loan_id)

        logger.info(f"Deleted repayment {repayment.id}",
                    extra={'user_id': actor.user_id, 'action': 'delete', 'resource': 'repayment',
                           'extra': {'items_reversed': len(touched), 'loan_reopened': reopened is not None}})
        self.publish_event(DomainEvent.REPAYMENT_DELETED, "repayment", repayment.id, actor.user_id,
                           before=before, after=repayment.to_dict())
        if reopened:
            before_loan, reopened_loan = reopened
            self.loan_manager.publish_event(DomainEvent.LOAN_STATUS_CHANGED, "loan", reopened_loan.id, actor.user_id,
                                            before=before_loan, after=reopened_loan.to_dict(),
                                            reason="repayment reversed")

    def _window_expired(self, repayment: Repayment) -> bool:
        window = timedelta(hours=get_config().repayment_edit_window_hours)
        return self.clock() - repayment.created_at > window

    def _check_loan_access(self, actor: Actor, repayment: Repayment, verb: str) -> None:
        data = self.storage.load(self.loan_manager.table_name, repayment.loan_id)
        if not data:
            raise NotFoundError("Loan not found")
        if not self.loan_manager.can_access(actor, Loan.from_dict(data)):
            raise PermissionDeniedError(f"You do not have permission to {verb} this repayment")

    def _find_repayment(self, repayment_id: str) -> Repayment:
        data = self.storage.load(self.table_name, repayment_id)
        if not data or data.get('deleted_at'):
            raise NotFoundError("Repayment not found")
        return Repayment.from_dict(data)

    def _save_repayment(self, repayment: Repayment) -> None:
        self.storage.save(self.table_name, repayment.id, repayment.to_dict())
