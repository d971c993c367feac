"""
Loan Management Module

Loan origination, drafting, approval workflow, disbursement, officer
assignment and portfolio views. Every multi-row write runs inside
``storage.atomic()``; audit events are published once the write commits.
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .allocation import PaymentAllocator, SCHEDULE_TABLE
from .config import get_config
from .customers import CustomerManager, trailing_number
from .errors import (
    ConflictError, InvalidStateTransitionError, NotFoundError,
    PermissionDeniedError, ValidationFailedError
)
from .events import DomainEvent, EventDispatcher, EventPublisherMixin
from .loan_status import (
    LoanStatus, DELETABLE_STATUSES, OPEN_LOAN_STATUSES, is_terminal, validate_transition
)
from .loan_types import LoanType, LoanTypeManager
from .money import ZERO, HUNDRED, to_decimal, percentage, Amount
from .pagination import Page, paginate
from .rbac import Actor, Role, UserManager
from .schedule import (
    RepaymentScheduleItem, ScheduleStatus, TermUnit, calculate_end_date, generate_schedule
)
from .storage import StorageInterface, StorageRecord


logger = logging.getLogger("microfinance.loans")

REPAYMENT_TABLE = "repayments"


@dataclass
class Loan(StorageRecord):
    """Loan contract between the institution and one customer"""
    loan_number: str
    customer_id: str
    branch_id: str
    principal_amount: Decimal
    term_count: int
    term_unit: TermUnit
    start_date: date
    end_date: date
    processing_fee_amount: Decimal
    penalty_fee_per_day_amount: Decimal
    status: LoanStatus
    created_by_user_id: str
    loan_type_id: Optional[str] = None
    interest_rate: Decimal = ZERO  # annual percent used when the schedule was first built
    assigned_officer_id: Optional[str] = None
    notes: Optional[str] = None
    disbursed_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_LOAN_STATUSES


@dataclass
class LoanAssignmentHistory(StorageRecord):
    """Record of a loan moving from one officer to another"""
    loan_id: str
    old_officer_id: Optional[str]
    new_officer_id: str
    old_branch_id: str
    new_branch_id: str
    changed_by_user_id: str
    reason: Optional[str] = None


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC"""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _as_date(value: Union[date, datetime, str]) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(value).date()


class LoanManager(EventPublisherMixin):
    """
    Loan orchestrator

    Role scoping: admins act on any loan, branch managers on loans of their
    branch, credit officers on loans assigned to them. Credit officers can
    never change status, disburse or reassign.
    """

    table_name = "loans"
    history_table = "loan_assignment_history"

    def __init__(
        self,
        storage: StorageInterface,
        user_manager: UserManager,
        customer_manager: CustomerManager,
        loan_type_manager: LoanTypeManager,
        allocator: Optional[PaymentAllocator] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.user_manager = user_manager
        self.customer_manager = customer_manager
        self.loan_type_manager = loan_type_manager
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.allocator = allocator or PaymentAllocator(storage, clock=self.clock)
        self.event_dispatcher = event_dispatcher

    # ------------------------------------------------------------------
    # Origination and drafting
    # ------------------------------------------------------------------

    def create_loan(
        self,
        actor: Actor,
        customer_id: str,
        principal_amount: Amount,
        term_count: int,
        term_unit: TermUnit,
        start_date: Union[date, datetime, str],
        processing_fee_amount: Amount = ZERO,
        penalty_fee_per_day_amount: Amount = ZERO,
        loan_type_id: Optional[str] = None,
        interest_rate: Amount = ZERO,
        notes: Optional[str] = None
    ) -> Loan:
        """
        Create a DRAFT loan and its repayment schedule

        Args:
            actor: Staff member creating the loan
            customer_id: Borrower
            principal_amount: Amount lent
            term_count: Number of installments
            term_unit: Installment period
            start_date: Loan start; first installment falls due one period later
            processing_fee_amount: One-off fee recorded on the loan
            penalty_fee_per_day_amount: Late penalty rate recorded on the loan
            loan_type_id: Optional loan product constraining the principal
            interest_rate: Annual flat interest percentage (0-100)
            notes: Free text

        Returns:
            The created Loan

        Raises:
            NotFoundError: Customer or loan type missing
            ValidationFailedError: Bad amounts or principal outside the loan type range
            ConflictError: Customer already has an open loan
        """
        principal_amount = to_decimal(principal_amount)
        processing_fee_amount = to_decimal(processing_fee_amount)
        penalty_fee_per_day_amount = to_decimal(penalty_fee_per_day_amount)
        interest_rate = to_decimal(interest_rate)
        start = _as_date(start_date)
        self._validate_terms(principal_amount, term_count, processing_fee_amount, penalty_fee_per_day_amount)
        if interest_rate < ZERO or interest_rate > HUNDRED:
            raise ValidationFailedError("Interest rate must be between 0 and 100")

        customer = self.customer_manager.get_customer(actor, customer_id, verb="create a loan for")
        if loan_type_id:
            self._check_principal_in_range(self.loan_type_manager.get_active_loan_type(loan_type_id), principal_amount)

        with self.storage.atomic():
            if self._customer_has_open_loan(customer_id):
                raise ConflictError("Customer already has an active loan")

            now = self.clock()
            loan = Loan(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                loan_number=self._next_loan_number(),
                customer_id=customer_id,
                branch_id=customer.branch_id,
                loan_type_id=loan_type_id,
                principal_amount=principal_amount,
                term_count=term_count,
                term_unit=term_unit,
                start_date=start,
                end_date=calculate_end_date(start, term_count, term_unit),
                processing_fee_amount=processing_fee_amount,
                penalty_fee_per_day_amount=penalty_fee_per_day_amount,
                interest_rate=interest_rate,
                status=LoanStatus.DRAFT,
                created_by_user_id=actor.user_id,
                assigned_officer_id=customer.current_officer_id or actor.user_id,
                notes=notes
            )
            self._save_loan(loan)
            self._save_schedule(generate_schedule(
                loan.id, principal_amount, term_count, term_unit, start, interest_rate
            ))

        logger.info(f"Created loan {loan.loan_number}",
                    extra={'user_id': actor.user_id, 'action': 'create', 'resource': 'loan',
                           'extra': {'loan_id': loan.id, 'principal': str(principal_amount)}})
        self.publish_event(DomainEvent.LOAN_CREATED, "loan", loan.id, actor.user_id, after=loan.to_dict())
        return loan

    def update_loan(
        self,
        actor: Actor,
        loan_id: str,
        loan_type_id: Optional[str] = None,
        principal_amount: Optional[Amount] = None,
        term_count: Optional[int] = None,
        term_unit: Optional[TermUnit] = None,
        start_date: Optional[Union[date, datetime, str]] = None,
        processing_fee_amount: Optional[Amount] = None,
        penalty_fee_per_day_amount: Optional[Amount] = None,
        notes: Optional[str] = None
    ) -> Loan:
        """
        Edit a DRAFT loan

        Changing principal, term count, term unit or start date throws the
        schedule away and rebuilds it at 0% interest.
        """
        loan = self.find_loan(loan_id)
        if loan.status != LoanStatus.DRAFT:
            raise InvalidStateTransitionError("Only draft loans can be updated")
        self._check_access(actor, loan, "update")
        before = loan.to_dict()

        new_principal = to_decimal(principal_amount) if principal_amount is not None else loan.principal_amount
        new_term_count = term_count if term_count is not None else loan.term_count
        new_fee = to_decimal(processing_fee_amount) if processing_fee_amount is not None else loan.processing_fee_amount
        new_penalty = (to_decimal(penalty_fee_per_day_amount)
                       if penalty_fee_per_day_amount is not None else loan.penalty_fee_per_day_amount)
        self._validate_terms(new_principal, new_term_count, new_fee, new_penalty)

        new_loan_type_id = loan_type_id or loan.loan_type_id
        if loan_type_id or (principal_amount is not None and new_loan_type_id):
            self._check_principal_in_range(
                self.loan_type_manager.get_active_loan_type(new_loan_type_id), new_principal
            )

        terms_changed = any(value is not None for value in (principal_amount, term_count, term_unit, start_date))

        loan.loan_type_id = new_loan_type_id
        loan.principal_amount = new_principal
        loan.term_count = new_term_count
        loan.term_unit = term_unit or loan.term_unit
        loan.start_date = _as_date(start_date) if start_date is not None else loan.start_date
        loan.processing_fee_amount = new_fee
        loan.penalty_fee_per_day_amount = new_penalty
        if notes is not None:
            loan.notes = notes
        if terms_changed:
            loan.end_date = calculate_end_date(loan.start_date, loan.term_count, loan.term_unit)
        loan.updated_at = self.clock()

        with self.storage.atomic():
            self._save_loan(loan)
            if terms_changed:
                for item in self.allocator.get_schedule(loan.id):
                    self.storage.delete(SCHEDULE_TABLE, item.id)
                self._save_schedule(generate_schedule(
                    loan.id, loan.principal_amount, loan.term_count, loan.term_unit, loan.start_date, ZERO
                ))

        self.publish_event(DomainEvent.LOAN_UPDATED, "loan", loan.id, actor.user_id,
                           before=before, after=loan.to_dict(), schedule_regenerated=terms_changed)
        return loan

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def update_loan_status(
        self,
        actor: Actor,
        loan_id: str,
        status: LoanStatus,
        notes: Optional[str] = None
    ) -> Loan:
        """
        Move a loan through its lifecycle

        APPROVED loans become ACTIVE only through ``disburse_loan``.
        """
        loan = self.find_loan(loan_id)
        if actor.is_credit_officer:
            raise PermissionDeniedError("Credit officers cannot change loan status. Contact your branch manager.")
        self._check_access(actor, loan, "update")

        validate_transition(loan.status, status)
        if loan.status == LoanStatus.APPROVED and status == LoanStatus.ACTIVE:
            raise InvalidStateTransitionError("Approved loans become active only through disbursement")

        before = loan.to_dict()
        opening = status in OPEN_LOAN_STATUSES and loan.status not in OPEN_LOAN_STATUSES
        with self.storage.atomic():
            if opening and self._customer_has_open_loan(loan.customer_id, exclude_loan_id=loan.id):
                raise ConflictError("Customer already has an active loan")

            now = self.clock()
            loan.status = status
            if notes:
                loan.notes = f"{loan.notes}\n\n{notes}" if loan.notes else notes
            if is_terminal(status):
                loan.closed_at = now
            loan.updated_at = now
            self._save_loan(loan)

        logger.info(f"Loan {loan.loan_number} moved from {before['status']} to {status.value}",
                    extra={'user_id': actor.user_id, 'action': 'status_change', 'resource': 'loan'})
        self.publish_event(DomainEvent.LOAN_STATUS_CHANGED, "loan", loan.id, actor.user_id,
                           before=before, after=loan.to_dict())
        return loan

    def disburse_loan(self, actor: Actor, loan_id: str, disbursed_at: Optional[datetime] = None) -> Loan:
        """Activate an APPROVED loan and stamp the disbursement time"""
        loan = self.find_loan(loan_id)
        if loan.status != LoanStatus.APPROVED:
            raise InvalidStateTransitionError("Only approved loans can be disbursed")
        if actor.is_credit_officer:
            raise PermissionDeniedError("Only branch managers and admins can disburse loans")
        self._check_access(actor, loan, "disburse")

        before = loan.to_dict()
        now = self.clock()
        loan.status = LoanStatus.ACTIVE
        loan.disbursed_at = as_utc(disbursed_at) or now
        loan.updated_at = now
        self._save_loan(loan)

        logger.info(f"Disbursed loan {loan.loan_number}",
                    extra={'user_id': actor.user_id, 'action': 'disburse', 'resource': 'loan'})
        self.publish_event(DomainEvent.LOAN_DISBURSED, "loan", loan.id, actor.user_id,
                           before=before, after=loan.to_dict())
        return loan

    def assign_loan(self, actor: Actor, loan_id: str, assigned_officer_id: str, reason: Optional[str] = None) -> Loan:
        """Hand a loan to another credit officer of the same branch"""
        loan = self.find_loan(loan_id)
        if actor.is_credit_officer:
            raise PermissionDeniedError("Credit officers cannot reassign loans")
        self._check_access(actor, loan, "reassign")

        officer = self.user_manager.find_user(assigned_officer_id)
        if officer is None or not officer.is_active:
            raise NotFoundError("Officer not found or inactive")
        if officer.role == Role.ADMIN:
            raise ValidationFailedError("Cannot assign loan to an admin")
        if officer.branch_id != loan.branch_id:
            raise ValidationFailedError("Officer must belong to the same branch as the loan")

        before = loan.to_dict()
        now = self.clock()
        history = LoanAssignmentHistory(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan.id,
            old_officer_id=loan.assigned_officer_id,
            new_officer_id=assigned_officer_id,
            old_branch_id=loan.branch_id,
            new_branch_id=loan.branch_id,
            changed_by_user_id=actor.user_id,
            reason=reason
        )
        loan.assigned_officer_id = assigned_officer_id
        loan.updated_at = now

        with self.storage.atomic():
            self._save_loan(loan)
            self.storage.save(self.history_table, history.id, history.to_dict())

        self.publish_event(DomainEvent.LOAN_ASSIGNED, "loan", loan.id, actor.user_id,
                           before=before, after=loan.to_dict(), reason=reason)
        return loan

    def delete_loan(self, actor: Actor, loan_id: str) -> None:
        """Soft delete a DRAFT or PENDING_APPROVAL loan"""
        loan = self.find_loan(loan_id)
        if loan.status not in DELETABLE_STATUSES:
            raise InvalidStateTransitionError("Only draft or pending approval loans can be deleted")
        self._check_access(actor, loan, "delete")

        before = loan.to_dict()
        loan.deleted_at = self.clock()
        loan.updated_at = loan.deleted_at
        self._save_loan(loan)

        self.publish_event(DomainEvent.LOAN_DELETED, "loan", loan.id, actor.user_id, before=before)

    def mark_overdue_items(self, as_of: Optional[date] = None, actor: Optional[Actor] = None) -> int:
        """
        Flag unpaid installments of ACTIVE loans whose due date has passed

        Args:
            as_of: Reference date, today (UTC) when omitted
            actor: Staff member triggering the sweep; only loans they can
                access are touched. A sweep without an actor covers every branch.

        Returns:
            Number of installments moved to OVERDUE
        """
        as_of = as_of or self.clock().date()
        now = self.clock()
        marked: Dict[str, int] = {}

        with self.storage.atomic():
            active = self.storage.find(self.table_name, {'status': LoanStatus.ACTIVE.value, 'deleted_at': None})
            for loan_data in active:
                if actor is not None and not self.can_access(actor, Loan.from_dict(loan_data)):
                    continue
                for item in self.allocator.get_schedule(loan_data['id']):
                    if item.status in (ScheduleStatus.PENDING, ScheduleStatus.PARTIAL) and item.due_date < as_of:
                        item.status = ScheduleStatus.OVERDUE
                        item.updated_at = now
                        self.storage.save(SCHEDULE_TABLE, item.id, item.to_dict())
                        marked[item.loan_id] = marked.get(item.loan_id, 0) + 1

        for loan_id, count in marked.items():
            self.publish_event(DomainEvent.SCHEDULE_OVERDUE_MARKED, "loan", loan_id,
                               actor.user_id if actor else None, as_of=as_of.isoformat(), items=count)
        total = sum(marked.values())
        if total:
            logger.info(f"Marked {total} installments overdue", extra={'action': 'mark_overdue', 'resource': 'loan'})
        return total

    # ------------------------------------------------------------------
    # Completion hooks used by repayments
    # ------------------------------------------------------------------

    # These run inside the caller's transaction and return (before, loan) so
    # the caller can publish once the transaction has committed.

    def complete_if_fully_paid(self, loan_id: str) -> Optional[Tuple[Dict[str, Any], Loan]]:
        """Close the loan as COMPLETED once no installment is left unpaid"""
        if not self.allocator.is_fully_paid(loan_id):
            return None

        loan = self.find_loan(loan_id)
        before = loan.to_dict()
        now = self.clock()
        loan.status = LoanStatus.COMPLETED
        loan.closed_at = now
        loan.updated_at = now
        self._save_loan(loan)
        return before, loan

    def reopen_if_unpaid(self, loan_id: str) -> Optional[Tuple[Dict[str, Any], Loan]]:
        """Force the loan back to ACTIVE when any installment is unpaid again"""
        if not self.allocator.has_unpaid_items(loan_id):
            return None

        loan = self.find_loan(loan_id)
        if loan.status == LoanStatus.ACTIVE and loan.closed_at is None:
            return None

        before = loan.to_dict()
        loan.status = LoanStatus.ACTIVE
        loan.closed_at = None
        loan.updated_at = self.clock()
        self._save_loan(loan)
        return before, loan

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_loans(
        self,
        actor: Actor,
        status: Optional[LoanStatus] = None,
        branch_id: Optional[str] = None,
        assigned_officer_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Page:
        """
        List loans visible to ``actor``, newest first

        Explicit filters narrow the role scope, they never widen it.
        """
        filters: Dict[str, Any] = {'deleted_at': None}
        if status:
            filters['status'] = status.value
        if branch_id:
            filters['branch_id'] = branch_id
        if assigned_officer_id:
            filters['assigned_officer_id'] = assigned_officer_id
        if customer_id:
            filters['customer_id'] = customer_id

        loans = [Loan.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        loans = [loan for loan in loans if self.can_access(actor, loan)]

        if search:
            needle = search.lower()
            customers = {
                c['id']: c for c in self.storage.find(self.customer_manager.table_name, {})
            }

            def matches(loan: Loan) -> bool:
                customer = customers.get(loan.customer_id, {})
                haystack = (loan.loan_number, customer.get('first_name'), customer.get('last_name'), customer.get('code'))
                return any(needle in (value or "").lower() for value in haystack)

            loans = [loan for loan in loans if matches(loan)]

        loans.reverse()
        return paginate(loans, page, limit)

    def get_loan_by_id(self, actor: Actor, loan_id: str) -> Loan:
        loan = self.find_loan(loan_id)
        self._check_access(actor, loan, "view")
        return loan

    def get_loan_schedule(self, actor: Actor, loan_id: str) -> List[Dict[str, Any]]:
        """Installments in sequence order, each with the repayments applied to it"""
        loan = self.get_loan_by_id(actor, loan_id)

        schedule = []
        for item in self.allocator.get_schedule(loan.id):
            entry = item.to_dict()
            entry['allocations'] = []
            for allocation in self.allocator.get_item_allocations(item.id):
                repayment = self.storage.load(REPAYMENT_TABLE, allocation.repayment_id) or {}
                entry['allocations'].append({
                    'repayment_id': allocation.repayment_id,
                    'amount': str(allocation.amount),
                    'paid_at': repayment.get('paid_at'),
                    'method': repayment.get('method'),
                })
            schedule.append(entry)
        return schedule

    def get_loan_summary(self, actor: Actor, loan_id: str) -> Dict[str, Any]:
        """Expected, paid, outstanding and overdue totals for one loan"""
        loan = self.get_loan_by_id(actor, loan_id)
        items = self.allocator.get_schedule(loan.id)
        repayments = self.storage.find(REPAYMENT_TABLE, {'loan_id': loan.id, 'deleted_at': None})

        total_expected = sum((item.total_due for item in items), ZERO)
        total_paid = sum((to_decimal(r['amount']) for r in repayments), ZERO)
        overdue = [item for item in items if item.status == ScheduleStatus.OVERDUE]
        overdue_amount = sum((item.outstanding for item in overdue), ZERO)

        return {
            'loan_id': loan.id,
            'loan_number': loan.loan_number,
            'principal_amount': str(loan.principal_amount),
            'total_expected': str(total_expected),
            'total_paid': str(total_paid),
            'total_outstanding': str(total_expected - total_paid),
            'overdue_amount': str(overdue_amount),
            'overdue_count': len(overdue),
            'completion_percentage': percentage(total_paid, total_expected),
            'status': loan.status.value,
        }

    def get_assignment_history(self, actor: Actor, loan_id: str) -> List[LoanAssignmentHistory]:
        loan = self.get_loan_by_id(actor, loan_id)
        return [
            LoanAssignmentHistory.from_dict(d)
            for d in self.storage.find(self.history_table, {'loan_id': loan.id})
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def can_access(self, actor: Actor, loan: Loan) -> bool:
        if actor.role == Role.CREDIT_OFFICER:
            return loan.assigned_officer_id == actor.user_id
        if actor.role == Role.BRANCH_MANAGER and actor.branch_id:
            return loan.branch_id == actor.branch_id
        return True

    def _check_access(self, actor: Actor, loan: Loan, verb: str) -> None:
        if not self.can_access(actor, loan):
            raise PermissionDeniedError(f"You do not have permission to {verb} this loan")

    def find_loan(self, loan_id: str) -> Loan:
        data = self.storage.load(self.table_name, loan_id)
        if not data or data.get('deleted_at'):
            raise NotFoundError("Loan not found")
        return Loan.from_dict(data)

    def _validate_terms(self, principal: Decimal, term_count: int, fee: Decimal, penalty: Decimal) -> None:
        if principal <= ZERO:
            raise ValidationFailedError("Principal amount must be positive")
        if not isinstance(term_count, int) or isinstance(term_count, bool) or term_count <= 0:
            raise ValidationFailedError("Term count must be a positive integer")
        if fee < ZERO or penalty < ZERO:
            raise ValidationFailedError("Fee amounts cannot be negative")

    def _check_principal_in_range(self, loan_type: LoanType, principal: Decimal) -> None:
        if not loan_type.allows(principal):
            raise ValidationFailedError(
                f"Principal amount must be between {loan_type.min_amount} and {loan_type.max_amount}"
            )

    def _customer_has_open_loan(self, customer_id: str, exclude_loan_id: Optional[str] = None) -> bool:
        return self.customer_manager.has_open_loan(customer_id, exclude_loan_id=exclude_loan_id)

    def _next_loan_number(self) -> str:
        """Last-created loan number plus one; callers hold the write transaction"""
        config = get_config()
        prefix = config.loan_number_prefix
        last_number = 0
        loans = self.storage.load_all(self.table_name)
        if loans:
            last_number = trailing_number(loans[-1]['loan_number'])
        return f"{prefix}{last_number + 1:0{config.loan_number_width}d}"

    def _save_schedule(self, items: List[RepaymentScheduleItem]) -> None:
        for item in items:
            self.storage.save(SCHEDULE_TABLE, item.id, item.to_dict())

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.table_name, loan.id, loan.to_dict())
