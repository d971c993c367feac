"""
Repayment Schedule Module

Generates the installment schedule for a loan: equal principal slices with
flat simple interest spread evenly across the installments.
"""

import calendar
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from .money import ZERO, HUNDRED, divide_with_remainder, quantize_money, to_decimal, Amount
from .storage import StorageRecord


class TermUnit(Enum):
    """Unit of one installment period"""
    DAY = "DAY"
    WEEK = "WEEK"
    MONTH = "MONTH"


class ScheduleStatus(Enum):
    """Status of one installment"""
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    OVERDUE = "OVERDUE"
    PAID = "PAID"


# Installments that can still receive money
OPEN_SCHEDULE_STATUSES = (ScheduleStatus.PENDING, ScheduleStatus.PARTIAL, ScheduleStatus.OVERDUE)


@dataclass
class RepaymentScheduleItem(StorageRecord):
    """One installment of a loan's repayment schedule"""
    loan_id: str
    sequence: int
    due_date: date
    principal_due: Decimal
    interest_due: Decimal
    fee_due: Decimal
    total_due: Decimal
    paid_amount: Decimal = ZERO
    status: ScheduleStatus = ScheduleStatus.PENDING
    closed_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    @property
    def outstanding(self) -> Decimal:
        return self.total_due - self.paid_amount

    @property
    def is_paid(self) -> bool:
        return self.status == ScheduleStatus.PAID


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, handling month-end edge cases"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def add_terms(start_date: date, count: int, unit: TermUnit) -> date:
    """Advance ``start_date`` by ``count`` periods of ``unit``"""
    if unit == TermUnit.DAY:
        return start_date + timedelta(days=count)
    if unit == TermUnit.WEEK:
        return start_date + timedelta(days=7 * count)
    return add_months(start_date, count)


def calculate_end_date(start_date: date, term_count: int, term_unit: TermUnit) -> date:
    """Maturity date: start advanced by the full term"""
    return add_terms(start_date, term_count, term_unit)


def year_fraction(term_count: int, term_unit: TermUnit) -> Decimal:
    """Loan duration expressed in years for flat interest"""
    if term_unit == TermUnit.DAY:
        return Decimal(term_count) / Decimal(365)
    if term_unit == TermUnit.WEEK:
        return Decimal(term_count * 7) / Decimal(365)
    return Decimal(term_count) / Decimal(12)


def calculate_total_interest(
    principal: Decimal,
    annual_rate: Decimal,
    term_count: int,
    term_unit: TermUnit
) -> Decimal:
    """Flat simple interest over the whole term, unrounded"""
    return principal * (annual_rate / HUNDRED) * year_fraction(term_count, term_unit)


def generate_schedule(
    loan_id: str,
    principal: Amount,
    term_count: int,
    term_unit: TermUnit,
    start_date: date,
    interest_rate: Amount = ZERO
) -> List[RepaymentScheduleItem]:
    """
    Build the installment list for a loan

    Each installment carries ``floor_cents(principal / term_count)`` of
    principal; the leftover cents are not added to any installment.
    Interest per installment is the flat total interest divided evenly and
    rounded half-up to cents.

    Args:
        loan_id: Owning loan
        principal: Principal amount
        term_count: Number of installments (>= 1)
        term_unit: Installment period
        start_date: Loan start; installment i falls due i periods later
        interest_rate: Annual percentage rate, 0 for interest-free

    Returns:
        Installments ordered by sequence 1..term_count

    Raises:
        ValueError: If term_count is not positive or principal is negative
    """
    principal = to_decimal(principal)
    interest_rate = to_decimal(interest_rate)
    if term_count <= 0:
        raise ValueError("Term count must be a positive integer")
    if principal < ZERO:
        raise ValueError("Principal amount cannot be negative")

    principal_due, _ = divide_with_remainder(principal, term_count)
    total_interest = calculate_total_interest(principal, interest_rate, term_count, term_unit)
    interest_due = quantize_money(total_interest / Decimal(term_count))
    total_due = principal_due + interest_due

    now = datetime.now(timezone.utc)
    items = []
    for sequence in range(1, term_count + 1):
        items.append(RepaymentScheduleItem(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan_id,
            sequence=sequence,
            due_date=add_terms(start_date, sequence, term_unit),
            principal_due=principal_due,
            interest_due=interest_due,
            fee_due=quantize_money(ZERO),
            total_due=total_due,
            paid_amount=quantize_money(ZERO),
            status=ScheduleStatus.PENDING
        ))
    return items
