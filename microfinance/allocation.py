"""
Payment Allocation Module

Spreads a repayment across a loan's open installments, oldest due date
first, and undoes that spread when the repayment is deleted.
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional

from .money import ZERO, format_money
from .schedule import RepaymentScheduleItem, ScheduleStatus, OPEN_SCHEDULE_STATUSES
from .storage import StorageInterface, StorageRecord


logger = logging.getLogger("microfinance.allocation")

SCHEDULE_TABLE = "repayment_schedule_items"
ALLOCATION_TABLE = "repayment_allocations"


@dataclass
class RepaymentAllocation(StorageRecord):
    """Portion of a repayment applied to one installment"""
    repayment_id: str
    schedule_item_id: str
    amount: Decimal


class PaymentAllocator:
    """
    Applies repayments to schedule items

    Callers are expected to run ``allocate`` and ``reverse`` inside
    ``storage.atomic()`` together with the repayment write itself; both
    methods also open their own (nested) atomic block.
    """

    def __init__(self, storage: StorageInterface, clock: Optional[Callable[[], datetime]] = None):
        self.storage = storage
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def get_schedule(self, loan_id: str) -> List[RepaymentScheduleItem]:
        """Non-deleted installments of a loan ordered by sequence"""
        items = [
            RepaymentScheduleItem.from_dict(data)
            for data in self.storage.find(SCHEDULE_TABLE, {'loan_id': loan_id, 'deleted_at': None})
        ]
        items.sort(key=lambda item: item.sequence)
        return items

    def get_allocations(self, repayment_id: str) -> List[RepaymentAllocation]:
        return [
            RepaymentAllocation.from_dict(data)
            for data in self.storage.find(ALLOCATION_TABLE, {'repayment_id': repayment_id})
        ]

    def get_item_allocations(self, schedule_item_id: str) -> List[RepaymentAllocation]:
        return [
            RepaymentAllocation.from_dict(data)
            for data in self.storage.find(ALLOCATION_TABLE, {'schedule_item_id': schedule_item_id})
        ]

    def allocate(self, repayment_id: str, loan_id: str, amount: Decimal) -> List[RepaymentAllocation]:
        """
        Apply ``amount`` to the loan's open installments

        Installments are taken in due-date order (sequence breaks ties); each
        receives ``min(remaining, outstanding)``. Money left once every
        installment is covered stays unallocated.

        Args:
            repayment_id: Repayment being applied
            loan_id: Loan whose schedule receives the money
            amount: Repayment amount

        Returns:
            Allocation rows written, in application order
        """
        now = self._clock()
        allocations: List[RepaymentAllocation] = []

        with self.storage.atomic():
            eligible = [item for item in self.get_schedule(loan_id) if item.status in OPEN_SCHEDULE_STATUSES]
            eligible.sort(key=lambda item: (item.due_date, item.sequence))

            remaining = amount
            for item in eligible:
                if remaining <= ZERO:
                    break

                outstanding = item.outstanding
                if outstanding <= ZERO:
                    continue

                applied = min(remaining, outstanding)
                allocation = RepaymentAllocation(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    repayment_id=repayment_id,
                    schedule_item_id=item.id,
                    amount=applied
                )
                self.storage.save(ALLOCATION_TABLE, allocation.id, allocation.to_dict())
                allocations.append(allocation)

                item.paid_amount += applied
                if item.paid_amount >= item.total_due:
                    item.status = ScheduleStatus.PAID
                    item.closed_at = now
                else:
                    item.status = ScheduleStatus.PARTIAL
                    item.closed_at = None
                item.updated_at = now
                self._save_item(item)

                remaining -= applied

        if remaining > ZERO:
            logger.info(
                f"Repayment {repayment_id} left {format_money(remaining)} unallocated",
                extra={'resource': 'repayment', 'extra': {'loan_id': loan_id, 'unallocated': str(remaining)}}
            )
        return allocations

    def reverse(self, repayment_id: str) -> List[RepaymentScheduleItem]:
        """
        Undo every allocation of a repayment

        Each touched installment gets its share subtracted and its status
        recomputed (PENDING at zero, PARTIAL below total, PAID otherwise) with
        ``closed_at`` cleared. The allocation rows are removed.

        Returns:
            Installments that were touched
        """
        now = self._clock()
        touched: List[RepaymentScheduleItem] = []

        with self.storage.atomic():
            for allocation in self.get_allocations(repayment_id):
                data = self.storage.load(SCHEDULE_TABLE, allocation.schedule_item_id)
                if data is not None:
                    item = RepaymentScheduleItem.from_dict(data)
                    item.paid_amount -= allocation.amount

                    if item.paid_amount <= ZERO:
                        item.status = ScheduleStatus.PENDING
                    elif item.paid_amount < item.total_due:
                        item.status = ScheduleStatus.PARTIAL
                    else:
                        item.status = ScheduleStatus.PAID
                    item.closed_at = None
                    item.updated_at = now
                    self._save_item(item)
                    touched.append(item)

                self.storage.delete(ALLOCATION_TABLE, allocation.id)

        return touched

    def is_fully_paid(self, loan_id: str) -> bool:
        """True when the loan has installments and none of them is unpaid"""
        items = self.get_schedule(loan_id)
        return bool(items) and all(item.status == ScheduleStatus.PAID for item in items)

    def has_unpaid_items(self, loan_id: str) -> bool:
        return any(item.status != ScheduleStatus.PAID for item in self.get_schedule(loan_id))

    def _save_item(self, item: RepaymentScheduleItem) -> None:
        self.storage.save(SCHEDULE_TABLE, item.id, item.to_dict())
