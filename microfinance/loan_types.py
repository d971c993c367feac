"""
Loan Type Module

Loan products: a named principal range that constrains loans created
against it.
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from .errors import ConflictError, NotFoundError, ValidationFailedError
from .events import DomainEvent, EventDispatcher, EventPublisherMixin
from .loan_status import OPEN_LOAN_STATUSES
from .money import ZERO, to_decimal, Amount
from .pagination import Page, paginate
from .rbac import Actor, Role, require_role
from .storage import StorageInterface, StorageRecord


logger = logging.getLogger("microfinance.loan_types")


@dataclass
class LoanType(StorageRecord):
    """Loan product with an allowed principal range"""
    name: str
    min_amount: Decimal
    max_amount: Decimal
    description: Optional[str] = None
    is_active: bool = True
    deleted_at: Optional[datetime] = None

    def allows(self, principal: Decimal) -> bool:
        return self.min_amount <= principal <= self.max_amount


class LoanTypeManager(EventPublisherMixin):
    """Manages loan products"""

    table_name = "loan_types"

    def __init__(self, storage: StorageInterface, event_dispatcher: Optional[EventDispatcher] = None):
        self.storage = storage
        self.event_dispatcher = event_dispatcher

    def create_loan_type(
        self,
        actor: Actor,
        name: str,
        min_amount: Amount,
        max_amount: Amount,
        description: Optional[str] = None
    ) -> LoanType:
        """
        Create a loan product

        Raises:
            ConflictError: If a non-deleted loan type already uses ``name``
            ValidationFailedError: If the range is empty or non-positive
        """
        require_role(actor, Role.ADMIN, message="Only admins can manage loan types")
        min_amount = to_decimal(min_amount)
        max_amount = to_decimal(max_amount)
        self._validate_range(min_amount, max_amount)
        self._ensure_name_free(name)

        now = datetime.now(timezone.utc)
        loan_type = LoanType(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            description=description,
            min_amount=min_amount,
            max_amount=max_amount
        )
        self._save_loan_type(loan_type)

        logger.info(f"Created loan type {name}", extra={'user_id': actor.user_id, 'action': 'create', 'resource': 'loan_type'})
        self.publish_event(DomainEvent.LOAN_TYPE_CREATED, "loan_type", loan_type.id, actor.user_id,
                           after=loan_type.to_dict())
        return loan_type

    def find_loan_type(self, loan_type_id: str) -> Optional[LoanType]:
        data = self.storage.load(self.table_name, loan_type_id)
        if not data or data.get('deleted_at'):
            return None
        return LoanType.from_dict(data)

    def get_loan_type(self, loan_type_id: str) -> LoanType:
        loan_type = self.find_loan_type(loan_type_id)
        if loan_type is None:
            raise NotFoundError("Loan type not found")
        return loan_type

    def get_active_loan_type(self, loan_type_id: str) -> LoanType:
        """Loan type usable for new or edited loans"""
        loan_type = self.find_loan_type(loan_type_id)
        if loan_type is None or not loan_type.is_active:
            raise NotFoundError("Loan type not found or inactive")
        return loan_type

    def list_loan_types(
        self,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Page:
        """List loan types newest first, optionally filtered by active flag and name/description"""
        filters: Dict[str, Any] = {'deleted_at': None}
        if is_active is not None:
            filters['is_active'] = is_active

        loan_types = [LoanType.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        if search:
            needle = search.lower()
            loan_types = [
                lt for lt in loan_types
                if needle in lt.name.lower() or needle in (lt.description or "").lower()
            ]
        loan_types.reverse()
        return paginate(loan_types, page, limit)

    def update_loan_type(
        self,
        actor: Actor,
        loan_type_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        min_amount: Optional[Amount] = None,
        max_amount: Optional[Amount] = None,
        is_active: Optional[bool] = None
    ) -> LoanType:
        require_role(actor, Role.ADMIN, message="Only admins can manage loan types")
        loan_type = self.get_loan_type(loan_type_id)
        before = loan_type.to_dict()

        if name and name != loan_type.name:
            self._ensure_name_free(name)
            loan_type.name = name

        new_min = to_decimal(min_amount) if min_amount is not None else loan_type.min_amount
        new_max = to_decimal(max_amount) if max_amount is not None else loan_type.max_amount
        self._validate_range(new_min, new_max)
        loan_type.min_amount = new_min
        loan_type.max_amount = new_max

        if description is not None:
            loan_type.description = description
        if is_active is not None:
            loan_type.is_active = is_active

        loan_type.updated_at = datetime.now(timezone.utc)
        self._save_loan_type(loan_type)

        self.publish_event(DomainEvent.LOAN_TYPE_UPDATED, "loan_type", loan_type.id, actor.user_id,
                           before=before, after=loan_type.to_dict())
        return loan_type

    def delete_loan_type(self, actor: Actor, loan_type_id: str) -> None:
        """Soft delete; refused while open loans reference the type"""
        require_role(actor, Role.ADMIN, message="Only admins can manage loan types")
        loan_type = self.get_loan_type(loan_type_id)

        open_statuses = {status.value for status in OPEN_LOAN_STATUSES}
        loans = self.storage.find("loans", {'loan_type_id': loan_type_id, 'deleted_at': None})
        if any(loan['status'] in open_statuses for loan in loans):
            raise ConflictError("Cannot delete loan type with active loans. Consider deactivating instead.")

        before = loan_type.to_dict()
        now = datetime.now(timezone.utc)
        loan_type.deleted_at = now
        loan_type.is_active = False
        loan_type.updated_at = now
        self._save_loan_type(loan_type)

        self.publish_event(DomainEvent.LOAN_TYPE_DELETED, "loan_type", loan_type.id, actor.user_id, before=before)

    def toggle_loan_type_status(self, actor: Actor, loan_type_id: str) -> LoanType:
        """Flip the active flag"""
        loan_type = self.get_loan_type(loan_type_id)
        return self.update_loan_type(actor, loan_type_id, is_active=not loan_type.is_active)

    def _validate_range(self, min_amount: Decimal, max_amount: Decimal) -> None:
        if min_amount <= ZERO or max_amount <= ZERO:
            raise ValidationFailedError("Minimum and maximum amounts must be positive")
        if max_amount <= min_amount:
            raise ValidationFailedError("Maximum amount must be greater than minimum amount")

    def _ensure_name_free(self, name: str) -> None:
        if self.storage.find(self.table_name, {'name': name, 'deleted_at': None}):
            raise ConflictError("Loan type with this name already exists")

    def _save_loan_type(self, loan_type: LoanType) -> None:
        self.storage.save(self.table_name, loan_type.id, loan_type.to_dict())
