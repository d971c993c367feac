"""
Customer Module

Borrowers, their home branch and the credit officer looking after them.
"""

import re
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .config import get_config
from .errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError
from .events import DomainEvent, EventDispatcher, EventPublisherMixin
from .loan_status import OPEN_LOAN_STATUSES
from .pagination import Page, paginate
from .rbac import Actor, Role, UserManager
from .storage import StorageInterface, StorageRecord


logger = logging.getLogger("microfinance.customers")


def trailing_number(code: str) -> int:
    """Counter at the end of a generated code such as LN00000042 or CUST000007"""
    match = re.search(r"(\d+)$", code or "")
    return int(match.group(1)) if match else 0


@dataclass
class Customer(StorageRecord):
    """Borrower"""
    code: str
    first_name: str
    last_name: str
    branch_id: str
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    current_officer_id: Optional[str] = None
    created_by_user_id: Optional[str] = None
    deleted_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass
class CustomerReassignment(StorageRecord):
    """History row written whenever a customer changes branch or officer"""
    customer_id: str
    old_branch_id: str
    new_branch_id: str
    old_officer_id: Optional[str]
    new_officer_id: Optional[str]
    changed_by_user_id: str
    reason: Optional[str] = None


class CustomerManager(EventPublisherMixin):
    """Manages customers"""

    table_name = "customers"
    reassignment_table = "customer_reassignments"

    def __init__(
        self,
        storage: StorageInterface,
        user_manager: UserManager,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.user_manager = user_manager
        self.event_dispatcher = event_dispatcher

    def create_customer(
        self,
        actor: Actor,
        first_name: str,
        last_name: str,
        branch_id: str,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        address: Optional[str] = None,
        current_officer_id: Optional[str] = None
    ) -> Customer:
        """
        Register a customer and give them the next ``CUST`` code

        Raises:
            NotFoundError: Branch or officer missing
            ValidationFailedError: Officer is an admin or from another branch
            ConflictError: Email already used by another customer
        """
        self._ensure_branch(branch_id)
        if current_officer_id:
            self._validate_officer(current_officer_id, branch_id)
        if email:
            self._ensure_email_free(email)

        with self.storage.atomic():
            now = datetime.now(timezone.utc)
            customer = Customer(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                code=self._next_customer_code(),
                first_name=first_name,
                last_name=last_name,
                branch_id=branch_id,
                phone=phone,
                email=email,
                address=address,
                current_officer_id=current_officer_id,
                created_by_user_id=actor.user_id
            )
            self._save_customer(customer)

        logger.info(f"Created customer {customer.code}",
                    extra={'user_id': actor.user_id, 'action': 'create', 'resource': 'customer'})
        self.publish_event(DomainEvent.CUSTOMER_CREATED, "customer", customer.id, actor.user_id,
                           after=customer.to_dict())
        return customer

    def find_customer(self, customer_id: str) -> Optional[Customer]:
        data = self.storage.load(self.table_name, customer_id)
        if not data or data.get('deleted_at'):
            return None
        return Customer.from_dict(data)

    def get_customer(self, actor: Actor, customer_id: str, verb: str = "view") -> Customer:
        """Load a customer the actor may see; non-admins are limited to their branch"""
        customer = self.find_customer(customer_id)
        if customer is None:
            raise NotFoundError("Customer not found")
        if not actor.is_admin and actor.branch_id and customer.branch_id != actor.branch_id:
            raise PermissionDeniedError(f"You do not have permission to {verb} this customer")
        return customer

    def list_customers(
        self,
        actor: Actor,
        branch_id: Optional[str] = None,
        current_officer_id: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Page:
        filters: Dict[str, Any] = {'deleted_at': None}
        if not actor.is_admin and actor.branch_id:
            filters['branch_id'] = actor.branch_id
        if branch_id:
            filters['branch_id'] = branch_id
        if current_officer_id:
            filters['current_officer_id'] = current_officer_id

        customers = [Customer.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        if search:
            needle = search.lower()
            customers = [
                c for c in customers
                if any(needle in (value or "").lower()
                       for value in (c.first_name, c.last_name, c.email, c.phone, c.code))
            ]
        customers.reverse()
        return paginate(customers, page, limit)

    def update_customer(self, actor: Actor, customer_id: str, **changes: Any) -> Customer:
        """
        Update profile fields, branch or officer

        Accepted keys: first_name, last_name, phone, email, address,
        branch_id, current_officer_id. ``None`` values are ignored.
        """
        customer = self.get_customer(actor, customer_id, verb="update")
        changes = {key: value for key, value in changes.items() if value is not None}
        unknown = set(changes) - {'first_name', 'last_name', 'phone', 'email', 'address',
                                  'branch_id', 'current_officer_id'}
        if unknown:
            raise ValidationFailedError(f"Unknown customer fields: {', '.join(sorted(unknown))}")

        branch_id = changes.get('branch_id')
        if branch_id and branch_id != customer.branch_id:
            self._ensure_branch(branch_id)
        if changes.get('current_officer_id'):
            self._validate_officer(changes['current_officer_id'], branch_id or customer.branch_id)
        email = changes.get('email')
        if email and email != customer.email:
            self._ensure_email_free(email, exclude_id=customer.id)

        before = customer.to_dict()
        for key, value in changes.items():
            setattr(customer, key, value)
        customer.updated_at = datetime.now(timezone.utc)
        self._save_customer(customer)

        self.publish_event(DomainEvent.CUSTOMER_UPDATED, "customer", customer.id, actor.user_id,
                           before=before, after=customer.to_dict())
        return customer

    def reassign_customer(
        self,
        actor: Actor,
        customer_id: str,
        new_branch_id: Optional[str] = None,
        new_officer_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> Customer:
        """Move a customer to another branch and/or officer, recording the change"""
        customer = self.get_customer(actor, customer_id, verb="update")
        target_branch_id = new_branch_id or customer.branch_id

        if new_branch_id:
            data = self.storage.load("branches", new_branch_id)
            if not data or data.get('deleted_at'):
                raise NotFoundError("New branch not found")
        if new_officer_id:
            officer = self.user_manager.find_user(new_officer_id)
            if officer is None:
                raise NotFoundError("New officer not found")
            if officer.branch_id != target_branch_id:
                raise ValidationFailedError("Officer must belong to the target branch")

        before = customer.to_dict()
        now = datetime.now(timezone.utc)
        history = CustomerReassignment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            customer_id=customer.id,
            old_branch_id=customer.branch_id,
            new_branch_id=target_branch_id,
            old_officer_id=customer.current_officer_id,
            new_officer_id=new_officer_id,
            changed_by_user_id=actor.user_id,
            reason=reason
        )
        customer.branch_id = target_branch_id
        customer.current_officer_id = new_officer_id
        customer.updated_at = now

        with self.storage.atomic():
            self._save_customer(customer)
            self.storage.save(self.reassignment_table, history.id, history.to_dict())

        self.publish_event(DomainEvent.CUSTOMER_UPDATED, "customer", customer.id, actor.user_id,
                           before=before, after=customer.to_dict(), reason=reason)
        return customer

    def get_reassignments(self, customer_id: str) -> List[CustomerReassignment]:
        return [
            CustomerReassignment.from_dict(d)
            for d in self.storage.find(self.reassignment_table, {'customer_id': customer_id})
        ]

    def delete_customer(self, actor: Actor, customer_id: str) -> None:
        """Soft delete; refused while the customer has an open loan"""
        customer = self.get_customer(actor, customer_id, verb="delete")

        if self.has_open_loan(customer.id):
            raise ConflictError("Cannot delete customer with active loans")

        before = customer.to_dict()
        customer.deleted_at = datetime.now(timezone.utc)
        customer.updated_at = customer.deleted_at
        self._save_customer(customer)

        self.publish_event(DomainEvent.CUSTOMER_DELETED, "customer", customer.id, actor.user_id, before=before)

    def has_open_loan(self, customer_id: str, exclude_loan_id: Optional[str] = None) -> bool:
        open_statuses = {status.value for status in OPEN_LOAN_STATUSES}
        loans = self.storage.find("loans", {'customer_id': customer_id, 'deleted_at': None})
        return any(loan['status'] in open_statuses for loan in loans if loan['id'] != exclude_loan_id)

    def _next_customer_code(self) -> str:
        config = get_config()
        prefix = config.customer_code_prefix
        last_number = 0
        customers = self.storage.load_all(self.table_name)
        if customers:
            last_number = trailing_number(customers[-1]['code'])
        return f"{prefix}{last_number + 1:0{config.customer_code_width}d}"

    def _validate_officer(self, officer_id: str, branch_id: str) -> None:
        officer = self.user_manager.find_user(officer_id)
        if officer is None:
            raise NotFoundError("Officer not found")
        if officer.role == Role.ADMIN:
            raise ValidationFailedError("Admin cannot be assigned as customer officer")
        if officer.branch_id != branch_id:
            raise ValidationFailedError("Officer must belong to the same branch as customer")

    def _ensure_branch(self, branch_id: str) -> None:
        data = self.storage.load("branches", branch_id)
        if not data or data.get('deleted_at'):
            raise NotFoundError("Branch not found")

    def _ensure_email_free(self, email: str, exclude_id: Optional[str] = None) -> None:
        for data in self.storage.find(self.table_name, {'email': email, 'deleted_at': None}):
            if data['id'] != exclude_id:
                raise ConflictError("Email already exists")

    def _save_customer(self, customer: Customer) -> None:
        self.storage.save(self.table_name, customer.id, customer.to_dict())
