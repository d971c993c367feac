"""
Branch Module

Branch offices, their managers and per-branch portfolio statistics.
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from .errors import ConflictError, NotFoundError, ValidationFailedError
from .events import DomainEvent, EventDispatcher, EventPublisherMixin
from .loan_status import LoanStatus, OPEN_LOAN_STATUSES
from .money import ZERO
from .pagination import Page, paginate
from .rbac import Actor, Role, require_role, UserManager
from .storage import StorageInterface, StorageRecord


logger = logging.getLogger("microfinance.branches")


@dataclass
class Branch(StorageRecord):
    """Branch office"""
    name: str
    code: str
    manager_id: Optional[str] = None
    deleted_at: Optional[datetime] = None


class BranchManager(EventPublisherMixin):
    """Manages branches"""

    table_name = "branches"

    def __init__(
        self,
        storage: StorageInterface,
        user_manager: UserManager,
        event_dispatcher: Optional[EventDispatcher] = None
    ):
        self.storage = storage
        self.user_manager = user_manager
        self.event_dispatcher = event_dispatcher

    def create_branch(self, actor: Actor, name: str, code: str, manager_id: Optional[str] = None) -> Branch:
        """
        Create a branch

        Args:
            actor: Admin creating the branch
            name: Branch name
            code: Short unique branch code
            manager_id: Optional staff user who manages the branch

        Returns:
            Created Branch

        Raises:
            ConflictError: Code taken, or manager already runs another branch
            NotFoundError: Manager does not exist
            ValidationFailedError: Manager lacks a managing role
        """
        require_role(actor, Role.ADMIN, message="Only admins can manage branches")
        self._ensure_code_free(code)
        if manager_id:
            self._validate_manager(manager_id)

        now = datetime.now(timezone.utc)
        branch = Branch(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            code=code,
            manager_id=manager_id
        )
        self._save_branch(branch)

        logger.info(f"Created branch {code}", extra={'user_id': actor.user_id, 'action': 'create', 'resource': 'branch'})
        self.publish_event(DomainEvent.BRANCH_CREATED, "branch", branch.id, actor.user_id, after=branch.to_dict())
        return branch

    def find_branch(self, branch_id: str) -> Optional[Branch]:
        data = self.storage.load(self.table_name, branch_id)
        if not data or data.get('deleted_at'):
            return None
        return Branch.from_dict(data)

    def get_branch(self, branch_id: str) -> Branch:
        branch = self.find_branch(branch_id)
        if branch is None:
            raise NotFoundError("Branch not found")
        return branch

    def list_branches(self, search: Optional[str] = None, page: int = 1, limit: Optional[int] = None) -> Page:
        """List branches newest first, optionally searching name and code"""
        branches = [Branch.from_dict(d) for d in self.storage.find(self.table_name, {'deleted_at': None})]
        if search:
            needle = search.lower()
            branches = [b for b in branches if needle in b.name.lower() or needle in b.code.lower()]
        branches.reverse()
        return paginate(branches, page, limit)

    def update_branch(
        self,
        actor: Actor,
        branch_id: str,
        name: Optional[str] = None,
        code: Optional[str] = None,
        manager_id: Optional[str] = None
    ) -> Branch:
        require_role(actor, Role.ADMIN, message="Only admins can manage branches")
        branch = self.get_branch(branch_id)
        before = branch.to_dict()

        if code and code != branch.code:
            self._ensure_code_free(code)
            branch.code = code
        if manager_id and manager_id != branch.manager_id:
            self._validate_manager(manager_id, exclude_branch_id=branch.id)
            branch.manager_id = manager_id
        if name is not None:
            branch.name = name

        branch.updated_at = datetime.now(timezone.utc)
        self._save_branch(branch)

        self.publish_event(DomainEvent.BRANCH_UPDATED, "branch", branch.id, actor.user_id,
                           before=before, after=branch.to_dict())
        return branch

    def delete_branch(self, actor: Actor, branch_id: str) -> None:
        """Soft delete; refused while the branch has open loans"""
        require_role(actor, Role.ADMIN, message="Only admins can manage branches")
        branch = self.get_branch(branch_id)

        open_statuses = {status.value for status in OPEN_LOAN_STATUSES}
        loans = self.storage.find("loans", {'branch_id': branch_id, 'deleted_at': None})
        if any(loan['status'] in open_statuses for loan in loans):
            raise ConflictError("Cannot delete branch with active loans")

        before = branch.to_dict()
        branch.deleted_at = datetime.now(timezone.utc)
        branch.updated_at = branch.deleted_at
        self._save_branch(branch)

        self.publish_event(DomainEvent.BRANCH_DELETED, "branch", branch.id, actor.user_id, before=before)

    def get_branch_stats(self, branch_id: str) -> Dict[str, Any]:
        """Customer and loan counts plus disbursed and repaid totals for one branch"""
        branch = self.get_branch(branch_id)

        customers = self.storage.find("customers", {'branch_id': branch_id, 'deleted_at': None})
        loans = self.storage.find("loans", {'branch_id': branch_id, 'deleted_at': None})
        loan_ids = {loan['id'] for loan in loans}

        disbursed_statuses = {LoanStatus.ACTIVE.value, LoanStatus.COMPLETED.value}
        total_disbursed = sum(
            (Decimal(loan['principal_amount']) for loan in loans if loan['status'] in disbursed_statuses),
            ZERO
        )
        total_repaid = sum(
            (Decimal(r['amount']) for r in self.storage.find("repayments", {'deleted_at': None})
             if r['loan_id'] in loan_ids),
            ZERO
        )

        return {
            'branch_id': branch.id,
            'branch_name': branch.name,
            'total_customers': len(customers),
            'total_loans': len(loans),
            'active_loans': sum(1 for loan in loans if loan['status'] == LoanStatus.ACTIVE.value),
            'total_disbursed': str(total_disbursed),
            'total_repaid': str(total_repaid),
        }

    def _validate_manager(self, manager_id: str, exclude_branch_id: Optional[str] = None) -> None:
        manager = self.user_manager.find_user(manager_id)
        if manager is None:
            raise NotFoundError("Manager not found")
        if manager.role not in (Role.BRANCH_MANAGER, Role.ADMIN):
            raise ValidationFailedError("User must be a Branch Manager or Admin to manage a branch")

        for data in self.storage.find(self.table_name, {'manager_id': manager_id, 'deleted_at': None}):
            if data['id'] != exclude_branch_id:
                raise ConflictError("Manager is already assigned to another branch")

    def _ensure_code_free(self, code: str) -> None:
        if self.storage.find(self.table_name, {'code': code, 'deleted_at': None}):
            raise ConflictError("Branch code already exists")

    def _save_branch(self, branch: Branch) -> None:
        self.storage.save(self.table_name, branch.id, branch.to_dict())
