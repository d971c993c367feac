"""
Role-Based Access Control Module

Staff users, their roles and the actor identity passed into every lending
operation. Three fixed roles: admins see everything, branch managers see
their branch and credit officers see the loans assigned to them.
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError
from .events import DomainEvent, EventDispatcher, EventPublisherMixin
from .pagination import Page, paginate
from .storage import StorageInterface, StorageRecord


logger = logging.getLogger("microfinance.rbac")


class Role(Enum):
    """Staff roles"""
    ADMIN = "ADMIN"
    BRANCH_MANAGER = "BRANCH_MANAGER"
    CREDIT_OFFICER = "CREDIT_OFFICER"


@dataclass(frozen=True)
class Actor:
    """The authenticated staff member performing an operation"""
    user_id: str
    role: Role
    branch_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_branch_manager(self) -> bool:
        return self.role == Role.BRANCH_MANAGER

    @property
    def is_credit_officer(self) -> bool:
        return self.role == Role.CREDIT_OFFICER


def require_role(actor: Actor, *roles: Role, message: Optional[str] = None) -> None:
    """Raise PermissionDeniedError unless the actor holds one of ``roles``"""
    if actor.role not in roles:
        raise PermissionDeniedError(message or "You do not have permission to perform this action")


@dataclass
class StaffUser(StorageRecord):
    """Back-office user; the subject of issued access tokens"""
    email: str
    full_name: str
    role: Role
    branch_id: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = True
    last_login_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def to_actor(self) -> Actor:
        return Actor(user_id=self.id, role=self.role, branch_id=self.branch_id)


class UserManager(EventPublisherMixin):
    """Manages staff users"""

    table_name = "staff_users"

    def __init__(self, storage: StorageInterface, event_dispatcher: Optional[EventDispatcher] = None):
        self.storage = storage
        self.event_dispatcher = event_dispatcher

    def create_user(
        self,
        actor: Actor,
        email: str,
        full_name: str,
        role: Role,
        branch_id: Optional[str] = None,
        phone: Optional[str] = None
    ) -> StaffUser:
        """
        Create a staff user

        Args:
            actor: Admin creating the user
            email: Login email (unique)
            full_name: Display name
            role: Staff role
            branch_id: Required for branch managers and credit officers
            phone: Optional contact number

        Returns:
            Created StaffUser
        """
        require_role(actor, Role.ADMIN, message="Only admins can manage users")
        self._ensure_email_free(email)

        if role != Role.ADMIN and not branch_id:
            raise ValidationFailedError("Branch Manager and Credit Officer must be assigned to a branch")
        if branch_id:
            self._ensure_branch(branch_id)

        now = datetime.now(timezone.utc)
        user = StaffUser(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            email=email.lower(),
            full_name=full_name,
            role=role,
            branch_id=branch_id,
            phone=phone
        )
        self._save_user(user)

        logger.info(f"Created user {user.email}", extra={'user_id': actor.user_id, 'action': 'create', 'resource': 'user'})
        self.publish_event(DomainEvent.USER_CREATED, "user", user.id, actor.user_id, after=user.to_dict())
        return user

    def find_user(self, user_id: str) -> Optional[StaffUser]:
        data = self.storage.load(self.table_name, user_id)
        if not data or data.get('deleted_at'):
            return None
        return StaffUser.from_dict(data)

    def get_user(self, user_id: str) -> StaffUser:
        user = self.find_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def get_user_by_email(self, email: str) -> Optional[StaffUser]:
        for data in self.storage.find(self.table_name, {'email': email.lower(), 'deleted_at': None}):
            return StaffUser.from_dict(data)
        return None

    def list_users(
        self,
        role: Optional[Role] = None,
        branch_id: Optional[str] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Page:
        """List users, newest first"""
        filters: Dict[str, Any] = {'deleted_at': None}
        if role:
            filters['role'] = role.value
        if branch_id:
            filters['branch_id'] = branch_id
        if is_active is not None:
            filters['is_active'] = is_active

        users = [StaffUser.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        if search:
            needle = search.lower()
            users = [u for u in users if needle in u.email or needle in u.full_name.lower()]
        users.reverse()
        return paginate(users, page, limit)

    def update_user(
        self,
        actor: Actor,
        user_id: str,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
        role: Optional[Role] = None,
        branch_id: Optional[str] = None,
        phone: Optional[str] = None,
        is_active: Optional[bool] = None
    ) -> StaffUser:
        """Update a staff user's profile, role, branch or active flag"""
        require_role(actor, Role.ADMIN, message="Only admins can manage users")
        user = self.get_user(user_id)
        before = user.to_dict()

        if user_id == actor.user_id and is_active is False:
            raise ValidationFailedError("You cannot deactivate your own account")
        if email and email.lower() != user.email:
            self._ensure_email_free(email)
            user.email = email.lower()
        if role and role != Role.ADMIN and not branch_id and not user.branch_id:
            raise ValidationFailedError("Branch Manager and Credit Officer must be assigned to a branch")
        if branch_id:
            self._ensure_branch(branch_id)
            user.branch_id = branch_id

        if full_name is not None:
            user.full_name = full_name
        if role is not None:
            user.role = role
        if phone is not None:
            user.phone = phone
        if is_active is not None:
            user.is_active = is_active

        user.updated_at = datetime.now(timezone.utc)
        self._save_user(user)

        event = DomainEvent.USER_DEACTIVATED if is_active is False else DomainEvent.USER_UPDATED
        self.publish_event(event, "user", user.id, actor.user_id, before=before, after=user.to_dict())
        return user

    def deactivate_user(self, actor: Actor, user_id: str) -> StaffUser:
        return self.update_user(actor, user_id, is_active=False)

    def record_login(self, user_id: str) -> StaffUser:
        user = self.get_user(user_id)
        user.last_login_at = datetime.now(timezone.utc)
        self._save_user(user)
        return user

    def _ensure_email_free(self, email: str) -> None:
        if self.get_user_by_email(email) is not None:
            raise ConflictError("Email already exists")

    def _ensure_branch(self, branch_id: str) -> None:
        data = self.storage.load("branches", branch_id)
        if not data or data.get('deleted_at'):
            raise NotFoundError("Branch not found")

    def _save_user(self, user: StaffUser) -> None:
        self.storage.save(self.table_name, user.id, user.to_dict())
