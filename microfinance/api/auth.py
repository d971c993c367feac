"""
Authentication and authorization dependencies
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..audit import AuditTrail
from ..branches import BranchManager
from ..config import get_config
from ..customers import CustomerManager
from ..events import EventDispatcher
from ..loan_types import LoanTypeManager
from ..loans import LoanManager
from ..rbac import Actor, Role, StaffUser, UserManager
from ..repayments import RepaymentManager
from ..storage import StorageInterface, create_storage


class LendingSystem:
    """Lending core with every manager wired to one storage backend"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        config = get_config()
        self.storage = storage or create_storage(config.database_url)

        self.event_dispatcher = EventDispatcher()
        self.audit_trail = AuditTrail(self.storage)
        if config.enable_audit_logging:
            self.audit_trail.attach(self.event_dispatcher)

        self.user_manager = UserManager(self.storage, self.event_dispatcher)
        self.branch_manager = BranchManager(self.storage, self.user_manager, self.event_dispatcher)
        self.customer_manager = CustomerManager(self.storage, self.user_manager, self.event_dispatcher)
        self.loan_type_manager = LoanTypeManager(self.storage, self.event_dispatcher)
        self.loan_manager = LoanManager(
            self.storage, self.user_manager, self.customer_manager, self.loan_type_manager,
            event_dispatcher=self.event_dispatcher, clock=clock
        )
        self.repayment_manager = RepaymentManager(self.storage, self.loan_manager, self.event_dispatcher)

    def close(self) -> None:
        self.storage.close()


def get_lending_system(request: Request) -> LendingSystem:
    """Dependency returning the system bound to the running app"""
    return request.app.state.system


security = HTTPBearer(auto_error=False)

# Actor used for every request when authentication is switched off
SYSTEM_ACTOR = Actor(user_id="system", role=Role.ADMIN)


def create_access_token(user: StaffUser, expires_in: Optional[timedelta] = None) -> str:
    """Issue a signed bearer token for a staff user"""
    config = get_config()
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user.id,
        "role": user.role.value,
        "branch_id": user.branch_id,
        "iat": now,
        "exp": now + (expires_in or timedelta(hours=config.jwt_expiry_hours)),
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: LendingSystem = Depends(get_lending_system)
) -> Optional[StaffUser]:
    """Validate the bearer token and load its user; None when auth is disabled"""
    config = get_config()
    if not config.auth_enabled:
        return None

    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(credentials.credentials, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    user = system.user_manager.find_user(user_id)
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="Invalid user")
    return user


def get_current_actor(user: Optional[StaffUser] = Depends(get_current_user)) -> Actor:
    """Role and branch come from the stored user, not from the token claims"""
    if user is None:
        return SYSTEM_ACTOR
    return user.to_actor()


def require_roles(*roles: Role):
    """Dependency factory rejecting actors outside ``roles`` with 403"""
    def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden: Insufficient permissions")
        return actor
    return dependency


require_admin = require_roles(Role.ADMIN)
require_branch_manager = require_roles(Role.ADMIN, Role.BRANCH_MANAGER)
