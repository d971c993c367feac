"""
Shared fixtures: an in-memory lending system with a controllable clock and a
small seeded organisation (one branch, a manager, two officers, a customer).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from microfinance.api.auth import LendingSystem
from microfinance.rbac import Actor, Role
from microfinance.storage import InMemoryStorage


class FakeClock:
    """Callable clock that only moves when told to"""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class Organisation:
    admin: Actor
    manager: Actor
    officer: Actor
    other_officer: Actor
    branch_id: str
    other_branch_id: str
    customer_id: str


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def system(clock):
    lending = LendingSystem(storage=InMemoryStorage(), clock=clock)
    yield lending
    lending.close()


@pytest.fixture
def org(system):
    admin = Actor(user_id="admin-1", role=Role.ADMIN)

    branch = system.branch_manager.create_branch(admin, "Kampala Central", "KLA")
    other_branch = system.branch_manager.create_branch(admin, "Gulu", "GUL")

    manager = system.user_manager.create_user(
        admin, "manager@mfi.test", "Grace Manager", Role.BRANCH_MANAGER, branch_id=branch.id
    )
    officer = system.user_manager.create_user(
        admin, "officer@mfi.test", "Peter Officer", Role.CREDIT_OFFICER, branch_id=branch.id
    )
    other_officer = system.user_manager.create_user(
        admin, "other@mfi.test", "Ruth Officer", Role.CREDIT_OFFICER, branch_id=other_branch.id
    )

    customer = system.customer_manager.create_customer(
        admin, "Amina", "Nakato", branch.id, phone="+256700000001", current_officer_id=officer.id
    )

    return Organisation(
        admin=admin,
        manager=manager.to_actor(),
        officer=officer.to_actor(),
        other_officer=other_officer.to_actor(),
        branch_id=branch.id,
        other_branch_id=other_branch.id,
        customer_id=customer.id,
    )
