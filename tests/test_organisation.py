"""
Test suite for branches, staff users and customers
"""

import pytest
from decimal import Decimal
from datetime import date

from microfinance.config import get_config
from microfinance.customers import trailing_number
from microfinance.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationFailedError
from microfinance.loan_status import LoanStatus
from microfinance.rbac import Role
from microfinance.repayments import RepaymentMethod
from microfinance.schedule import TermUnit


class TestBranches:
    """Test branch management"""

    def test_duplicate_code(self, system, org):
        with pytest.raises(ConflictError):
            system.branch_manager.create_branch(org.admin, "Another Kampala", "KLA")

    def test_only_admin_creates(self, system, org):
        with pytest.raises(PermissionDeniedError):
            system.branch_manager.create_branch(org.manager, "Mbale", "MBL")

    def test_manager_rules(self, system, org):
        with pytest.raises(ValidationFailedError):
            system.branch_manager.create_branch(org.admin, "Mbale", "MBL", manager_id=org.officer.user_id)
        with pytest.raises(NotFoundError):
            system.branch_manager.create_branch(org.admin, "Mbale", "MBL", manager_id="ghost")

        system.branch_manager.update_branch(org.admin, org.branch_id, manager_id=org.manager.user_id)
        with pytest.raises(ConflictError):
            system.branch_manager.create_branch(org.admin, "Mbale", "MBL", manager_id=org.manager.user_id)

    def test_search(self, system, org):
        assert system.branch_manager.list_branches().total == 2
        assert system.branch_manager.list_branches(search="gul").items[0].id == org.other_branch_id

    def test_delete_blocked_by_open_loan(self, system, org):
        loan = system.loan_manager.create_loan(
            org.manager, org.customer_id, Decimal('1000'), 4, TermUnit.WEEK, date(2024, 1, 1)
        )
        system.loan_manager.update_loan_status(org.manager, loan.id, LoanStatus.PENDING_APPROVAL)

        with pytest.raises(ConflictError):
            system.branch_manager.delete_branch(org.admin, org.branch_id)
        system.branch_manager.delete_branch(org.admin, org.other_branch_id)

    def test_stats(self, system, org):
        loan = system.loan_manager.create_loan(
            org.manager, org.customer_id, Decimal('1000'), 10, TermUnit.MONTH, date(2024, 1, 1)
        )
        system.loan_manager.update_loan_status(org.manager, loan.id, LoanStatus.PENDING_APPROVAL)
        system.loan_manager.update_loan_status(org.manager, loan.id, LoanStatus.APPROVED)
        system.loan_manager.disburse_loan(org.manager, loan.id)
        system.repayment_manager.create_repayment(org.officer, loan.id, Decimal('200'), RepaymentMethod.CASH)

        stats = system.branch_manager.get_branch_stats(org.branch_id)
        assert stats['total_customers'] == 1
        assert stats['total_loans'] == 1
        assert stats['active_loans'] == 1
        assert Decimal(stats['total_disbursed']) == Decimal('1000')
        assert Decimal(stats['total_repaid']) == Decimal('200')


class TestStaffUsers:
    """Test staff user management"""

    def test_email_unique_case_insensitive(self, system, org):
        with pytest.raises(ConflictError):
            system.user_manager.create_user(org.admin, "OFFICER@mfi.test", "Dup", Role.CREDIT_OFFICER,
                                            branch_id=org.branch_id)

    def test_branch_required_for_field_roles(self, system, org):
        with pytest.raises(ValidationFailedError):
            system.user_manager.create_user(org.admin, "new@mfi.test", "New", Role.CREDIT_OFFICER)

    def test_unknown_branch(self, system, org):
        with pytest.raises(NotFoundError):
            system.user_manager.create_user(org.admin, "new@mfi.test", "New", Role.CREDIT_OFFICER,
                                            branch_id="missing")

    def test_list_and_deactivate(self, system, org):
        assert system.user_manager.list_users(role=Role.CREDIT_OFFICER).total == 2

        user = system.user_manager.deactivate_user(org.admin, org.officer.user_id)

        assert not user.is_active
        assert system.user_manager.list_users(is_active=True).total == 2

    def test_cannot_deactivate_self(self, system, org):
        admin = system.user_manager.create_user(org.admin, "boss@mfi.test", "Boss", Role.ADMIN)
        with pytest.raises(ValidationFailedError):
            system.user_manager.deactivate_user(admin.to_actor(), admin.id)


class TestCustomers:
    """Test customer registration and scoping"""

    def test_codes_increment(self, system, org):
        first = system.customer_manager.get_customer(org.admin, org.customer_id)
        second = system.customer_manager.create_customer(org.admin, "Joseph", "Okello", org.branch_id)

        assert first.code == "CUST000001"
        assert second.code == "CUST000002"
        assert second.created_by_user_id == org.admin.user_id

    def test_codes_survive_prefix_change(self, system, org, monkeypatch):
        monkeypatch.setattr(get_config(), "customer_code_prefix", "CL")
        customer = system.customer_manager.create_customer(org.admin, "Joseph", "Okello", org.branch_id)

        assert customer.code == "CL000002"

    @pytest.mark.parametrize("code,number", [
        ("LN00000042", 42),
        ("CUST000007", 7),
        ("LEGACY-2019-15", 15),
        ("NODIGITS", 0),
    ])
    def test_trailing_number(self, code, number):
        assert trailing_number(code) == number

    def test_officer_rules(self, system, org):
        with pytest.raises(ValidationFailedError):
            system.customer_manager.create_customer(
                org.admin, "Joseph", "Okello", org.branch_id, current_officer_id=org.other_officer.user_id
            )
        admin = system.user_manager.create_user(org.admin, "boss@mfi.test", "Boss", Role.ADMIN)
        with pytest.raises(ValidationFailedError):
            system.customer_manager.create_customer(
                org.admin, "Joseph", "Okello", org.branch_id, current_officer_id=admin.id
            )

    def test_duplicate_email(self, system, org):
        system.customer_manager.create_customer(org.admin, "A", "B", org.branch_id, email="a@b.test")
        with pytest.raises(ConflictError):
            system.customer_manager.create_customer(org.admin, "C", "D", org.branch_id, email="a@b.test")

    def test_branch_scoping(self, system, org):
        with pytest.raises(PermissionDeniedError):
            system.customer_manager.get_customer(org.other_officer, org.customer_id)

        assert system.customer_manager.list_customers(org.officer).total == 1
        assert system.customer_manager.list_customers(org.other_officer).total == 0
        assert system.customer_manager.list_customers(org.admin, search="nakato").total == 1

    def test_update(self, system, org):
        customer = system.customer_manager.update_customer(org.manager, org.customer_id, phone="+256700000099")
        assert customer.phone == "+256700000099"

        with pytest.raises(ValidationFailedError):
            system.customer_manager.update_customer(org.manager, org.customer_id, nickname="Ami")

    def test_reassign_records_history(self, system, org):
        customer = system.customer_manager.reassign_customer(
            org.admin, org.customer_id, new_branch_id=org.other_branch_id,
            new_officer_id=org.other_officer.user_id, reason="Moved to Gulu"
        )

        assert customer.branch_id == org.other_branch_id
        assert customer.current_officer_id == org.other_officer.user_id
        history = system.customer_manager.get_reassignments(org.customer_id)
        assert len(history) == 1
        assert history[0].old_branch_id == org.branch_id
        assert history[0].reason == "Moved to Gulu"

    def test_reassign_officer_must_match_branch(self, system, org):
        with pytest.raises(ValidationFailedError):
            system.customer_manager.reassign_customer(
                org.admin, org.customer_id, new_officer_id=org.other_officer.user_id
            )

    def test_delete_blocked_by_open_loan(self, system, org):
        loan = system.loan_manager.create_loan(
            org.manager, org.customer_id, Decimal('1000'), 4, TermUnit.WEEK, date(2024, 1, 1)
        )
        system.loan_manager.update_loan_status(org.manager, loan.id, LoanStatus.PENDING_APPROVAL)

        with pytest.raises(ConflictError):
            system.customer_manager.delete_customer(org.manager, org.customer_id)

        system.loan_manager.update_loan_status(org.manager, loan.id, LoanStatus.CANCELED)
        system.customer_manager.delete_customer(org.manager, org.customer_id)
        with pytest.raises(NotFoundError):
            system.customer_manager.get_customer(org.admin, org.customer_id)
