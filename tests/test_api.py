"""
Integration tests for the Microfinance Lending API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from datetime import timedelta
from fastapi.testclient import TestClient

from microfinance.api import create_app
from microfinance.api.auth import LendingSystem, create_access_token
from microfinance.config import get_config
from microfinance.rbac import Actor, Role
from microfinance.storage import InMemoryStorage


@pytest.fixture
def api(clock):
    """Authenticated client factory over a fresh in-memory system"""
    system = LendingSystem(storage=InMemoryStorage(), clock=clock)
    admin_actor = Actor(user_id="bootstrap", role=Role.ADMIN)
    admin = system.user_manager.create_user(admin_actor, "admin@mfi.test", "Head Office", Role.ADMIN)

    app = create_app(system)

    class Api:
        def __init__(self):
            self.system = system
            self.client = TestClient(app)
            self.admin = admin

        def headers(self, user):
            return {"Authorization": f"Bearer {create_access_token(user)}"}

        def request(self, method, url, user=None, **kwargs):
            return self.client.request(method, url, headers=self.headers(user or self.admin), **kwargs)

    return Api()


@pytest.fixture
def seeded(api):
    """Branch, manager, officer and customer created through the API"""
    branch = api.request("POST", "/branches", json={"name": "Kampala Central", "code": "KLA"}).json()["data"]
    manager = api.request("POST", "/users", json={
        "email": "manager@mfi.test", "full_name": "Grace Manager",
        "role": "BRANCH_MANAGER", "branch_id": branch["id"]
    }).json()["data"]
    officer = api.request("POST", "/users", json={
        "email": "officer@mfi.test", "full_name": "Peter Officer",
        "role": "CREDIT_OFFICER", "branch_id": branch["id"]
    }).json()["data"]
    customer = api.request("POST", "/customers", json={
        "first_name": "Amina", "last_name": "Nakato", "branch_id": branch["id"],
        "current_officer_id": officer["id"]
    }).json()["data"]

    return {
        "branch": branch,
        "manager": api.system.user_manager.get_user(manager["id"]),
        "officer": api.system.user_manager.get_user(officer["id"]),
        "customer": customer,
    }


def create_active_loan(api, seeded, **overrides):
    body = {
        "customer_id": seeded["customer"]["id"],
        "principal_amount": "1000",
        "term_count": 10,
        "term_unit": "MONTH",
        "start_date": "2024-01-01",
    }
    body.update(overrides)
    manager = seeded["manager"]
    loan = api.request("POST", "/loans", user=manager, json=body).json()["data"]
    for status in ("PENDING_APPROVAL", "APPROVED"):
        api.request("PATCH", f"/loans/{loan['id']}/status", user=manager, json={"status": status})
    r = api.request("POST", f"/loans/{loan['id']}/disburse", user=manager)
    assert r.status_code == 200
    return r.json()["data"]


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, api):
        r = api.client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, api):
        r = api.client.get("/")
        assert r.status_code == 200
        assert "loans" in r.json()["endpoints"]


class TestAuthentication:
    """Test bearer token handling"""

    def test_missing_token(self, api):
        r = api.client.get("/loans")
        assert r.status_code == 401

    def test_invalid_token(self, api):
        r = api.client.get("/loans", headers={"Authorization": "Bearer not-a-jwt"})
        assert r.status_code == 401

    def test_expired_token(self, api):
        token = create_access_token(api.admin, expires_in=timedelta(seconds=-10))
        r = api.client.get("/loans", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 401
        assert r.json()["detail"] == "Token expired"

    def test_deactivated_user_rejected(self, api, seeded):
        api.request("DELETE", f"/users/{seeded['officer'].id}")
        r = api.request("GET", "/loans", user=seeded["officer"])
        assert r.status_code == 401

    def test_me(self, api):
        r = api.request("GET", "/auth/me")
        assert r.status_code == 200
        assert r.json()["data"]["email"] == "admin@mfi.test"

    def test_role_guard(self, api, seeded):
        r = api.request("POST", "/loan-types", user=seeded["manager"],
                        json={"name": "Agri", "min_amount": "100", "max_amount": "1000"})
        assert r.status_code == 403

    def test_auth_disabled_uses_system_actor(self, api, monkeypatch):
        monkeypatch.setattr(get_config(), "auth_enabled", False)
        r = api.client.get("/auth/me")
        assert r.status_code == 200
        assert r.json()["data"]["role"] == "ADMIN"


class TestLoanFlow:
    """End-to-end loan lifecycle"""

    def test_create_loan(self, api, seeded):
        r = api.request("POST", "/loans", user=seeded["manager"], json={
            "customer_id": seeded["customer"]["id"],
            "principal_amount": "1000",
            "term_count": 10,
            "term_unit": "MONTH",
            "start_date": "2024-01-01",
        })
        assert r.status_code == 201
        body = r.json()
        assert body["success"] is True
        assert body["data"]["status"] == "DRAFT"
        assert body["data"]["loan_number"] == "LN00000001"
        assert body["data"]["principal_amount"] == "1000"

    def test_request_validation_is_400(self, api, seeded):
        r = api.request("POST", "/loans", user=seeded["manager"], json={
            "customer_id": seeded["customer"]["id"],
            "principal_amount": "-5",
            "term_count": 10,
            "term_unit": "MONTH",
            "start_date": "2024-01-01",
        })
        assert r.status_code == 400
        assert r.json()["success"] is False
        assert r.json()["error"] == "validation_failed"

    def test_invalid_transition_is_409(self, api, seeded):
        loan = api.request("POST", "/loans", user=seeded["manager"], json={
            "customer_id": seeded["customer"]["id"],
            "principal_amount": "1000",
            "term_count": 10,
            "term_unit": "MONTH",
            "start_date": "2024-01-01",
        }).json()["data"]

        r = api.request("PATCH", f"/loans/{loan['id']}/status", user=seeded["manager"], json={"status": "ACTIVE"})
        assert r.status_code == 409
        assert r.json() == {
            "success": False,
            "error": "invalid_state_transition",
            "message": "Cannot transition from DRAFT to ACTIVE",
        }

    def test_not_found_is_404(self, api):
        r = api.request("GET", "/loans/missing")
        assert r.status_code == 404

    def test_officer_cannot_change_status(self, api, seeded):
        loan = api.request("POST", "/loans", user=seeded["officer"], json={
            "customer_id": seeded["customer"]["id"],
            "principal_amount": "1000",
            "term_count": 10,
            "term_unit": "MONTH",
            "start_date": "2024-01-01",
        }).json()["data"]

        r = api.request("PATCH", f"/loans/{loan['id']}/status", user=seeded["officer"],
                        json={"status": "PENDING_APPROVAL"})
        assert r.status_code == 403

    def test_disburse_schedule_and_summary(self, api, seeded):
        loan = create_active_loan(api, seeded)
        assert loan["status"] == "ACTIVE"
        assert loan["disbursed_at"] is not None

        schedule = api.request("GET", f"/loans/{loan['id']}/schedule", user=seeded["officer"]).json()["data"]
        assert len(schedule) == 10
        assert schedule[0]["due_date"] == "2024-02-01"

        summary = api.request("GET", f"/loans/{loan['id']}/summary").json()["data"]
        assert summary["total_expected"] == "1000.00"
        assert summary["completion_percentage"] == "0.00"

    def test_list_loans_paginated(self, api, seeded):
        create_active_loan(api, seeded)
        body = api.request("GET", "/loans", params={"status": "ACTIVE", "limit": 5}).json()
        assert body["pagination"] == {"page": 1, "limit": 5, "total": 1, "total_pages": 1}
        assert len(body["data"]) == 1


class TestRepaymentFlow:
    """End-to-end repayment recording and reversal"""

    def test_partial_payment(self, api, seeded):
        loan = create_active_loan(api, seeded)

        r = api.request("POST", "/repayments", user=seeded["officer"], json={
            "loan_id": loan["id"], "amount": "250.00", "method": "CASH"
        })
        assert r.status_code == 201
        allocations = r.json()["data"]["allocations"]
        assert [a["amount"] for a in allocations] == ["100.00", "100.00", "50.00"]

        schedule = api.request("GET", f"/loans/{loan['id']}/schedule").json()["data"]
        assert [item["status"] for item in schedule[:3]] == ["PAID", "PAID", "PARTIAL"]
        assert schedule[2]["paid_amount"] == "50.00"

    def test_full_payment_completes(self, api, seeded):
        loan = create_active_loan(api, seeded)
        api.request("POST", "/repayments", json={"loan_id": loan["id"], "amount": "1000", "method": "BANK_TRANSFER"})

        r = api.request("GET", f"/loans/{loan['id']}")
        assert r.json()["data"]["status"] == "COMPLETED"

    def test_delete_after_window_is_403(self, api, seeded, clock):
        loan = create_active_loan(api, seeded)
        repayment = api.request("POST", "/repayments", json={
            "loan_id": loan["id"], "amount": "100", "method": "CASH"
        }).json()["data"]

        clock.advance(hours=25)
        r = api.request("DELETE", f"/repayments/{repayment['id']}")
        assert r.status_code == 403
        assert r.json()["error"] == "time_window_expired"

    def test_delete_reverses(self, api, seeded):
        loan = create_active_loan(api, seeded)
        repayment = api.request("POST", "/repayments", json={
            "loan_id": loan["id"], "amount": "1000", "method": "CASH"
        }).json()["data"]

        r = api.request("DELETE", f"/repayments/{repayment['id']}", user=seeded["manager"])
        assert r.status_code == 200

        assert api.request("GET", f"/loans/{loan['id']}").json()["data"]["status"] == "ACTIVE"
        assert api.request("GET", "/repayments", params={"loan_id": loan["id"]}).json()["pagination"]["total"] == 0


class TestAdministration:
    """Loan types, branches and audit log endpoints"""

    def test_loan_type_range_enforced(self, api, seeded):
        loan_type = api.request("POST", "/loan-types", json={
            "name": "Group Loan", "min_amount": "500", "max_amount": "5000"
        }).json()["data"]

        r = api.request("POST", "/loans", user=seeded["manager"], json={
            "customer_id": seeded["customer"]["id"],
            "loan_type_id": loan_type["id"],
            "principal_amount": "400",
            "term_count": 4,
            "term_unit": "WEEK",
            "start_date": "2024-01-01",
        })
        assert r.status_code == 400
        assert r.json()["message"] == "Principal amount must be between 500 and 5000"

    def test_loan_type_schema_validation(self, api):
        r = api.request("POST", "/loan-types", json={"name": "Ag", "min_amount": "500", "max_amount": "5000"})
        assert r.status_code == 400
        r = api.request("POST", "/loan-types", json={"name": "Agri", "min_amount": "500", "max_amount": "100"})
        assert r.status_code == 400

    def test_duplicate_branch_code_is_409(self, api, seeded):
        r = api.request("POST", "/branches", json={"name": "Other", "code": "KLA"})
        assert r.status_code == 409

    def test_branch_stats(self, api, seeded):
        create_active_loan(api, seeded)
        r = api.request("GET", f"/branches/{seeded['branch']['id']}/stats", user=seeded["manager"])
        assert r.status_code == 200
        assert r.json()["data"]["active_loans"] == 1

    def test_audit_log(self, api, seeded):
        loan = create_active_loan(api, seeded)

        body = api.request("GET", "/audit-logs", params={"entity_id": loan["id"]}).json()
        assert body["data"][0]["event_type"] == "loan_disbursed"
        assert body["pagination"]["total"] == 4

        verify = api.request("GET", "/audit-logs/verify").json()["data"]
        assert verify["valid"] is True

    def test_audit_log_admin_only(self, api, seeded):
        r = api.request("GET", "/audit-logs", user=seeded["officer"])
        assert r.status_code == 403
