"""
Loan endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from .auth import LendingSystem, get_current_actor, get_lending_system, require_branch_manager
from .schemas import (
    AssignLoanRequest, CreateLoanRequest, DisburseLoanRequest, UpdateLoanRequest,
    UpdateLoanStatusRequest, success_response
)
from ..loan_status import LoanStatus
from ..rbac import Actor


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    """Create a draft loan with its repayment schedule"""
    loan = system.loan_manager.create_loan(actor=actor, **request.model_dump())
    return success_response(loan, message="Loan created successfully")


@router.get("")
async def list_loans(
    status: Optional[LoanStatus] = None,
    branch_id: Optional[str] = None,
    assigned_officer_id: Optional[str] = None,
    customer_id: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    """List loans visible to the caller"""
    result = system.loan_manager.get_loans(
        actor, status=status, branch_id=branch_id, assigned_officer_id=assigned_officer_id,
        customer_id=customer_id, search=search, page=page, limit=limit
    )
    return success_response(page=result)


@router.post("/mark-overdue")
async def mark_overdue(
    as_of: Optional[date] = None,
    actor: Actor = Depends(require_branch_manager),
    system: LendingSystem = Depends(get_lending_system)
):
    """Flag installments whose due date has passed"""
    marked = system.loan_manager.mark_overdue_items(as_of=as_of, actor=actor)
    return success_response({"marked": marked})


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    loan = system.loan_manager.get_loan_by_id(actor, loan_id)
    return success_response(loan)


@router.get("/{loan_id}/schedule")
async def get_loan_schedule(
    loan_id: str,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    """Installments with the repayments allocated to each"""
    return success_response(system.loan_manager.get_loan_schedule(actor, loan_id))


@router.get("/{loan_id}/summary")
async def get_loan_summary(
    loan_id: str,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    return success_response(system.loan_manager.get_loan_summary(actor, loan_id))


@router.get("/{loan_id}/assignments")
async def get_assignment_history(
    loan_id: str,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    return success_response(system.loan_manager.get_assignment_history(actor, loan_id))


@router.put("/{loan_id}")
async def update_loan(
    loan_id: str,
    request: UpdateLoanRequest,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    """Edit a draft loan"""
    loan = system.loan_manager.update_loan(actor, loan_id, **request.model_dump())
    return success_response(loan, message="Loan updated successfully")


@router.patch("/{loan_id}/status")
async def update_loan_status(
    loan_id: str,
    request: UpdateLoanStatusRequest,
    actor: Actor = Depends(require_branch_manager),
    system: LendingSystem = Depends(get_lending_system)
):
    loan = system.loan_manager.update_loan_status(actor, loan_id, request.status, request.notes)
    return success_response(loan, message=f"Loan status updated to {loan.status.value}")


@router.post("/{loan_id}/disburse")
async def disburse_loan(
    loan_id: str,
    request: Optional[DisburseLoanRequest] = None,
    actor: Actor = Depends(require_branch_manager),
    system: LendingSystem = Depends(get_lending_system)
):
    """Activate an approved loan"""
    disbursed_at = request.disbursed_at if request else None
    loan = system.loan_manager.disburse_loan(actor, loan_id, disbursed_at=disbursed_at)
    return success_response(loan, message="Loan disbursed successfully")


@router.patch("/{loan_id}/assign")
async def assign_loan(
    loan_id: str,
    request: AssignLoanRequest,
    actor: Actor = Depends(require_branch_manager),
    system: LendingSystem = Depends(get_lending_system)
):
    loan = system.loan_manager.assign_loan(actor, loan_id, request.assigned_officer_id, request.reason)
    return success_response(loan, message="Loan assigned successfully")


@router.delete("/{loan_id}")
async def delete_loan(
    loan_id: str,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    system.loan_manager.delete_loan(actor, loan_id)
    return success_response(message="Loan deleted successfully")
