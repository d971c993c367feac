"""
Loan type endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from .auth import LendingSystem, get_current_actor, get_lending_system, require_admin
from .schemas import CreateLoanTypeRequest, UpdateLoanTypeRequest, success_response
from ..rbac import Actor


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan_type(
    request: CreateLoanTypeRequest,
    actor: Actor = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    loan_type = system.loan_type_manager.create_loan_type(actor=actor, **request.model_dump())
    return success_response(loan_type, message="Loan type created successfully")


@router.get("")
async def list_loan_types(
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    result = system.loan_type_manager.list_loan_types(is_active=is_active, search=search, page=page, limit=limit)
    return success_response(page=result)


@router.get("/{loan_type_id}")
async def get_loan_type(
    loan_type_id: str,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    return success_response(system.loan_type_manager.get_loan_type(loan_type_id))


@router.put("/{loan_type_id}")
async def update_loan_type(
    loan_type_id: str,
    request: UpdateLoanTypeRequest,
    actor: Actor = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    loan_type = system.loan_type_manager.update_loan_type(actor, loan_type_id, **request.model_dump())
    return success_response(loan_type, message="Loan type updated successfully")


@router.patch("/{loan_type_id}/toggle-status")
async def toggle_loan_type_status(
    loan_type_id: str,
    actor: Actor = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    loan_type = system.loan_type_manager.toggle_loan_type_status(actor, loan_type_id)
    state = "activated" if loan_type.is_active else "deactivated"
    return success_response(loan_type, message=f"Loan type {state} successfully")


@router.delete("/{loan_type_id}")
async def delete_loan_type(
    loan_type_id: str,
    actor: Actor = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    system.loan_type_manager.delete_loan_type(actor, loan_type_id)
    return success_response(message="Loan type deleted successfully")
