"""
Repayment endpoints
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from .auth import LendingSystem, get_current_actor, get_lending_system
from .schemas import CreateRepaymentRequest, UpdateRepaymentRequest, success_response
from ..rbac import Actor
from ..repayments import RepaymentMethod


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_repayment(
    request: CreateRepaymentRequest,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    """Record a repayment and allocate it to the loan schedule"""
    repayment = system.repayment_manager.create_repayment(actor=actor, **request.model_dump())
    allocations = system.repayment_manager.get_allocations(actor, repayment.id)
    data = repayment.to_dict()
    data["allocations"] = [allocation.to_dict() for allocation in allocations]
    return success_response(data, message="Repayment recorded successfully")


@router.get("")
async def list_repayments(
    loan_id: Optional[str] = None,
    received_by_user_id: Optional[str] = None,
    method: Optional[RepaymentMethod] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    result = system.repayment_manager.get_repayments(
        actor, loan_id=loan_id, received_by_user_id=received_by_user_id, method=method,
        date_from=date_from, date_to=date_to, page=page, limit=limit
    )
    return success_response(page=result)


@router.get("/{repayment_id}")
async def get_repayment(
    repayment_id: str,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    repayment = system.repayment_manager.get_repayment_by_id(actor, repayment_id)
    data = repayment.to_dict()
    data["allocations"] = [a.to_dict() for a in system.repayment_manager.get_allocations(actor, repayment_id)]
    return success_response(data)


@router.put("/{repayment_id}")
async def update_repayment(
    repayment_id: str,
    request: UpdateRepaymentRequest,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    """Edit method, reference or notes inside the edit window"""
    repayment = system.repayment_manager.update_repayment(actor, repayment_id, **request.model_dump())
    return success_response(repayment, message="Repayment updated successfully")


@router.delete("/{repayment_id}")
async def delete_repayment(
    repayment_id: str,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    """Reverse a repayment's allocations and remove it"""
    system.repayment_manager.delete_repayment(actor, repayment_id)
    return success_response(message="Repayment deleted successfully")
