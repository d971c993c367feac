"""
Customer endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from .auth import LendingSystem, get_current_actor, get_lending_system, require_branch_manager
from .schemas import CreateCustomerRequest, ReassignCustomerRequest, UpdateCustomerRequest, success_response
from ..rbac import Actor


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_customer(
    request: CreateCustomerRequest,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    customer = system.customer_manager.create_customer(actor=actor, **request.model_dump())
    return success_response(customer, message="Customer created successfully")


@router.get("")
async def list_customers(
    branch_id: Optional[str] = None,
    current_officer_id: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    result = system.customer_manager.list_customers(
        actor, branch_id=branch_id, current_officer_id=current_officer_id,
        search=search, page=page, limit=limit
    )
    return success_response(page=result)


@router.get("/{customer_id}")
async def get_customer(
    customer_id: str,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    return success_response(system.customer_manager.get_customer(actor, customer_id))


@router.get("/{customer_id}/reassignments")
async def get_reassignments(
    customer_id: str,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    customer = system.customer_manager.get_customer(actor, customer_id)
    return success_response(system.customer_manager.get_reassignments(customer.id))


@router.put("/{customer_id}")
async def update_customer(
    customer_id: str,
    request: UpdateCustomerRequest,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    customer = system.customer_manager.update_customer(actor, customer_id, **request.model_dump())
    return success_response(customer, message="Customer updated successfully")


@router.post("/{customer_id}/reassign")
async def reassign_customer(
    customer_id: str,
    request: ReassignCustomerRequest,
    actor: Actor = Depends(require_branch_manager),
    system: LendingSystem = Depends(get_lending_system)
):
    """Move a customer to another branch or officer"""
    customer = system.customer_manager.reassign_customer(actor, customer_id, **request.model_dump())
    return success_response(customer, message="Customer reassigned successfully")


@router.delete("/{customer_id}")
async def delete_customer(
    customer_id: str,
    actor: Actor = Depends(require_branch_manager),
    system: LendingSystem = Depends(get_lending_system)
):
    system.customer_manager.delete_customer(actor, customer_id)
    return success_response(message="Customer deleted successfully")
