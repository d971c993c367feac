"""
Branch endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from .auth import LendingSystem, get_current_actor, get_lending_system, require_admin, require_branch_manager
from .schemas import CreateBranchRequest, UpdateBranchRequest, success_response
from ..errors import PermissionDeniedError
from ..rbac import Actor


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_branch(
    request: CreateBranchRequest,
    actor: Actor = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    branch = system.branch_manager.create_branch(actor, request.name, request.code, request.manager_id)
    return success_response(branch, message="Branch created successfully")


@router.get("")
async def list_branches(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    return success_response(page=system.branch_manager.list_branches(search=search, page=page, limit=limit))


@router.get("/{branch_id}")
async def get_branch(
    branch_id: str,
    actor: Actor = Depends(get_current_actor),
    system: LendingSystem = Depends(get_lending_system)
):
    return success_response(system.branch_manager.get_branch(branch_id))


@router.get("/{branch_id}/stats")
async def get_branch_stats(
    branch_id: str,
    actor: Actor = Depends(require_branch_manager),
    system: LendingSystem = Depends(get_lending_system)
):
    """Portfolio totals for one branch; managers only see their own"""
    if actor.is_branch_manager and actor.branch_id != branch_id:
        raise PermissionDeniedError("You do not have permission to view this branch")
    return success_response(system.branch_manager.get_branch_stats(branch_id))


@router.put("/{branch_id}")
async def update_branch(
    branch_id: str,
    request: UpdateBranchRequest,
    actor: Actor = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    branch = system.branch_manager.update_branch(actor, branch_id, **request.model_dump())
    return success_response(branch, message="Branch updated successfully")


@router.delete("/{branch_id}")
async def delete_branch(
    branch_id: str,
    actor: Actor = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    system.branch_manager.delete_branch(actor, branch_id)
    return success_response(message="Branch deleted successfully")
