"""
Staff user endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from .auth import LendingSystem, get_lending_system, require_admin
from .schemas import CreateUserRequest, UpdateUserRequest, success_response
from ..rbac import Actor, Role


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    request: CreateUserRequest,
    actor: Actor = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    user = system.user_manager.create_user(actor=actor, **request.model_dump())
    return success_response(user, message="User created successfully")


@router.get("")
async def list_users(
    role: Optional[Role] = None,
    branch_id: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    actor: Actor = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    result = system.user_manager.list_users(
        role=role, branch_id=branch_id, is_active=is_active, search=search, page=page, limit=limit
    )
    return success_response(page=result)


@router.get("/{user_id}")
async def get_user(
    user_id: str,
    actor: Actor = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    return success_response(system.user_manager.get_user(user_id))


@router.put("/{user_id}")
async def update_user(
    user_id: str,
    request: UpdateUserRequest,
    actor: Actor = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    user = system.user_manager.update_user(actor, user_id, **request.model_dump())
    return success_response(user, message="User updated successfully")


@router.delete("/{user_id}")
async def deactivate_user(
    user_id: str,
    actor: Actor = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    """Users are deactivated, never removed"""
    system.user_manager.deactivate_user(actor, user_id)
    return success_response(message="User deactivated successfully")
