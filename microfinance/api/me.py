"""
Current user endpoint
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .auth import get_current_actor, get_current_user
from .schemas import success_response
from ..rbac import Actor, StaffUser


router = APIRouter()


@router.get("/me")
async def get_me(
    user: Optional[StaffUser] = Depends(get_current_user),
    actor: Actor = Depends(get_current_actor)
):
    """The authenticated staff user, or the system actor when auth is off"""
    if user is None:
        return success_response({"id": actor.user_id, "role": actor.role.value, "branch_id": actor.branch_id})
    return success_response(user)
