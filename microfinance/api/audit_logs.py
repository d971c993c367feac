"""
Audit log endpoints
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from .auth import LendingSystem, get_lending_system, require_admin
from .schemas import success_response
from ..audit import AuditEventType
from ..errors import NotFoundError
from ..loans import as_utc
from ..pagination import paginate
from ..rbac import Actor


router = APIRouter()


@router.get("")
async def list_audit_events(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    event_type: Optional[AuditEventType] = None,
    user_id: Optional[str] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    actor: Actor = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    """Audit events, newest first"""
    events = system.audit_trail.get_events(
        entity_type=entity_type, entity_id=entity_id, event_type=event_type,
        user_id=user_id, start_time=as_utc(start_time), end_time=as_utc(end_time)
    )
    events.reverse()
    return success_response(page=paginate(events, page, limit))


@router.get("/verify")
async def verify_audit_chain(
    actor: Actor = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    """Recompute every hash and check the chain links"""
    return success_response(system.audit_trail.verify_integrity())


@router.get("/{event_id}")
async def get_audit_event(
    event_id: str,
    actor: Actor = Depends(require_admin),
    system: LendingSystem = Depends(get_lending_system)
):
    event = system.audit_trail.get_event_by_id(event_id)
    if event is None:
        raise NotFoundError("Audit event not found")
    return success_response(event)
