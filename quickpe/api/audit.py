"""
Audit log endpoints
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends

from .auth import WalletSystem, get_current_user, get_wallet_system, require_admin
from ..audit import AuditEvent, AuditEventType
from ..errors import ValidationError
from ..transactions import ensure_utc
from ..users import User


router = APIRouter()


def _event_response(event: AuditEvent) -> dict:
    return {
        "id": event.id,
        "action": event.event_type.value,
        "entity_type": event.entity_type,
        "entity_id": event.entity_id,
        "details": event.metadata,
        "ip_address": event.ip_address,
        "user_agent": event.user_agent,
        "timestamp": event.created_at.isoformat(),
    }


@router.get("")
async def my_audit_log(
    action: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 20,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    """The caller's own audit trail, newest first"""
    event_types = None
    if action:
        try:
            event_types = [AuditEventType(action)]
        except ValueError:
            raise ValidationError(f"Unknown action: {action}", code="INVALID_FILTER")

    result = system.audit_trail.get_events_for_user(
        user.id,
        event_types=event_types,
        start_time=ensure_utc(start_date),
        end_time=ensure_utc(end_date),
        page=page,
        limit=min(limit, 100)
    )
    return {
        "success": True,
        "logs": [_event_response(e) for e in result["events"]],
        "pagination": result["pagination"],
    }


@router.get("/integrity")
async def verify_integrity(
    admin: User = Depends(require_admin),
    system: WalletSystem = Depends(get_wallet_system)
):
    return {"success": True, **system.audit_trail.verify_integrity()}
