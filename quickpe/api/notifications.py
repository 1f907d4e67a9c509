"""
Notification endpoints
"""

from fastapi import APIRouter, Depends

from .auth import WalletSystem, get_current_user, get_wallet_system
from ..notifications import Notification
from ..users import User


router = APIRouter()


def _notification_response(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "type": notification.notification_type.value,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data,
        "read": notification.read,
        "read_at": notification.read_at.isoformat() if notification.read_at else None,
        "created_at": notification.created_at.isoformat(),
    }


@router.get("")
async def list_notifications(
    unread_only: bool = False,
    limit: int = 50,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    notifications = system.notification_service.get_notifications(
        user.id, unread_only=unread_only, limit=limit
    )
    return {
        "success": True,
        "notifications": [_notification_response(n) for n in notifications],
        "unread_count": system.notification_service.get_unread_count(user.id),
    }


@router.get("/unread-count")
async def unread_count(
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    return {"success": True, "count": system.notification_service.get_unread_count(user.id)}


@router.put("/mark-all-read")
async def mark_all_read(
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    updated = system.notification_service.mark_all_as_read(user.id)
    return {"success": True, "updated": updated}


@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    notification = system.notification_service.mark_as_read(notification_id, user.id)
    return {"success": True, "notification": _notification_response(notification)}


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    system.notification_service.delete_notification(notification_id, user.id)
    return {"success": True, "message": "Notification deleted"}
