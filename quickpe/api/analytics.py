"""
Analytics endpoints
"""

from fastapi import APIRouter, Depends

from .auth import WalletSystem, get_current_user, get_wallet_system
from ..users import User


router = APIRouter()


@router.get("/summary")
async def get_summary(
    period: str = "month",
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    return {"success": True, "summary": system.analytics_service.get_summary(user.id, period)}
