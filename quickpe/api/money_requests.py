"""
Money request endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request, status

from .auth import WalletSystem, client_info, get_current_user, get_wallet_system
from .schemas import CreateMoneyRequestRequest, RejectMoneyRequestRequest
from ..errors import NotFoundError
from ..users import User


router = APIRouter()


@router.post("/create", status_code=status.HTTP_201_CREATED)
async def create_money_request(
    request: CreateMoneyRequestRequest,
    http_request: Request,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    money_request = system.money_request_manager.create_request(
        requester_id=user.id,
        to_quickpe_id=request.to_quickpe_id,
        amount=request.amount,
        description=request.description,
        **client_info(http_request)
    )
    return {
        "success": True,
        "message": "Money request sent successfully",
        "request": money_request.to_response(),
    }


@router.get("/received")
async def list_received(
    status: str = "pending",
    page: int = 1,
    limit: int = 20,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    result = system.money_request_manager.list_received(user.id, status, page, limit)
    return {
        "success": True,
        "requests": [r.to_response() for r in result["requests"]],
        "pagination": result["pagination"],
    }


@router.get("/sent")
async def list_sent(
    status: str = "all",
    page: int = 1,
    limit: int = 20,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    result = system.money_request_manager.list_sent(user.id, status, page, limit)
    return {
        "success": True,
        "requests": [r.to_response() for r in result["requests"]],
        "pagination": result["pagination"],
    }


@router.get("/daily-limit/{quickpe_id}")
async def check_daily_limit(
    quickpe_id: str,
    amount: str = "0.01",
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    """How much more the caller may request from one user today"""
    requestee = system.user_manager.get_user_by_quickpe_id(quickpe_id)
    if not requestee:
        raise NotFoundError("User not found with this QuickPe ID", code="REQUESTEE_NOT_FOUND")
    limit = system.money_request_manager.check_daily_limit(user.id, requestee.id, amount)
    return {"success": True, **limit}


@router.get("/{request_id}")
async def get_money_request(
    request_id: str,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    money_request = system.money_request_manager.get_request(request_id, user.id)
    return {"success": True, "request": money_request.to_response()}


@router.post("/{request_id}/approve")
async def approve_money_request(
    request_id: str,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    result = system.money_request_manager.approve_request(request_id, user.id)
    transfer = result["transfer"]
    return {
        "success": True,
        "message": "Money request approved and payment sent",
        "request": result["request"].to_response(),
        "transaction_id": transfer.debit.transaction_id,
        "new_balance": str(transfer.sender_balance.amount),
    }


@router.post("/{request_id}/reject")
async def reject_money_request(
    request_id: str,
    request: Optional[RejectMoneyRequestRequest] = None,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    money_request = system.money_request_manager.reject_request(request_id, user.id, request.reason if request else None)
    return {
        "success": True,
        "message": "Money request rejected",
        "request": money_request.to_response(),
    }


@router.post("/{request_id}/cancel")
async def cancel_money_request(
    request_id: str,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    money_request = system.money_request_manager.cancel_request(request_id, user.id)
    return {
        "success": True,
        "message": "Money request cancelled",
        "request": money_request.to_response(),
    }
