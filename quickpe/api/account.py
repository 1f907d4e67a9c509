"""
Wallet account endpoints: balance, deposits, transfers and history
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from .auth import WalletSystem, get_current_user, get_wallet_system
from .schemas import AddMoneyRequest, TransferRequest
from ..users import User


router = APIRouter()


@router.get("/balance")
async def get_balance(user: User = Depends(get_current_user)):
    return {
        "success": True,
        "balance": str(user.balance.amount),
        "currency": user.balance.currency.code,
        "formatted": user.balance.to_string(),
        "quickpe_id": user.quickpe_id,
    }


@router.post("/add-money")
async def add_money(
    request: AddMoneyRequest,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    credit = system.transfer_service.add_money(user.id, request.amount)
    return {
        "success": True,
        "message": "Money added successfully",
        "new_balance": str(credit.balance_after.amount),
        "transaction": credit.to_response(),
        "attempts_today": system.transfer_service.get_add_money_attempts(user.id),
    }


@router.post("/transfer")
async def transfer(
    request: TransferRequest,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    """Send money to another user by user ID or QuickPe ID"""
    result = system.transfer_service.transfer(
        sender_id=user.id,
        amount=request.amount,
        recipient_id=request.to,
        recipient_quickpe_id=request.to_quickpe_id,
        description=request.description,
        idempotency_key=request.idempotency_key
    )
    return {"success": True, "message": "Transfer successful", **result.to_response()}


@router.get("/transactions")
async def list_transactions(
    type: Optional[str] = None,
    date_filter: Optional[str] = None,
    search: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 10,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    result = system.transfer_service.get_transactions(
        user.id,
        transaction_type=type,
        date_filter=date_filter,
        search=search,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit
    )
    return {
        "success": True,
        "transactions": [t.to_response() for t in result["transactions"]],
        "pagination": result["pagination"],
    }


@router.get("/transactions/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    transaction = system.transfer_service.get_transaction(transaction_id, user.id)
    return {"success": True, "transaction": transaction.to_response()}


@router.get("/stats")
async def get_stats(
    time_range: str = "month",
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    stats = system.transfer_service.get_transaction_stats(user.id, time_range)
    return {"success": True, "stats": stats}


@router.get("/statement")
async def download_statement(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    """CSV statement of the user's transactions"""
    content = system.statement_service.export_csv(user.id, start_date, end_date)
    filename = f"quickpe-statement-{user.quickpe_id or user.id}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )
