"""
User endpoints: registration, sign-in, profile and directory search
"""

from fastapi import APIRouter, Depends, Request, status

from .auth import WalletSystem, client_info, create_access_token, get_current_user, get_wallet_system
from .schemas import ChangePasswordRequest, SigninRequest, SignupRequest, UpdateProfileRequest
from ..users import User


router = APIRouter()


def _user_response(user: User) -> dict:
    return {
        "id": user.id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "full_name": user.full_name,
        "email": user.email,
        "username": user.username,
        "phone": user.phone,
        "quickpe_id": user.quickpe_id,
        "role": user.role.value,
        "balance": str(user.balance.amount),
        "is_active": user.is_active,
        "last_login": user.last_login.isoformat() if user.last_login else None,
        "created_at": user.created_at.isoformat(),
    }


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(
    request: SignupRequest,
    system: WalletSystem = Depends(get_wallet_system)
):
    """Register a new user and return an access token"""
    user = system.user_manager.create_user(
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        password=request.password,
        phone=request.phone
    )
    return {
        "success": True,
        "message": "User created successfully",
        "token": create_access_token(user.id, system.config),
        "user": _user_response(user),
    }


@router.post("/signin")
async def signin(
    request: SigninRequest,
    http_request: Request,
    system: WalletSystem = Depends(get_wallet_system)
):
    user = system.user_manager.authenticate(
        request.email, request.password, **client_info(http_request)
    )
    return {
        "success": True,
        "token": create_access_token(user.id, system.config),
        "user": _user_response(user),
    }


@router.get("/profile")
async def get_profile(user: User = Depends(get_current_user)):
    return {"success": True, "user": _user_response(user)}


@router.put("/profile")
async def update_profile(
    request: UpdateProfileRequest,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    updated = system.user_manager.update_profile(
        user.id,
        first_name=request.first_name,
        last_name=request.last_name,
        phone=request.phone
    )
    return {"success": True, "message": "Profile updated", "user": _user_response(updated)}


@router.post("/change-password")
async def change_password(
    request: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    system.user_manager.change_password(user.id, request.current_password, request.new_password)
    return {"success": True, "message": "Password changed successfully"}


@router.get("/bulk")
async def search_users(
    filter: str = "",
    limit: int = 20,
    user: User = Depends(get_current_user),
    system: WalletSystem = Depends(get_wallet_system)
):
    """Find other users to pay by name, email or QuickPe ID"""
    users = system.user_manager.search_users(filter, exclude_user_id=user.id, limit=limit)
    return {"success": True, "users": [u.public_profile() for u in users]}
