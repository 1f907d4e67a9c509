"""
Pydantic schemas for API requests
"""

from typing import Optional, Union
from pydantic import BaseModel, Field


# Amounts may arrive as JSON numbers or strings; services convert to Decimal
Amount = Union[str, int, float]


# User schemas
class SignupRequest(BaseModel):
    first_name: str = Field(..., alias="firstName")
    last_name: str = Field(..., alias="lastName")
    email: str
    password: str
    phone: Optional[str] = None

    class Config:
        populate_by_name = True


class SigninRequest(BaseModel):
    email: str
    password: str


class UpdateProfileRequest(BaseModel):
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    phone: Optional[str] = None

    class Config:
        populate_by_name = True


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., alias="currentPassword")
    new_password: str = Field(..., alias="newPassword")

    class Config:
        populate_by_name = True


# Account schemas
class AddMoneyRequest(BaseModel):
    amount: Amount


class TransferRequest(BaseModel):
    amount: Amount
    to: Optional[str] = Field(None, description="Recipient user ID")
    to_quickpe_id: Optional[str] = Field(None, alias="toQuickpeId")
    description: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, alias="idempotencyKey")

    class Config:
        populate_by_name = True


# Money request schemas
class CreateMoneyRequestRequest(BaseModel):
    to_quickpe_id: str = Field(..., alias="toQuickpeId")
    amount: Amount
    description: Optional[str] = None

    class Config:
        populate_by_name = True


class RejectMoneyRequestRequest(BaseModel):
    reason: Optional[str] = None
