from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .db import TransactionStatus, TransactionType


class CreatorCreate(BaseModel):
    display_name: str = Field(..., min_length=1)
    tiktok_username: str = Field(..., min_length=1, max_length=64)


class CreatorResponse(BaseModel):
    id: UUID
    display_name: str
    tiktok_username: str
    total_earnings: Decimal = Field(..., description="Net tip income in major units")
    available_balance: Decimal = Field(..., ge=0, description="Spendable balance in major units")
    created_at: datetime
    updated_at: datetime


class TransactionCreate(BaseModel):
    """Synchronous ledger mutation: a completed tip or a withdrawal request."""

    creator_id: UUID
    amount: Decimal = Field(..., description="Positive for tips, negative for withdrawals")
    transaction_type: TransactionType
    supporter_name: Optional[str] = Field(default=None, max_length=120)
    message: Optional[str] = Field(default=None, max_length=500)

    @field_validator("transaction_type")
    @classmethod
    def _tips_and_withdrawals_only(cls, value: TransactionType) -> TransactionType:
        if value == TransactionType.REFUND:
            raise ValueError("Refunds cannot be recorded directly")
        return value


class TransactionResponse(BaseModel):
    id: UUID
    creator_id: UUID
    amount: Decimal
    transaction_type: TransactionType
    status: TransactionStatus
    payment_reference: Optional[str] = None
    idempotency_key: Optional[str] = None
    authorization_url: Optional[str] = None
    supporter_name: Optional[str] = None
    message: Optional[str] = None
    platform_fee: Decimal
    processor_fee: Decimal
    creator_amount: Decimal
    platform_net: Decimal
    created_at: datetime
    completed_at: Optional[datetime] = None


class InitiateTipRequest(BaseModel):
    creator_id: UUID
    amount: Decimal = Field(..., gt=0, description="Tip amount in major units")
    idempotency_key: Optional[str] = Field(
        default=None,
        min_length=8,
        max_length=128,
        description="Stable client-generated token reused across retries",
    )
    supporter_name: Optional[str] = Field(default=None, max_length=120)
    supporter_email: Optional[str] = None
    message: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "creator_id": "550e8400-e29b-41d4-a716-446655440000",
            "amount": "25.00",
            "idempotency_key": "tip-7f3c9a1e",
            "supporter_name": "Ama",
        }
    })


class InitiateTipResponse(BaseModel):
    authorization_url: Optional[str] = None
    reference: str
    reused: bool = False
    status: TransactionStatus


class PaymentStatusResponse(BaseModel):
    reference: str
    status: TransactionStatus
    amount: Decimal


class CreatorDrift(BaseModel):
    creator_id: UUID
    total_earnings: Decimal
    expected_total_earnings: Decimal
    available_balance: Decimal
    expected_available_balance: Decimal


class ReconciliationReport(BaseModel):
    completed_tips: int
    creators_checked: int
    drifted: list[CreatorDrift]
    committed: bool = False
