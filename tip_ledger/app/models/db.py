from __future__ import annotations
from datetime import datetime, UTC
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TransactionType(str, Enum):
    TIP = "tip"
    WITHDRAWAL = "withdrawal"
    REFUND = "refund"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Creator(SQLModel, table=True):
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    display_name: str
    tiktok_username: str = Field(unique=True, index=True)
    # Minor units (pesewas).
    total_earnings: int = Field(default=0, ge=0)
    available_balance: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class TipTransaction(SQLModel, table=True):
    __tablename__ = "tip_transaction"
    __table_args__ = (
        UniqueConstraint("creator_id", "idempotency_key", name="uq_transaction_creator_idempotency"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    creator_id: UUID = Field(foreign_key="creator.id", index=True)
    # Signed minor units: positive for tips, negative for withdrawals.
    amount: int
    transaction_type: TransactionType
    status: TransactionStatus = Field(index=True)
    payment_reference: Optional[str] = Field(default=None, unique=True, index=True)
    idempotency_key: Optional[str] = None
    authorization_url: Optional[str] = None
    # Set when a provider initialize call is claimed; cleared if that call fails.
    checkout_started_at: Optional[datetime] = None
    supporter_name: Optional[str] = None
    supporter_email: Optional[str] = None
    message: Optional[str] = None
    platform_fee: int = 0
    processor_fee: int = 0
    creator_amount: int = 0
    platform_net: int = 0
    created_at: datetime = Field(default_factory=_utcnow, index=True)
    completed_at: Optional[datetime] = None
