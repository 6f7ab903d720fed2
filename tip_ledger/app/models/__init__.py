from .db import Creator as CreatorModel
from .db import TipTransaction as TransactionModel
from .db import TransactionStatus, TransactionType
from .schemas import (
    CreatorCreate,
    CreatorDrift,
    CreatorResponse,
    InitiateTipRequest,
    InitiateTipResponse,
    PaymentStatusResponse,
    ReconciliationReport,
    TransactionCreate,
    TransactionResponse,
)

__all__ = [
    "CreatorCreate",
    "CreatorDrift",
    "CreatorResponse",
    "InitiateTipRequest",
    "InitiateTipResponse",
    "PaymentStatusResponse",
    "ReconciliationReport",
    "TransactionCreate",
    "TransactionResponse",
    "TransactionStatus",
    "TransactionType",
    "CreatorModel",
    "TransactionModel",
]
