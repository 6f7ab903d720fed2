from .ledger import LedgerService
from .payments import CompletionSignal, PaymentService
from .paystack import PaymentProvider, PaystackClient
from .reconciliation import ReconciliationService
from .repository import TipLedgerRepository

__all__ = [
    "CompletionSignal",
    "LedgerService",
    "PaymentProvider",
    "PaymentService",
    "PaystackClient",
    "ReconciliationService",
    "TipLedgerRepository",
]
