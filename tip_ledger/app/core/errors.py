class TipLedgerError(Exception):
    """Base class for errors raised by the ledger and payment services."""


class InvalidAmountError(TipLedgerError):
    """Raised when an amount has the wrong sign for its kind or is below the minimum."""


class CreatorNotFoundError(TipLedgerError):
    """Raised when a creator id is missing from the store."""


class TransactionNotFoundError(TipLedgerError):
    """Raised when a transaction id or payment reference is unknown."""


class InsufficientBalanceError(TipLedgerError):
    """Raised when a withdrawal would drop the available balance below zero."""


class InvalidStateTransitionError(TipLedgerError):
    """Raised when a transaction is not in the status an operation requires."""


class InvalidSignatureError(TipLedgerError):
    """Raised when a webhook body does not match its signature header."""


class PaymentProviderError(TipLedgerError):
    """Raised when the payment provider rejects a call or cannot be reached."""


class CreatorAlreadyExistsError(TipLedgerError):
    """Raised when a TikTok username is already registered to another creator."""
