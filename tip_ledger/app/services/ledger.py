from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..core.config import Settings, get_settings
from ..core.errors import (
    CreatorAlreadyExistsError,
    CreatorNotFoundError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidStateTransitionError,
    TransactionNotFoundError,
)
from ..core.events import EventNotifier, NullEventNotifier, publish_safely
from ..core.money import FeeBreakdown, compute_fees, quantize, to_major, to_minor
from ..models import (
    CreatorCreate,
    CreatorModel,
    CreatorResponse,
    TransactionCreate,
    TransactionModel,
    TransactionResponse,
    TransactionStatus,
    TransactionType,
)
from .repository import TipLedgerRepository


logger = logging.getLogger(__name__)


def creator_to_response(creator: CreatorModel) -> CreatorResponse:
    return CreatorResponse(
        id=creator.id,
        display_name=creator.display_name,
        tiktok_username=creator.tiktok_username,
        total_earnings=to_major(creator.total_earnings),
        available_balance=to_major(creator.available_balance),
        created_at=creator.created_at,
        updated_at=creator.updated_at,
    )


def transaction_to_response(tx: TransactionModel) -> TransactionResponse:
    return TransactionResponse(
        id=tx.id,
        creator_id=tx.creator_id,
        amount=to_major(tx.amount),
        transaction_type=tx.transaction_type,
        status=tx.status,
        payment_reference=tx.payment_reference,
        idempotency_key=tx.idempotency_key,
        authorization_url=tx.authorization_url,
        supporter_name=tx.supporter_name,
        message=tx.message,
        platform_fee=to_major(tx.platform_fee),
        processor_fee=to_major(tx.processor_fee),
        creator_amount=to_major(tx.creator_amount),
        platform_net=to_major(tx.platform_net),
        created_at=tx.created_at,
        completed_at=tx.completed_at,
    )


class LedgerService:
    """Applies tips and withdrawals to creator balances.

    Every mutation runs in one database transaction that locks the creator row
    before reading its balance, so concurrent requests for the same creator are
    applied one after the other. Any failure rolls the whole unit back.
    """

    def __init__(
        self,
        session: Session,
        repository: Optional[TipLedgerRepository] = None,
        *,
        settings: Optional[Settings] = None,
        notifier: Optional[EventNotifier] = None,
    ) -> None:
        self.session = session
        self.repository = repository or TipLedgerRepository(session)
        self.settings = settings or get_settings()
        self.notifier = notifier or NullEventNotifier()

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def validate_amount(self, amount: Decimal, kind: TransactionType) -> None:
        if kind == TransactionType.TIP:
            if not amount > 0:
                raise InvalidAmountError("Tip amount must be greater than 0")
            if amount < self.settings.min_tip_amount:
                raise InvalidAmountError(
                    f"Minimum tip is {quantize(self.settings.min_tip_amount)} {self.settings.currency}"
                )
        elif kind == TransactionType.WITHDRAWAL:
            if not amount < 0:
                raise InvalidAmountError("Withdrawal amount must be negative")
            if abs(amount) < self.settings.min_withdrawal_amount:
                raise InvalidAmountError(
                    f"Minimum withdrawal is {quantize(self.settings.min_withdrawal_amount)} {self.settings.currency}"
                )
        else:
            raise InvalidAmountError(f"Cannot apply a {kind.value} transaction")

    def fees_for(self, kind: TransactionType, amount: int) -> FeeBreakdown:
        if kind != TransactionType.TIP:
            return FeeBreakdown(platform_fee=0, processor_fee=0, creator_amount=amount, platform_net=0)
        return compute_fees(
            amount,
            self.settings.platform_fee_rate,
            self.settings.processor_fee_rate,
        )

    def lock_creator(self, creator_id: UUID) -> CreatorModel:
        creator = self.repository.lock_creator(creator_id)
        if creator is None:
            raise CreatorNotFoundError(f"Creator {creator_id} not found")
        return creator

    def credit_tip(self, creator: CreatorModel, creator_amount: int) -> None:
        self.repository.apply_balance_delta(
            creator,
            earnings_delta=creator_amount,
            available_delta=creator_amount,
        )

    def _lock_pending_withdrawal(self, withdrawal_id: UUID) -> TransactionModel:
        tx = self.repository.lock_transaction(withdrawal_id)
        if tx is None or tx.transaction_type != TransactionType.WITHDRAWAL:
            raise TransactionNotFoundError(f"Withdrawal {withdrawal_id} not found")
        if tx.status != TransactionStatus.PENDING:
            raise InvalidStateTransitionError(
                f"Withdrawal {withdrawal_id} is {tx.status.value}, not pending"
            )
        return tx

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def create_creator(self, payload: CreatorCreate) -> CreatorResponse:
        try:
            creator = self.repository.add_creator(payload.display_name, payload.tiktok_username)
            response = creator_to_response(creator)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise CreatorAlreadyExistsError(
                f"TikTok username {payload.tiktok_username} is already registered"
            ) from exc
        logger.info(
            "creator.created",
            extra={"creator_id": str(response.id), "tiktok_username": response.tiktok_username},
        )
        return response

    def get_creator(self, creator_id: UUID) -> CreatorResponse:
        creator = self.repository.get_creator(creator_id)
        if creator is None:
            raise CreatorNotFoundError(f"Creator {creator_id} not found")
        return creator_to_response(creator)

    def list_transactions(
        self,
        creator_id: UUID,
        limit: Optional[int] = 50,
        include_pending: bool = False,
    ) -> list[TransactionResponse]:
        self.get_creator(creator_id)
        rows = self.repository.list_transactions(
            creator_id, limit=limit, include_pending=include_pending
        )
        return [transaction_to_response(tx) for tx in rows]

    def apply(
        self,
        creator_id: UUID,
        amount: Decimal,
        kind: TransactionType,
        *,
        status: Optional[TransactionStatus] = None,
        payment_reference: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        supporter_name: Optional[str] = None,
        supporter_email: Optional[str] = None,
        message: Optional[str] = None,
    ) -> TransactionResponse:
        """Insert a tip or withdrawal and move the creator's balance in one transaction.

        Tips default to ``completed`` and credit the creator's net share to both
        ``total_earnings`` and ``available_balance``. A tip inserted as ``pending``
        leaves the balance alone until the payment completes. Withdrawals default
        to ``pending`` and debit ``available_balance`` immediately.

        Raises ``InvalidAmountError`` before touching the database,
        ``CreatorNotFoundError`` and ``InsufficientBalanceError`` after the
        creator row is locked (the transaction is rolled back first).
        """
        amount = quantize(Decimal(amount))
        self.validate_amount(amount, kind)
        minor = to_minor(amount)
        if status is None:
            status = TransactionStatus.COMPLETED if kind == TransactionType.TIP else TransactionStatus.PENDING

        try:
            creator = self.lock_creator(creator_id)
            if kind == TransactionType.WITHDRAWAL and -minor > creator.available_balance:
                raise InsufficientBalanceError("Insufficient balance for withdrawal")

            fees = self.fees_for(kind, minor)
            tx = self.repository.add_transaction(
                creator_id=creator_id,
                amount=minor,
                transaction_type=kind,
                status=status,
                payment_reference=payment_reference,
                idempotency_key=idempotency_key,
                supporter_name=supporter_name,
                supporter_email=supporter_email,
                message=message,
                platform_fee=fees.platform_fee,
                processor_fee=fees.processor_fee,
                creator_amount=fees.creator_amount,
                platform_net=fees.platform_net,
                completed_at=datetime.now(UTC) if status == TransactionStatus.COMPLETED else None,
            )

            if kind == TransactionType.TIP and status == TransactionStatus.COMPLETED:
                self.credit_tip(creator, fees.creator_amount)
            elif kind == TransactionType.WITHDRAWAL:
                self.repository.apply_balance_delta(creator, available_delta=minor)

            response = transaction_to_response(tx)
            balance = creator.available_balance
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            f"{kind.value}.applied",
            extra={
                "creator_id": str(creator_id),
                "transaction_id": str(response.id),
                "amount": str(amount),
                "status": status.value,
                "available_balance": balance,
            },
        )
        publish_safely(self.notifier, response)
        return response

    def record_transaction(self, payload: TransactionCreate) -> TransactionResponse:
        return self.apply(
            payload.creator_id,
            payload.amount,
            payload.transaction_type,
            supporter_name=payload.supporter_name,
            message=payload.message,
        )

    def request_withdrawal(self, creator_id: UUID, amount: Decimal) -> TransactionResponse:
        return self.apply(creator_id, -abs(Decimal(amount)), TransactionType.WITHDRAWAL)

    def approve_withdrawal(self, withdrawal_id: UUID) -> TransactionResponse:
        try:
            tx = self._lock_pending_withdrawal(withdrawal_id)
            tx.status = TransactionStatus.COMPLETED
            tx.completed_at = datetime.now(UTC)
            self.session.add(tx)
            self.session.flush()
            response = transaction_to_response(tx)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "withdrawal.approved",
            extra={"transaction_id": str(withdrawal_id), "creator_id": str(response.creator_id)},
        )
        publish_safely(self.notifier, response)
        return response

    def decline_withdrawal(self, withdrawal_id: UUID) -> TransactionResponse:
        try:
            tx = self._lock_pending_withdrawal(withdrawal_id)
            creator = self.lock_creator(tx.creator_id)
            tx.status = TransactionStatus.FAILED
            self.session.add(tx)
            # Give the requested amount back.
            self.repository.apply_balance_delta(creator, available_delta=abs(tx.amount))
            response = transaction_to_response(tx)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "withdrawal.declined",
            extra={
                "transaction_id": str(withdrawal_id),
                "creator_id": str(response.creator_id),
                "refunded": str(abs(response.amount)),
            },
        )
        publish_safely(self.notifier, response)
        return response

    def list_withdrawals(
        self, status: Optional[TransactionStatus] = None
    ) -> list[TransactionResponse]:
        rows = self.repository.list_by_type(TransactionType.WITHDRAWAL, status)
        return [transaction_to_response(tx) for tx in rows]
