from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Optional, Tuple
from urllib.parse import urlencode
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from ..core.config import Settings, get_settings
from ..core.errors import (
    InvalidSignatureError,
    TipLedgerError,
    TransactionNotFoundError,
)
from ..core.events import EventNotifier, NullEventNotifier, publish_safely
from ..core.money import quantize, to_major, to_minor
from ..models import (
    InitiateTipRequest,
    InitiateTipResponse,
    PaymentStatusResponse,
    TransactionResponse,
    TransactionStatus,
    TransactionType,
)
from .ledger import LedgerService, transaction_to_response
from .paystack import PaymentProvider
from .repository import TipLedgerRepository


logger = logging.getLogger(__name__)

ANONYMOUS_EMAIL = "anon@example.com"


def new_reference() -> str:
    return "TIP_" + uuid4().hex[:24]


@dataclass(frozen=True)
class CompletionSignal:
    """A provider's assertion that the payment behind ``reference`` succeeded."""

    reference: str
    amount_minor_units: int
    creator_id: Optional[UUID] = None
    supporter_name: Optional[str] = None
    message: Optional[str] = None


def _parse_uuid(value: Any) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without a zone.
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def signal_from_charge(data: dict[str, Any]) -> CompletionSignal:
    metadata = data.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
    customer = data.get("customer")
    if not isinstance(customer, dict):
        customer = {}
    return CompletionSignal(
        reference=str(data.get("reference") or ""),
        amount_minor_units=int(data.get("amount") or 0),
        creator_id=_parse_uuid(metadata.get("creator_id")),
        supporter_name=metadata.get("supporter_name") or customer.get("email") or "Anonymous",
        message=metadata.get("message"),
    )


class PaymentService:
    """Turns provider payment signals into exactly one balance application each."""

    def __init__(
        self,
        session: Session,
        provider: PaymentProvider,
        repository: Optional[TipLedgerRepository] = None,
        *,
        settings: Optional[Settings] = None,
        notifier: Optional[EventNotifier] = None,
        ledger: Optional[LedgerService] = None,
    ) -> None:
        self.session = session
        self.provider = provider
        self.repository = repository or TipLedgerRepository(session)
        self.settings = settings or get_settings()
        self.notifier = notifier or NullEventNotifier()
        self.ledger = ledger or LedgerService(
            session,
            self.repository,
            settings=self.settings,
            notifier=self.notifier,
        )

    # ------------------------------------------------------------------
    # Helper utilities
    # ------------------------------------------------------------------
    def _callback_url(self, reference: str, creator_id: UUID) -> str:
        query = urlencode({"ref": reference, "creator_id": str(creator_id)})
        return f"{self.settings.public_app_url.rstrip('/')}/payment/result?{query}"

    def _start_checkout(
        self,
        pending: TransactionResponse,
        payload: InitiateTipRequest,
        *,
        reused: bool,
    ) -> InitiateTipResponse:
        # No database transaction may be open while the provider is called.
        self.session.close()
        try:
            init = self.provider.initialize(
                amount=to_minor(pending.amount),
                email=payload.supporter_email or ANONYMOUS_EMAIL,
                reference=pending.payment_reference,
                metadata={
                    "creator_id": str(pending.creator_id),
                    "supporter_name": pending.supporter_name,
                    "message": pending.message,
                },
                callback_url=self._callback_url(pending.payment_reference, pending.creator_id),
            )
        except Exception:
            self._release_checkout(pending.id)
            raise

        try:
            self.repository.set_authorization_url(pending.id, init.authorization_url)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        return InitiateTipResponse(
            authorization_url=init.authorization_url,
            reference=pending.payment_reference,
            reused=reused,
            status=pending.status,
        )

    def _claim_checkout(self, transaction_id: UUID) -> Tuple[TransactionResponse, bool]:
        """Lock a pending row and claim the right to call the provider for it.

        The claim is refused while the row already has a checkout URL or while
        another caller's initialize call is younger than the provider timeout.
        """
        now = datetime.now(UTC)
        stale_before = now - timedelta(seconds=self.settings.paystack_timeout_seconds)
        try:
            tx = self.repository.lock_transaction(transaction_id)
            if tx is None:
                raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
            claimed = (
                tx.status == TransactionStatus.PENDING
                and tx.authorization_url is None
                and (
                    tx.checkout_started_at is None
                    or _as_utc(tx.checkout_started_at) <= stale_before
                )
            )
            if claimed:
                tx.checkout_started_at = now
                self.session.add(tx)
                self.session.flush()
            response = transaction_to_response(tx)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return response, claimed

    def _release_checkout(self, transaction_id: UUID) -> None:
        try:
            tx = self.repository.lock_transaction(transaction_id)
            if tx is not None and tx.authorization_url is None:
                tx.checkout_started_at = None
                self.session.add(tx)
            self.session.commit()
        except Exception:
            self.session.rollback()
            # The claim then expires after the provider timeout instead.
            logger.warning(
                "payment.checkout_release_failed",
                exc_info=True,
                extra={"transaction_id": str(transaction_id)},
            )

    def _reuse(
        self, existing: TransactionResponse, payload: InitiateTipRequest
    ) -> InitiateTipResponse:
        logger.info(
            "idempotent.initiate.hit",
            extra={
                "creator_id": str(existing.creator_id),
                "idempotency_key": existing.idempotency_key,
                "reference": existing.payment_reference,
            },
        )
        if existing.amount != quantize(payload.amount):
            logger.warning(
                "idempotent.initiate.amount_mismatch",
                extra={
                    "reference": existing.payment_reference,
                    "stored_amount": str(existing.amount),
                    "requested_amount": str(payload.amount),
                },
            )
        if existing.status == TransactionStatus.PENDING and existing.authorization_url is None:
            current, claimed = self._claim_checkout(existing.id)
            if claimed:
                # The earlier provider call failed or timed out. Retrying with the
                # same reference keeps it a single payment attempt on the provider side.
                return self._start_checkout(current, payload, reused=True)
            logger.info(
                "idempotent.initiate.in_flight",
                extra={"reference": current.payment_reference},
            )
            existing = current
        return InitiateTipResponse(
            authorization_url=existing.authorization_url,
            reference=existing.payment_reference,
            reused=True,
            status=existing.status,
        )

    def _complete_pending(
        self, signal: CompletionSignal
    ) -> Tuple[Optional[TransactionResponse], bool]:
        """Complete the stored row for ``signal.reference`` if it is still pending.

        Returns ``(transaction, found)``; ``found`` is False when no row carries
        the reference yet.
        """
        try:
            tx = self.repository.lock_by_reference(signal.reference)
            if tx is None:
                self.session.rollback()
                return None, False

            if tx.status != TransactionStatus.PENDING:
                response = transaction_to_response(tx)
                self.session.rollback()
                logger.info(
                    "payment.duplicate_signal",
                    extra={"reference": signal.reference, "status": response.status.value},
                )
                return response, True

            if signal.amount_minor_units > 0:
                tx.amount = signal.amount_minor_units
            fees = self.ledger.fees_for(TransactionType.TIP, tx.amount)
            tx.platform_fee = fees.platform_fee
            tx.processor_fee = fees.processor_fee
            tx.creator_amount = fees.creator_amount
            tx.platform_net = fees.platform_net
            tx.status = TransactionStatus.COMPLETED
            tx.completed_at = datetime.now(UTC)
            self.session.add(tx)
            self.session.flush()

            if tx.amount > 0:
                creator = self.ledger.lock_creator(tx.creator_id)
                self.ledger.credit_tip(creator, fees.creator_amount)

            response = transaction_to_response(tx)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "payment.completed",
            extra={
                "reference": signal.reference,
                "creator_id": str(response.creator_id),
                "amount": str(response.amount),
                "creator_amount": str(response.creator_amount),
            },
        )
        publish_safely(self.notifier, response)
        return response, True

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def find_existing(
        self, creator_id: UUID, idempotency_key: str
    ) -> Optional[TransactionResponse]:
        if not idempotency_key:
            return None
        try:
            tx = self.repository.find_by_idempotency(creator_id, idempotency_key)
            found = transaction_to_response(tx) if tx is not None else None
        finally:
            # Read-only lookup; release the write lock SQLite takes on BEGIN.
            self.session.rollback()
        return found

    def initiate_tip(self, payload: InitiateTipRequest) -> InitiateTipResponse:
        amount = quantize(payload.amount)
        self.ledger.validate_amount(amount, TransactionType.TIP)

        key = payload.idempotency_key
        if key:
            existing = self.find_existing(payload.creator_id, key)
            if existing is not None:
                return self._reuse(existing, payload)

        reference = new_reference()
        try:
            self.ledger.get_creator(payload.creator_id)
            tx = self.repository.add_transaction(
                creator_id=payload.creator_id,
                amount=to_minor(amount),
                transaction_type=TransactionType.TIP,
                status=TransactionStatus.PENDING,
                payment_reference=reference,
                idempotency_key=key,
                supporter_name=payload.supporter_name,
                supporter_email=payload.supporter_email,
                message=payload.message,
                creator_amount=to_minor(amount),
                checkout_started_at=datetime.now(UTC),
            )
            pending = transaction_to_response(tx)
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            # Lost an insert race against a retry carrying the same key.
            existing = self.find_existing(payload.creator_id, key) if key else None
            if existing is None:
                raise
            return self._reuse(existing, payload)
        except Exception:
            self.session.rollback()
            raise

        logger.info(
            "payment.initiated",
            extra={
                "creator_id": str(payload.creator_id),
                "reference": reference,
                "amount": str(amount),
            },
        )
        publish_safely(self.notifier, pending)
        return self._start_checkout(pending, payload, reused=False)

    def complete_payment(self, signal: CompletionSignal) -> Optional[TransactionResponse]:
        """Apply a successful payment to the ledger exactly once.

        A pending row is completed under lock; a completed row is returned
        unchanged; with no row at all a completed tip is created directly when
        the signal names the creator. Returns ``None`` when the reference is
        unknown and the signal carries no creator id.
        """
        response, found = self._complete_pending(signal)
        if found:
            return response

        if signal.creator_id is None:
            logger.warning("payment.unmatched_signal", extra={"reference": signal.reference})
            return None

        try:
            return self.ledger.apply(
                signal.creator_id,
                to_major(signal.amount_minor_units),
                TransactionType.TIP,
                status=TransactionStatus.COMPLETED,
                payment_reference=signal.reference,
                supporter_name=signal.supporter_name,
                message=signal.message,
            )
        except IntegrityError:
            # A concurrent signal inserted the row between our lookup and insert.
            logger.info("payment.insert_race", extra={"reference": signal.reference})
            response, _ = self._complete_pending(signal)
            return response

    def handle_webhook(
        self, raw_body: bytes, signature: Optional[str]
    ) -> Optional[TransactionResponse]:
        if not self.provider.verify_signature(raw_body, signature):
            raise InvalidSignatureError("Invalid signature")

        try:
            event = json.loads(raw_body)
        except ValueError as exc:
            raise ValueError("Invalid webhook payload") from exc
        if not isinstance(event, dict):
            raise ValueError("Invalid webhook payload")

        if event.get("event") != "charge.success":
            logger.info("payment.webhook_ignored", extra={"event_type": event.get("event")})
            return None

        data = event.get("data") or {}
        if not isinstance(data, dict):
            raise ValueError("Invalid webhook payload: data must be an object")
        signal = signal_from_charge(data)
        if not signal.reference:
            logger.warning("payment.webhook_missing_reference")
            return None

        try:
            return self.complete_payment(signal)
        except TipLedgerError:
            # Redelivery cannot fix a bad creator id or amount; acknowledge it.
            logger.warning(
                "payment.webhook_rejected",
                exc_info=True,
                extra={"reference": signal.reference},
            )
            return None

    def verify_payment(self, reference: str) -> PaymentStatusResponse:
        tx = self.repository.get_by_reference(reference)
        if tx is None:
            raise TransactionNotFoundError("Transaction not found (reference unknown)")
        current = transaction_to_response(tx)
        self.session.close()

        if current.status == TransactionStatus.COMPLETED:
            return PaymentStatusResponse(
                reference=reference, status=current.status, amount=current.amount
            )

        verification = self.provider.verify(reference)
        if verification.succeeded:
            completed = self.complete_payment(
                CompletionSignal(
                    reference=reference,
                    amount_minor_units=verification.amount,
                    creator_id=current.creator_id,
                    supporter_name=current.supporter_name,
                    message=current.message,
                )
            )
            if completed is not None:
                current = completed

        return PaymentStatusResponse(
            reference=reference, status=current.status, amount=current.amount
        )

    def get_status(self, reference: str) -> PaymentStatusResponse:
        tx = self.repository.get_by_reference(reference)
        if tx is None:
            raise TransactionNotFoundError("Transaction not found (reference unknown)")
        return PaymentStatusResponse(
            reference=reference, status=tx.status, amount=to_major(tx.amount)
        )
