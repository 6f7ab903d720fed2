from __future__ import annotations

from datetime import UTC, datetime
from typing import Optional
from uuid import UUID

from sqlmodel import Session, select

from ..models import CreatorModel, TransactionModel, TransactionStatus, TransactionType


class TipLedgerRepository:
    """Thin data access layer around the SQLModel session."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # Creator operations -------------------------------------------------
    def add_creator(self, display_name: str, tiktok_username: str) -> CreatorModel:
        creator = CreatorModel(display_name=display_name, tiktok_username=tiktok_username)
        self.session.add(creator)
        self.session.flush()
        self.session.refresh(creator)
        return creator

    def get_creator(self, creator_id: UUID) -> Optional[CreatorModel]:
        return self.session.get(CreatorModel, creator_id)

    def lock_creator(self, creator_id: UUID) -> Optional[CreatorModel]:
        stmt = (
            select(CreatorModel)
            .where(CreatorModel.id == creator_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.exec(stmt).first()

    def list_creators(self) -> list[CreatorModel]:
        return list(self.session.exec(select(CreatorModel)))

    def apply_balance_delta(
        self,
        creator: CreatorModel,
        *,
        earnings_delta: int = 0,
        available_delta: int = 0,
    ) -> CreatorModel:
        creator.total_earnings += earnings_delta
        creator.available_balance += available_delta
        creator.updated_at = datetime.now(UTC)
        self.session.add(creator)
        self.session.flush()
        return creator

    # Transactions -------------------------------------------------------
    def add_transaction(self, **fields) -> TransactionModel:
        tx = TransactionModel(**fields)
        self.session.add(tx)
        self.session.flush()
        self.session.refresh(tx)
        return tx

    def get_transaction(self, transaction_id: UUID) -> Optional[TransactionModel]:
        return self.session.get(TransactionModel, transaction_id)

    def lock_transaction(self, transaction_id: UUID) -> Optional[TransactionModel]:
        stmt = (
            select(TransactionModel)
            .where(TransactionModel.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.exec(stmt).first()

    def get_by_reference(self, reference: str) -> Optional[TransactionModel]:
        stmt = select(TransactionModel).where(TransactionModel.payment_reference == reference)
        return self.session.exec(stmt).first()

    def lock_by_reference(self, reference: str) -> Optional[TransactionModel]:
        stmt = (
            select(TransactionModel)
            .where(TransactionModel.payment_reference == reference)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.exec(stmt).first()

    def set_authorization_url(self, transaction_id: UUID, url: str) -> None:
        tx = self.lock_transaction(transaction_id)
        if tx is not None:
            tx.authorization_url = url
            self.session.add(tx)

    def list_transactions(
        self,
        creator_id: UUID,
        *,
        limit: Optional[int] = 50,
        include_pending: bool = False,
    ) -> list[TransactionModel]:
        stmt = select(TransactionModel).where(TransactionModel.creator_id == creator_id)
        if not include_pending:
            # Pending and failed tips are checkout attempts, not income.
            stmt = stmt.where(
                (TransactionModel.transaction_type != TransactionType.TIP)
                | (TransactionModel.status == TransactionStatus.COMPLETED)
            )
        stmt = stmt.order_by(TransactionModel.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.exec(stmt))

    def list_by_type(
        self,
        transaction_type: TransactionType,
        status: Optional[TransactionStatus] = None,
    ) -> list[TransactionModel]:
        stmt = select(TransactionModel).where(TransactionModel.transaction_type == transaction_type)
        if status is not None:
            stmt = stmt.where(TransactionModel.status == status)
        stmt = stmt.order_by(TransactionModel.created_at.desc())
        return list(self.session.exec(stmt))

    # Idempotency lookups ------------------------------------------------
    def find_by_idempotency(
        self, creator_id: UUID, idempotency_key: str
    ) -> Optional[TransactionModel]:
        stmt = (
            select(TransactionModel)
            .where(TransactionModel.creator_id == creator_id)
            .where(TransactionModel.idempotency_key == idempotency_key)
        )
        return self.session.exec(stmt).first()
