from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import func
from sqlmodel import Session, select

from ..core.money import to_major, to_minor
from ..models import (
    CreatorDrift,
    CreatorModel,
    ReconciliationReport,
    TransactionModel,
    TransactionStatus,
    TransactionType,
)
from .repository import TipLedgerRepository


logger = logging.getLogger(__name__)


class ReconciliationService:
    """Recomputes creator balances from their transaction rows.

    ``total_earnings`` must equal the creator share of completed tips and
    ``available_balance`` that sum plus every withdrawal that was not declined.
    This is an offline repair tool; online code paths never call it.
    """

    def __init__(self, session: Session, repository: Optional[TipLedgerRepository] = None) -> None:
        self.session = session
        self.repository = repository or TipLedgerRepository(session)

    def _completed_tip_count(self) -> int:
        stmt = (
            select(func.count())
            .select_from(TransactionModel)
            .where(TransactionModel.transaction_type == TransactionType.TIP)
            .where(TransactionModel.status == TransactionStatus.COMPLETED)
        )
        return self.session.exec(stmt).one()

    def _expected_for(self, creator_id: UUID) -> tuple[int, int]:
        earnings = self.session.exec(
            select(func.coalesce(func.sum(TransactionModel.creator_amount), 0))
            .where(TransactionModel.creator_id == creator_id)
            .where(TransactionModel.transaction_type == TransactionType.TIP)
            .where(TransactionModel.status == TransactionStatus.COMPLETED)
        ).one()
        withdrawn = self.session.exec(
            select(func.coalesce(func.sum(TransactionModel.amount), 0))
            .where(TransactionModel.creator_id == creator_id)
            .where(TransactionModel.transaction_type == TransactionType.WITHDRAWAL)
            .where(TransactionModel.status != TransactionStatus.FAILED)
        ).one()
        return int(earnings), int(earnings) + int(withdrawn)

    def _drift(self, creator: CreatorModel) -> Optional[CreatorDrift]:
        earnings, available = self._expected_for(creator.id)
        if creator.total_earnings == earnings and creator.available_balance == available:
            return None
        return CreatorDrift(
            creator_id=creator.id,
            total_earnings=to_major(creator.total_earnings),
            expected_total_earnings=to_major(earnings),
            available_balance=to_major(creator.available_balance),
            expected_available_balance=to_major(available),
        )

    def preview(self) -> ReconciliationReport:
        try:
            creators = self.repository.list_creators()
            drifted = [drift for drift in map(self._drift, creators) if drift is not None]
            report = ReconciliationReport(
                completed_tips=self._completed_tip_count(),
                creators_checked=len(creators),
                drifted=drifted,
            )
        finally:
            self.session.rollback()
        return report

    def apply(self) -> ReconciliationReport:
        """Repair every drifted creator.

        Each creator row is locked before its transactions are summed, so a tip
        or withdrawal committed concurrently is either fully counted or waits
        for this transaction to finish.
        """
        drifted: list[CreatorDrift] = []
        try:
            creator_ids = [creator.id for creator in self.repository.list_creators()]
            for creator_id in creator_ids:
                creator = self.repository.lock_creator(creator_id)
                if creator is None:
                    continue
                drift = self._drift(creator)
                if drift is None:
                    continue
                creator.total_earnings = to_minor(drift.expected_total_earnings)
                creator.available_balance = to_minor(drift.expected_available_balance)
                creator.updated_at = datetime.now(UTC)
                self.session.add(creator)
                drifted.append(drift)
            completed_tips = self._completed_tip_count()
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        for drift in drifted:
            logger.warning(
                "reconcile.creator_repaired",
                extra={
                    "creator_id": str(drift.creator_id),
                    "total_earnings": str(drift.total_earnings),
                    "expected_total_earnings": str(drift.expected_total_earnings),
                    "available_balance": str(drift.available_balance),
                    "expected_available_balance": str(drift.expected_available_balance),
                },
            )
        return ReconciliationReport(
            completed_tips=completed_tips,
            creators_checked=len(creator_ids),
            drifted=drifted,
            committed=True,
        )
