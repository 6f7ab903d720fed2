from __future__ import annotations

import asyncio
import logging
import threading
from datetime import UTC, datetime
from decimal import Decimal
from typing import Optional, Protocol
from uuid import UUID

from pydantic import BaseModel, Field

from ..models import TransactionResponse, TransactionStatus, TransactionType

logger = logging.getLogger(__name__)


class TransactionEvent(BaseModel):
    type: str = "transaction.update"
    id: UUID
    reference: Optional[str] = None
    status: TransactionStatus
    creator_id: UUID
    amount: Decimal
    creator_amount: Decimal
    transaction_type: TransactionType
    supporter_name: Optional[str] = None
    message: Optional[str] = None
    at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_transaction(cls, tx: TransactionResponse) -> "TransactionEvent":
        return cls(
            id=tx.id,
            reference=tx.payment_reference,
            status=tx.status,
            creator_id=tx.creator_id,
            amount=tx.amount,
            creator_amount=tx.creator_amount,
            transaction_type=tx.transaction_type,
            supporter_name=tx.supporter_name,
            message=tx.message,
        )


class EventNotifier(Protocol):
    def publish(self, event: TransactionEvent) -> None: ...


class NullEventNotifier:
    def publish(self, event: TransactionEvent) -> None:
        return None


class Subscription:
    def __init__(self, bus: "TransactionEventBus", loop: asyncio.AbstractEventLoop, maxsize: int) -> None:
        self._bus = bus
        self.loop = loop
        self.queue: asyncio.Queue[TransactionEvent] = asyncio.Queue(maxsize=maxsize)

    def deliver(self, event: TransactionEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("events.subscriber_full", extra={"event_id": str(event.id)})

    async def get(self) -> TransactionEvent:
        return await self.queue.get()

    def close(self) -> None:
        self._bus.unsubscribe(self)


class TransactionEventBus:
    """In-process fan-out of ledger changes to live subscribers.

    ``publish`` may be called from worker threads; each event is handed to the
    subscriber's own event loop.
    """

    def __init__(self, queue_size: int = 100) -> None:
        self.queue_size = queue_size
        self._subscribers: set[Subscription] = set()
        self._lock = threading.Lock()

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, asyncio.get_running_loop(), self.queue_size)
        with self._lock:
            self._subscribers.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: TransactionEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscription in subscribers:
            try:
                subscription.loop.call_soon_threadsafe(subscription.deliver, event)
            except RuntimeError:
                # Loop already closed; the client went away without unsubscribing.
                self.unsubscribe(subscription)


def publish_safely(notifier: EventNotifier, tx: TransactionResponse) -> None:
    try:
        notifier.publish(TransactionEvent.from_transaction(tx))
    except Exception:
        logger.warning(
            "events.publish_failed",
            exc_info=True,
            extra={"transaction_id": str(tx.id), "reference": tx.payment_reference},
        )
