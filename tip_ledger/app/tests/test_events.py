import asyncio
from decimal import Decimal

import pytest

from ..core.events import TransactionEvent, TransactionEventBus
from ..models import TransactionStatus, TransactionType
from ..services import LedgerService
from .conftest import read_creator, seed_creator


class RecordingNotifier:
    def __init__(self):
        self.events: list[TransactionEvent] = []

    def publish(self, event):
        self.events.append(event)


class BrokenNotifier:
    def publish(self, event):
        raise RuntimeError("subscriber exploded")


def test_ledger_changes_are_published(database, settings):
    creator_id = seed_creator(database, settings)
    notifier = RecordingNotifier()

    with database.new_session() as session:
        service = LedgerService(session, settings=settings, notifier=notifier)
        tip = service.apply(creator_id, Decimal("30"), TransactionType.TIP, supporter_name="Kwame")
        withdrawal = service.request_withdrawal(creator_id, Decimal("10"))

    assert [event.id for event in notifier.events] == [tip.id, withdrawal.id]
    first = notifier.events[0]
    assert first.type == "transaction.update"
    assert first.status == TransactionStatus.COMPLETED
    assert first.amount == Decimal("30.00")
    assert first.supporter_name == "Kwame"
    assert notifier.events[1].transaction_type == TransactionType.WITHDRAWAL


def test_failing_notifier_does_not_undo_commit(database, settings):
    creator_id = seed_creator(database, settings)

    with database.new_session() as session:
        service = LedgerService(session, settings=settings, notifier=BrokenNotifier())
        tx = service.apply(creator_id, Decimal("20"), TransactionType.TIP)

    assert tx.status == TransactionStatus.COMPLETED
    assert read_creator(database, creator_id).available_balance == 2000


def _event(**overrides):
    fields = {
        "id": "8d3e5f4e-2a2c-4d61-9a53-3f5f7d2c1b10",
        "status": TransactionStatus.COMPLETED,
        "creator_id": "0b7c1c52-6a0d-4c55-8c3e-1f4f0e6f2a11",
        "amount": Decimal("5.00"),
        "creator_amount": Decimal("5.00"),
        "transaction_type": TransactionType.TIP,
    }
    fields.update(overrides)
    return TransactionEvent(**fields)


def test_subscribers_receive_events_from_worker_threads():
    bus = TransactionEventBus()

    async def scenario():
        subscription = bus.subscribe()
        await asyncio.to_thread(bus.publish, _event(reference="TIP_thread"))
        received = await asyncio.wait_for(subscription.get(), timeout=5)
        subscription.close()
        return received

    received = asyncio.run(scenario())

    assert received.reference == "TIP_thread"
    assert bus.subscriber_count == 0


def test_full_subscriber_queue_drops_new_events():
    bus = TransactionEventBus(queue_size=1)

    async def scenario():
        subscription = bus.subscribe()
        bus.publish(_event(reference="TIP_first"))
        bus.publish(_event(reference="TIP_second"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        first = await asyncio.wait_for(subscription.get(), timeout=5)
        return first, subscription.queue.qsize()

    first, remaining = asyncio.run(scenario())

    assert first.reference == "TIP_first"
    assert remaining == 0


def test_publish_after_loop_closed_drops_subscriber():
    bus = TransactionEventBus()

    async def subscribe_only():
        return bus.subscribe()

    asyncio.run(subscribe_only())
    assert bus.subscriber_count == 1

    bus.publish(_event())

    assert bus.subscriber_count == 0


def test_subscribe_requires_running_loop():
    with pytest.raises(RuntimeError):
        TransactionEventBus().subscribe()
