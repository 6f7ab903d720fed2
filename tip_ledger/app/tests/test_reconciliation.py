from decimal import Decimal

from ..models import CreatorModel, TransactionType
from ..scripts import reconcile
from ..services import LedgerService, ReconciliationService
from .conftest import read_creator, seed_creator


def _corrupt(database, creator_id, *, earnings, available):
    with database.new_session() as session:
        creator = session.get(CreatorModel, creator_id)
        creator.total_earnings = earnings
        creator.available_balance = available
        session.add(creator)
        session.commit()


def _activity(database, settings, creator_id):
    with database.new_session() as session:
        service = LedgerService(session, settings=settings)
        service.apply(creator_id, Decimal("50"), TransactionType.TIP)
        kept = service.request_withdrawal(creator_id, Decimal("15"))
        declined = service.request_withdrawal(creator_id, Decimal("10"))
        service.approve_withdrawal(kept.id)
        service.decline_withdrawal(declined.id)


def test_balances_match_history_after_normal_operations(database, settings):
    creator_id = seed_creator(database, settings, balance=Decimal("100"))
    _activity(database, settings, creator_id)

    with database.new_session() as session:
        report = ReconciliationService(session).preview()

    assert report.drifted == []
    assert report.completed_tips == 2
    assert report.creators_checked == 1
    creator = read_creator(database, creator_id)
    assert creator.total_earnings == 15000
    assert creator.available_balance == 13500


def test_drift_is_reported_then_repaired(database, settings):
    creator_id = seed_creator(database, settings, balance=Decimal("100"))
    _activity(database, settings, creator_id)
    _corrupt(database, creator_id, earnings=999, available=1)

    with database.new_session() as session:
        preview = ReconciliationService(session).preview()

    (drift,) = preview.drifted
    assert preview.committed is False
    assert drift.available_balance == Decimal("0.01")
    assert drift.expected_available_balance == Decimal("135.00")
    assert drift.expected_total_earnings == Decimal("150.00")
    assert read_creator(database, creator_id).available_balance == 1

    with database.new_session() as session:
        applied = ReconciliationService(session).apply()

    assert applied.committed is True
    creator = read_creator(database, creator_id)
    assert creator.total_earnings == 15000
    assert creator.available_balance == 13500


def test_cli_previews_without_writing(database, settings, capsys):
    creator_id = seed_creator(database, settings, balance=Decimal("20"))
    _corrupt(database, creator_id, earnings=0, available=0)

    assert reconcile.main([], database=database) == 0

    out = capsys.readouterr().out
    assert "Completed tip rows: 1" in out
    assert "No changes made. To apply changes run with --commit." in out
    assert read_creator(database, creator_id).available_balance == 0


def test_cli_commit_repairs(database, settings, capsys):
    creator_id = seed_creator(database, settings, balance=Decimal("20"))
    _corrupt(database, creator_id, earnings=0, available=0)

    assert reconcile.main(["--commit"], database=database) == 0

    assert "Reconciliation committed." in capsys.readouterr().out
    assert read_creator(database, creator_id).available_balance == 2000

    assert reconcile.main([], database=database) == 0
    assert "No drift found." in capsys.readouterr().out


def test_repair_sums_each_creator_after_locking_it(database, settings, monkeypatch):
    first = seed_creator(database, settings, balance=Decimal("20"))
    second = seed_creator(database, settings, balance=Decimal("30"))
    _corrupt(database, first, earnings=0, available=0)
    calls = []

    with database.new_session() as session:
        service = ReconciliationService(session)
        lock_creator = service.repository.lock_creator
        expected_for = service._expected_for

        def recording_lock(creator_id):
            calls.append(("lock", creator_id))
            return lock_creator(creator_id)

        def recording_sum(creator_id):
            calls.append(("sum", creator_id))
            return expected_for(creator_id)

        monkeypatch.setattr(service.repository, "lock_creator", recording_lock)
        monkeypatch.setattr(service, "_expected_for", recording_sum)
        report = service.apply()

    assert [drift.creator_id for drift in report.drifted] == [first]
    for creator_id in (first, second):
        assert calls.index(("lock", creator_id)) < calls.index(("sum", creator_id))
    assert read_creator(database, first).available_balance == 2000
    assert read_creator(database, second).available_balance == 3000
