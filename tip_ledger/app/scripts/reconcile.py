"""Recompute creator balances from transaction rows.

Usage:
    python -m tip_ledger.app.scripts.reconcile            # preview only
    python -m tip_ledger.app.scripts.reconcile --commit   # repair drifted creators
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from ..core.config import get_settings
from ..core.db import Database
from ..services import ReconciliationService

logger = logging.getLogger(__name__)


def main(argv: Optional[Sequence[str]] = None, database: Optional[Database] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--commit", action="store_true", help="write the recomputed balances")
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    owns_database = database is None
    database = database or Database(
        settings.database_url, sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms
    )

    try:
        with database.new_session() as session:
            service = ReconciliationService(session)
            report = service.apply() if args.commit else service.preview()
    except Exception:
        logger.exception("reconcile.failed")
        return 1
    finally:
        if owns_database:
            database.dispose()

    print(f"Completed tip rows: {report.completed_tips}")
    print(f"Creators checked: {report.creators_checked}")
    for drift in report.drifted:
        print(
            f"  {drift.creator_id}: earnings {drift.total_earnings} -> {drift.expected_total_earnings}, "
            f"available {drift.available_balance} -> {drift.expected_available_balance}"
        )
    if not report.drifted:
        print("No drift found.")
    elif not report.committed:
        print("No changes made. To apply changes run with --commit.")
    else:
        print("Reconciliation committed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
