# Overview: Row locking and retry for ledger writes that race on sessions, payments and orders.

"""
Ledger write concurrency.

Two cashiers can settle, cancel or record payments against the same open
session at once, and a boleto sync can settle a slip while a cashier
cancels it. Session totals move through conditional UPDATEs that bump
version_id; payments and orders carry a version_id_col. A lost race shows
up as StaleDataError (or a lock OperationalError on databases that take
row locks), and the whole ledger operation is replayed from its first read.
"""

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    SELECT ... FOR UPDATE on the payment or session being transitioned.

    SQLite ignores the clause; there the version_id check catches the race.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run one ledger operation (reads, writes and commit) as a replayable unit.

    On a lost race the session is rolled back and func runs again from
    scratch, up to `attempts` times with exponential backoff. Any other
    error rolls back and propagates, so validation failures never leave
    half-applied totals in the session.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt == attempts:
                raise
            logger.warning("Ledger write conflict (attempt %s of %s): %s", attempt, attempts, exc)
            time.sleep(backoff_base * (2 ** (attempt - 1)))
        except Exception:
            db.session.rollback()
            raise
