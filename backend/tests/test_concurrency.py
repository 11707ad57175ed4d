"""
Ledger write retry tests.

Verifies:
- A lost optimistic-lock race is replayed and the retry's result returned
- The last conflict propagates once attempts run out
- Validation errors are not retried
"""

import pytest
from sqlalchemy.orm.exc import StaleDataError

from optiledger.services.concurrency import run_with_retry
from optiledger.validation import ValidationError


def test_conflict_is_replayed(db_session):
    calls = []

    def op():
        calls.append(1)
        if len(calls) == 1:
            raise StaleDataError("session 1 changed underneath")
        return "settled"

    assert run_with_retry(op, backoff_base=0) == "settled"
    assert len(calls) == 2


def test_conflict_propagates_after_last_attempt(db_session):
    calls = []

    def op():
        calls.append(1)
        raise StaleDataError("still racing")

    with pytest.raises(StaleDataError):
        run_with_retry(op, attempts=3, backoff_base=0)
    assert len(calls) == 3


def test_validation_error_runs_once(db_session):
    calls = []

    def op():
        calls.append(1)
        raise ValidationError("amount must be > 0")

    with pytest.raises(ValidationError):
        run_with_retry(op, backoff_base=0)
    assert len(calls) == 1
