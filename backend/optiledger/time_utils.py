# Overview: Ledger clock and date helpers; every stored timestamp is UTC-naive.

"""
Time helpers for the payment ledger.

Payments, sessions and bank settlements are stored as UTC-naive datetimes.
Daily views (daily payments, daily register summary, check date filters)
work on half-open [start, end) day windows so a payment at 23:59:59 and one
at 00:00:00 the next day never land in the same day.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Ledger 'now': UTC, tzinfo stripped."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Read a payment, check or bank settlement timestamp.

    Blank input is None. A bare date is midnight of that day. Offsets
    (including a trailing Z, as the bank sends) are converted to UTC;
    values without an offset are taken as UTC already.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Read a business day ("YYYY-MM-DD"); a full timestamp is cut to its UTC day."""
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if len(text) == 10:
        return date.fromisoformat(text)
    return parse_iso_datetime(text).date()


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """[start, end) of a business day."""
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Stored timestamp -> "YYYY-MM-DDTHH:MM:SSZ" for API and CLI output."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
