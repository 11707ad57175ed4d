from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from optiledger.time_utils import parse_iso_datetime


# Maximum single movement: R$ 9.999.999,99 (999,999,999 cents)
# Keeps sums well inside a 32-bit signed column after a day of postings.
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class NotFoundError(LookupError):
    """404-level: the referenced record does not exist (or is hidden)."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., register already open)."""


def require_payload(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def coerce_int(value: Any, field: str, *, required: bool = True) -> Optional[int]:
    """
    Strict integer coercion.

    Accepts ints and plain digit strings. Rejects bools, floats, decimals and
    scientific notation so "12.5" or 1e3 never silently become money.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None

    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped or "," in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_cents(value: Any, field: str, *, required: bool = True, allow_zero: bool = False) -> Optional[int]:
    """Integer cents, > 0 (or >= 0 with allow_zero), capped at MAX_AMOUNT_CENTS."""
    cents = coerce_int(value, field, required=required)
    if cents is None:
        return None
    if allow_zero:
        if cents < 0:
            raise ValidationError(f"{field} must be >= 0")
    elif cents <= 0:
        raise ValidationError(f"{field} must be > 0")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS}")
    return cents


def coerce_str(value: Any, field: str, *, required: bool = True, max_length: int | None = None) -> Optional[str]:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise ValidationError(f"{field} must be a string")
    s = str(value).strip()
    if not s:
        if required:
            raise ValidationError(f"{field} cannot be blank")
        return None
    if max_length and len(s) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return s


def coerce_datetime(value: Any, field: str, *, required: bool = True) -> Optional[datetime]:
    """Accept datetime objects or ISO-8601 strings; normalize to UTC-naive."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{field} must be a datetime")


def coerce_choice(value: Any, field: str, choices, *, required: bool = True) -> Optional[str]:
    s = coerce_str(value, field, required=required)
    if s is None:
        return None
    if s not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")
    return s


def coerce_page(page: Any, limit: Any, *, default_limit: int = 50, max_limit: int = 200) -> tuple[int, int]:
    """Query-string pagination (1-based page)."""
    p = coerce_int(page, "page", required=False) or 1
    l = coerce_int(limit, "limit", required=False) or default_limit
    if p < 1:
        raise ValidationError("page must be >= 1")
    if l < 1 or l > max_limit:
        raise ValidationError(f"limit must be between 1 and {max_limit}")
    return p, l
