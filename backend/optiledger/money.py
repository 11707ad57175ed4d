# Overview: Integer-cents money helpers (parsing, conversion, BRL formatting).

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation


CENT = Decimal("1")
HUNDRED = Decimal("100")


def to_cents(amount) -> int:
    """
    Convert an amount in reais (Decimal, str, int or float) to integer cents.

    Floats go through str() first so 0.1 + 0.2 style noise is not carried into
    the ledger. Half cents round away from zero.
    """
    if isinstance(amount, bool):
        raise ValueError("amount must be a number")
    try:
        reais = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValueError("amount must be a valid decimal") from exc
    if not reais.is_finite():
        raise ValueError("amount must be a finite number")
    return int((reais * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    """Integer cents -> Decimal reais with two places."""
    return (Decimal(int(cents)) / HUNDRED).quantize(Decimal("0.01"))


def format_brl(cents: int) -> str:
    """
    Format cents as Brazilian currency: 123456 -> "R$ 1.234,56".

    Negative amounts keep the sign in front of the symbol ("-R$ 10,00").
    """
    cents = int(cents)
    sign = "-" if cents < 0 else ""
    whole, frac = divmod(abs(cents), 100)
    grouped = f"{whole:,}".replace(",", ".")
    return f"{sign}R$ {grouped},{frac:02d}"

