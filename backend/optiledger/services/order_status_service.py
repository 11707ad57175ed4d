"""
Order payment-status resolver.

An order's payment status is derived, never entered: the down payment taken
when the order was created plus every counted payment in its history,
compared against the final price.
"""

from __future__ import annotations

from typing import Iterable

from ..extensions import db
from ..models import Order


PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_PARTIALLY_PAID = "partially_paid"
PAYMENT_STATUS_PENDING = "pending"


def resolve_amounts(final_price_cents: int, payment_entry_cents: int, history_cents: Iterable[int]) -> str:
    """
    Pure status rule.

    paid when the total covers the final price (a zero-price order is paid),
    partially_paid when something but not everything was paid, else pending.
    """
    paid = (payment_entry_cents or 0) + sum(history_cents)
    if paid >= final_price_cents:
        return PAYMENT_STATUS_PAID
    if paid > 0:
        return PAYMENT_STATUS_PARTIALLY_PAID
    return PAYMENT_STATUS_PENDING


def total_paid(order: Order) -> int:
    return (order.payment_entry_cents or 0) + sum(e.amount_cents for e in order.payment_history)


def outstanding(order: Order) -> int:
    """Unpaid balance, never negative."""
    return max(0, order.final_price_cents - total_paid(order))


def resolve(order: Order) -> str:
    return resolve_amounts(
        order.final_price_cents,
        order.payment_entry_cents,
        (e.amount_cents for e in order.payment_history),
    )


def refresh_order_payment_status(order_id: int) -> Order | None:
    """
    Store the resolved status on the order. Does not commit.

    History entries must be added and removed through order.payment_history
    so the in-memory collection matches what will be flushed.
    Returns None when the order no longer exists.
    """
    order = db.session.get(Order, order_id)
    if order is None:
        return None
    status = resolve(order)
    if order.payment_status != status:
        order.payment_status = status
    return order
