"""
Client Debt Aggregator

WHY: A client's debt is the sum of what is still owed on their orders.
Customers and legacy clients carry a total_debt_cents column for fast
listing, but that column is only a cache of the computation here.

DESIGN PRINCIPLES:
- compute_* functions are pure reads and safe to repeat
- refresh_client_debt rewrites the cache from live data (last writer wins)
- Cancelled and deleted orders never contribute debt
- Per-order debt is clamped at zero so an overpaid order cannot offset another
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

from sqlalchemy import func

from ..extensions import db
from ..models import Customer, LegacyClient, Order, OrderPaymentEntry, PaymentTransaction
from optiledger.time_utils import to_utc_z
from optiledger.validation import NotFoundError, ValidationError
from .concurrency import run_with_retry
from .order_status_service import outstanding, total_paid
from .payment_schemas import DEFERRED_METHODS, STATUS_PENDING


logger = logging.getLogger(__name__)


CLIENT_KIND_CUSTOMER = "customer"
CLIENT_KIND_LEGACY = "legacy_client"


@dataclass
class OrderDebt:
    order_id: int
    final_price_cents: int
    paid_cents: int
    debt_cents: int


@dataclass
class DebtSummary:
    client_id: int
    kind: str
    total_debt_cents: int
    orders: list[OrderDebt] = field(default_factory=list)
    payment_history: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RecalculationResult:
    updated: int = 0
    clients: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _client_model(legacy: bool):
    return LegacyClient if legacy else Customer


def _debt_orders_query(*, customer_id: int | None = None, legacy_client_id: int | None = None):
    query = db.session.query(Order).filter(
        Order.status != "cancelled",
        Order.is_deleted.is_(False),
    )
    if legacy_client_id is not None:
        return query.filter(Order.legacy_client_id == legacy_client_id)
    return query.filter(Order.customer_id == customer_id)


def compute_debt_cents(*, customer_id: int | None = None, legacy_client_id: int | None = None) -> int:
    """Live total debt for one client, in cents."""
    orders = _debt_orders_query(customer_id=customer_id, legacy_client_id=legacy_client_id).all()
    return sum(outstanding(o) for o in orders)


def pending_debt_payments_cents(*, customer_id: int | None = None, legacy_client_id: int | None = None) -> int:
    """Order-less bank slips and promissory notes still waiting to settle against a client's debt."""
    query = db.session.query(func.coalesce(func.sum(PaymentTransaction.amount_cents), 0)).filter(
        PaymentTransaction.type == "debt_payment",
        PaymentTransaction.order_id.is_(None),
        PaymentTransaction.payment_method.in_(DEFERRED_METHODS),
        PaymentTransaction.status == STATUS_PENDING,
        PaymentTransaction.is_deleted.is_(False),
    )
    if legacy_client_id is not None:
        query = query.filter(PaymentTransaction.legacy_client_id == legacy_client_id)
    else:
        query = query.filter(PaymentTransaction.customer_id == customer_id)
    return int(query.scalar() or 0)



def compute_debt(client_id: int, legacy: bool = False) -> DebtSummary:
    """
    Debt breakdown for a customer (or legacy client with legacy=True).

    Raises:
        NotFoundError: If the client does not exist
    """
    model = _client_model(legacy)
    client = db.session.get(model, client_id)
    if client is None:
        raise NotFoundError("Client not found")

    if legacy:
        orders = _debt_orders_query(legacy_client_id=client_id).order_by(Order.created_at.asc(), Order.id.asc()).all()
        client_filter = PaymentTransaction.legacy_client_id == client_id
    else:
        orders = _debt_orders_query(customer_id=client_id).order_by(Order.created_at.asc(), Order.id.asc()).all()
        client_filter = PaymentTransaction.customer_id == client_id

    order_debts = [
        OrderDebt(
            order_id=o.id,
            final_price_cents=o.final_price_cents,
            paid_cents=total_paid(o),
            debt_cents=outstanding(o),
        )
        for o in orders
    ]

    debt_payments = db.session.query(PaymentTransaction).filter(
        client_filter,
        PaymentTransaction.type == "debt_payment",
        PaymentTransaction.status != "cancelled",
        PaymentTransaction.is_deleted.is_(False),
    ).order_by(PaymentTransaction.date.desc()).all()

    return DebtSummary(
        client_id=client_id,
        kind=CLIENT_KIND_LEGACY if legacy else CLIENT_KIND_CUSTOMER,
        total_debt_cents=sum(od.debt_cents for od in order_debts),
        orders=[od for od in order_debts if od.debt_cents > 0],
        payment_history=[
            {
                "payment_id": p.id,
                "amount_cents": p.amount_cents,
                "method": p.payment_method,
                "status": p.status,
                "date": to_utc_z(p.date),
            }
            for p in debt_payments
        ],
    )


def refresh_client_debt(*, customer_id: int | None = None, legacy_client_id: int | None = None) -> int | None:
    """
    Rewrite a client's cached debt from the live computation. Does not commit.

    Returns the new value, or None when no client was given or it is missing.
    """
    if legacy_client_id is not None:
        client = db.session.get(LegacyClient, legacy_client_id)
    elif customer_id is not None:
        client = db.session.get(Customer, customer_id)
    else:
        return None
    if client is None:
        return None

    db.session.flush()
    debt = compute_debt_cents(customer_id=customer_id, legacy_client_id=legacy_client_id)
    if client.total_debt_cents != debt:
        client.total_debt_cents = debt
    return debt


def refresh_order_client_debt(order: Order | None) -> None:
    if order is None:
        return
    refresh_client_debt(customer_id=order.customer_id, legacy_client_id=order.legacy_client_id)


def _recalculate_one(client, kind: str, result: RecalculationResult) -> None:
    if kind == CLIENT_KIND_LEGACY:
        new = compute_debt_cents(legacy_client_id=client.id)
    else:
        new = compute_debt_cents(customer_id=client.id)
    old = client.total_debt_cents or 0
    if new != old:
        client.total_debt_cents = new
        result.updated += 1
        result.clients.append({"id": client.id, "kind": kind, "old": old, "new": new, "diff": new - old})


def recalculate_client_debts(client_id: int | None = None, legacy: bool = False) -> RecalculationResult:
    """
    Reconcile cached debt with live order data.

    With a client_id only that client is checked (legacy selects the table).
    Without one, every active customer and legacy client is checked. Only
    clients whose cache changed are listed in the result; a second run
    reports nothing.

    Raises:
        NotFoundError: If client_id is given and does not exist
    """
    def _op():
        result = RecalculationResult()
        if client_id is not None:
            client = db.session.get(_client_model(legacy), client_id)
            if client is None:
                raise NotFoundError("Client not found")
            _recalculate_one(client, CLIENT_KIND_LEGACY if legacy else CLIENT_KIND_CUSTOMER, result)
        else:
            for customer in db.session.query(Customer).filter(Customer.is_active.is_(True)).order_by(Customer.id).all():
                _recalculate_one(customer, CLIENT_KIND_CUSTOMER, result)
            for legacy_client in db.session.query(LegacyClient).filter(LegacyClient.status == "active").order_by(LegacyClient.id).all():
                _recalculate_one(legacy_client, CLIENT_KIND_LEGACY, result)
        db.session.commit()
        return result

    return run_with_retry(_op)


def allocate_debt_payment(payment: PaymentTransaction, *, strict: bool = True) -> list[OrderPaymentEntry]:
    """
    Spread an order-less debt payment over the client's unpaid orders.

    Oldest order first, each order receiving at most its outstanding
    balance. Entries are added to the orders' payment history under the
    payment's id. Does not commit.

    With strict=False (settling money the bank already collected) only the
    outstanding debt is allocated and the surplus is logged.

    Raises:
        ValidationError: If strict and the amount exceeds the client's outstanding debt
    """
    orders = _debt_orders_query(
        customer_id=payment.customer_id,
        legacy_client_id=payment.legacy_client_id,
    ).order_by(Order.created_at.asc(), Order.id.asc()).all()

    open_orders = [(o, outstanding(o)) for o in orders]
    open_orders = [(o, owed) for o, owed in open_orders if owed > 0]
    total_owed = sum(owed for _, owed in open_orders)
    if payment.amount_cents > total_owed:
        if strict:
            raise ValidationError(
                f"Debt payment of {payment.amount_cents} exceeds outstanding debt of {total_owed}"
            )
        logger.warning(
            "Debt payment %s of %s cents exceeds outstanding debt of %s; %s cents left unallocated",
            payment.id,
            payment.amount_cents,
            total_owed,
            payment.amount_cents - total_owed,
        )

    remaining = payment.amount_cents
    entries = []
    for order, owed in open_orders:
        if remaining <= 0:
            break
        share = min(owed, remaining)
        entry = OrderPaymentEntry(
            payment_id=payment.id,
            amount_cents=share,
            method=payment.payment_method,
            paid_at=payment.date,
        )
        order.payment_history.append(entry)
        entries.append(entry)
        remaining -= share
    return entries
