"""
Cash Register Session Service

WHY: Every payment is accountable to a till session. The session keeps
per-method running totals so the closing count can be checked against
what the ledger says should be in the drawer.

DESIGN PRINCIPLES:
- At most one open session at a time (storage-enforced via open_slot)
- Totals move only through conditional UPDATEs against an open session
- Sessions are frozen once closed; variance is recorded, never rejected
- Soft delete only, and never for an open session
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CashRegisterSession, PaymentTransaction
from ..models.registers import SALES_METHODS, SESSION_STATUS_CLOSED, SESSION_STATUS_OPEN
from optiledger.money import format_brl
from optiledger.time_utils import day_bounds, utcnow
from optiledger.validation import ConflictError, NotFoundError, ValidationError
from .concurrency import lock_for_update, run_with_retry
from .pagination import paginate


class AlreadyOpenError(ConflictError):
    """Raised when opening a register while another session is open."""


class NoOpenRegisterError(NotFoundError):
    """Raised when an operation needs an open session and there is none."""


class CannotDeleteOpenRegisterError(ConflictError):
    """Raised when soft-deleting a session that is still open."""


class RegisterClosedError(ConflictError):
    """Raised when reversing totals on a session that has been closed."""


# Session column updated by each (payment type) posting
_TYPE_COLUMNS = {
    "debt_payment": "payments_received_cents",
    "expense": "payments_made_cents",
}


def _sales_column(method: str) -> str:
    if method not in SALES_METHODS:
        raise ValidationError(f"Unknown payment method: {method}")
    return f"sales_{method}_cents"


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

def find_open_register() -> CashRegisterSession | None:
    """The currently open (non-deleted) session, if any."""
    return db.session.query(CashRegisterSession).filter(
        CashRegisterSession.status == SESSION_STATUS_OPEN,
        CashRegisterSession.is_deleted.is_(False),
    ).first()


def get_current_register() -> CashRegisterSession:
    """
    Get the open session.

    Raises:
        NoOpenRegisterError: If no session is open
    """
    session = find_open_register()
    if session is None:
        raise NoOpenRegisterError("No open cash register")
    return session


def open_register(
    opening_balance_cents: int,
    opened_by: str,
    observations: str | None = None,
) -> CashRegisterSession:
    """
    Open a new cash register session with all totals zeroed.

    The pre-check gives a friendly error in the common case; the unique
    open_slot constraint catches two concurrent opens that both pass it.

    Raises:
        ValidationError: If opening balance is negative or actor missing
        AlreadyOpenError: If a session is already open
    """
    if opening_balance_cents is None or opening_balance_cents < 0:
        raise ValidationError("opening_balance_cents must be >= 0")
    if not opened_by:
        raise ValidationError("opened_by is required")

    def _op():
        existing = find_open_register()
        if existing is not None:
            raise AlreadyOpenError(f"A cash register is already open (session {existing.id})")

        session = CashRegisterSession(
            status=SESSION_STATUS_OPEN,
            open_slot=1,
            opened_at=utcnow(),
            opening_balance_cents=opening_balance_cents,
            opened_by=opened_by,
            observations=observations,
        )
        for method in SALES_METHODS:
            setattr(session, _sales_column(method), 0)
        session.sales_total_cents = 0
        session.payments_received_cents = 0
        session.payments_made_cents = 0

        db.session.add(session)
        db.session.commit()
        return session

    try:
        return run_with_retry(_op)
    except IntegrityError:
        raise AlreadyOpenError("A cash register is already open")


def close_register(
    closing_balance_cents: int,
    closed_by: str,
    observations: str | None = None,
) -> CashRegisterSession:
    """
    Close the open session and record the cash variance.

    expected = opening + sales.total + payments.received - payments.made
    variance = closing - expected

    IMMUTABLE: Once closed, totals no longer move.

    Raises:
        ValidationError: If closing balance is negative or actor missing
        NoOpenRegisterError: If no session is open
    """
    if closing_balance_cents is None or closing_balance_cents < 0:
        raise ValidationError("closing_balance_cents must be >= 0")
    if not closed_by:
        raise ValidationError("closed_by is required")

    def _op():
        session = lock_for_update(
            db.session.query(CashRegisterSession).filter(
                CashRegisterSession.status == SESSION_STATUS_OPEN,
                CashRegisterSession.is_deleted.is_(False),
            )
        ).first()
        if session is None:
            raise NoOpenRegisterError("No open cash register")

        expected = (
            session.opening_balance_cents
            + session.sales_total_cents
            + session.payments_received_cents
            - session.payments_made_cents
        )
        variance = closing_balance_cents - expected

        notes = [n for n in (session.observations, observations) if n]
        notes.append(f"Diferença de caixa: {format_brl(variance)}")

        session.status = SESSION_STATUS_CLOSED
        session.open_slot = None
        session.closed_at = utcnow()
        session.closed_by = closed_by
        session.closing_balance_cents = closing_balance_cents
        session.expected_balance_cents = expected
        session.variance_cents = variance
        session.observations = "\n".join(notes)

        db.session.commit()
        return session

    return run_with_retry(_op)


def soft_delete_register(session_id: int, deleted_by: str) -> CashRegisterSession:
    """
    Hide a closed session from normal listings.

    Raises:
        NotFoundError: If the session does not exist or is already deleted
        CannotDeleteOpenRegisterError: If the session is still open
    """
    def _op():
        session = db.session.get(CashRegisterSession, session_id)
        if session is None or session.is_deleted:
            raise NotFoundError("Cash register not found")
        if session.is_open:
            raise CannotDeleteOpenRegisterError("Cannot delete an open cash register. Close it first.")

        session.is_deleted = True
        session.deleted_at = utcnow()
        session.deleted_by = deleted_by
        db.session.commit()
        return session

    return run_with_retry(_op)


# =============================================================================
# TOTALS (called inside the payment ledger's transaction)
# =============================================================================

def _apply_totals(session_id: int, deltas: dict[str, int], *, closed_error=NoOpenRegisterError) -> None:
    """
    Add deltas to session total columns in one conditional UPDATE.

    The WHERE clause only matches an open session, so a close racing a
    payment either sees the posting or the posting fails. Does not commit.
    """
    values = {}
    for column_name, delta in deltas.items():
        column = getattr(CashRegisterSession, column_name)
        values[column] = column + delta
    values[CashRegisterSession.version_id] = CashRegisterSession.version_id + 1

    updated = (
        db.session.query(CashRegisterSession)
        .filter(
            CashRegisterSession.id == session_id,
            CashRegisterSession.status == SESSION_STATUS_OPEN,
            CashRegisterSession.is_deleted.is_(False),
        )
        .update(values, synchronize_session="fetch")
    )
    if updated == 0:
        raise closed_error(f"Cash register session {session_id} is not open")


def record_sale(session_id: int, method: str, amount_cents: int) -> None:
    column = _sales_column(method)
    _apply_totals(session_id, {"sales_total_cents": amount_cents, column: amount_cents})


def record_debt_payment(session_id: int, amount_cents: int) -> None:
    _apply_totals(session_id, {"payments_received_cents": amount_cents})


def record_expense(session_id: int, amount_cents: int) -> None:
    _apply_totals(session_id, {"payments_made_cents": amount_cents})


def reverse_sale(session_id: int, method: str, amount_cents: int) -> None:
    column = _sales_column(method)
    _apply_totals(
        session_id,
        {"sales_total_cents": -amount_cents, column: -amount_cents},
        closed_error=RegisterClosedError,
    )


def reverse_debt_payment(session_id: int, amount_cents: int) -> None:
    _apply_totals(session_id, {"payments_received_cents": -amount_cents}, closed_error=RegisterClosedError)


def reverse_expense(session_id: int, amount_cents: int) -> None:
    _apply_totals(session_id, {"payments_made_cents": -amount_cents}, closed_error=RegisterClosedError)


def post_payment(session_id: int, payment: PaymentTransaction) -> None:
    """Count a payment in the session totals that match its type."""
    if payment.type == "sale":
        record_sale(session_id, payment.payment_method, payment.amount_cents)
    elif payment.type == "debt_payment":
        record_debt_payment(session_id, payment.amount_cents)
    elif payment.type == "expense":
        record_expense(session_id, payment.amount_cents)
    else:
        raise ValidationError(f"Unknown payment type: {payment.type}")


def unpost_payment(session_id: int, payment: PaymentTransaction) -> None:
    """Undo post_payment. Raises RegisterClosedError if the session closed since."""
    if payment.type == "sale":
        reverse_sale(session_id, payment.payment_method, payment.amount_cents)
    elif payment.type == "debt_payment":
        reverse_debt_payment(session_id, payment.amount_cents)
    elif payment.type == "expense":
        reverse_expense(session_id, payment.amount_cents)
    else:
        raise ValidationError(f"Unknown payment type: {payment.type}")


# =============================================================================
# QUERIES
# =============================================================================

def get_register(session_id: int, *, include_deleted: bool = False) -> CashRegisterSession:
    session = db.session.get(CashRegisterSession, session_id)
    if session is None or (session.is_deleted and not include_deleted):
        raise NotFoundError("Cash register not found")
    return session


def list_registers(
    *,
    page: int | None = None,
    per_page: int | None = None,
    status: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    include_deleted: bool = False,
) -> dict:
    """
    List sessions, newest first.

    start_date / end_date filter on opened_at and are inclusive calendar days.
    """
    if status is not None and status not in (SESSION_STATUS_OPEN, SESSION_STATUS_CLOSED):
        raise ValidationError("status must be 'open' or 'closed'")

    query = db.session.query(CashRegisterSession)
    if not include_deleted:
        query = query.filter(CashRegisterSession.is_deleted.is_(False))
    if status:
        query = query.filter(CashRegisterSession.status == status)
    if start_date:
        query = query.filter(CashRegisterSession.opened_at >= day_bounds(start_date)[0])
    if end_date:
        query = query.filter(CashRegisterSession.opened_at < day_bounds(end_date)[1])

    query = query.order_by(CashRegisterSession.opened_at.desc(), CashRegisterSession.id.desc())
    return paginate(query, page=page, per_page=per_page)


def list_deleted_registers(*, page: int | None = None, per_page: int | None = None) -> dict:
    query = (
        db.session.query(CashRegisterSession)
        .filter(CashRegisterSession.is_deleted.is_(True))
        .order_by(CashRegisterSession.deleted_at.desc(), CashRegisterSession.id.desc())
    )
    return paginate(query, page=page, per_page=per_page)


def get_register_summary(session_id: int) -> dict:
    """
    Break a session down by the payments behind its totals.

    Counted payments (posted to this session) are grouped into sales by
    method, debt receipts by method and expenses by category. Payments created
    in this session that still wait for settlement are reported separately.
    """
    session = get_register(session_id, include_deleted=True)

    counted = db.session.query(PaymentTransaction).filter(
        PaymentTransaction.posted_register_id == session_id,
        PaymentTransaction.status != "cancelled",
        PaymentTransaction.is_deleted.is_(False),
    ).all()

    sales_by_method: dict[str, int] = defaultdict(int)
    debt_by_method: dict[str, int] = defaultdict(int)
    expenses_by_category: dict[str, int] = defaultdict(int)
    for p in counted:
        if p.type == "sale":
            sales_by_method[p.payment_method] += p.amount_cents
        elif p.type == "debt_payment":
            debt_by_method[p.payment_method] += p.amount_cents
        elif p.type == "expense":
            expenses_by_category[p.category or "uncategorized"] += p.amount_cents

    awaiting = db.session.query(
        PaymentTransaction.payment_method,
        func.count(PaymentTransaction.id),
        func.coalesce(func.sum(PaymentTransaction.amount_cents), 0),
    ).filter(
        PaymentTransaction.cash_register_id == session_id,
        PaymentTransaction.posted_register_id.is_(None),
        PaymentTransaction.status == "pending",
        PaymentTransaction.is_deleted.is_(False),
    ).group_by(PaymentTransaction.payment_method).all()

    return {
        "register": session.to_dict(),
        "sales_by_method": dict(sales_by_method),
        "debt_payments_by_method": dict(debt_by_method),
        "expenses_by_category": dict(expenses_by_category),
        "awaiting_settlement": {
            method: {"count": count, "amount_cents": int(total)}
            for method, count, total in awaiting
        },
        "counted_payments": len(counted),
    }


def get_daily_summary(day: date) -> dict:
    """
    Aggregate every session opened on a calendar day.

    Raises:
        NotFoundError: If no session was opened that day
    """
    start, end = day_bounds(day)
    sessions = db.session.query(CashRegisterSession).filter(
        CashRegisterSession.opened_at >= start,
        CashRegisterSession.opened_at < end,
        CashRegisterSession.is_deleted.is_(False),
    ).order_by(CashRegisterSession.opened_at.asc()).all()

    if not sessions:
        raise NotFoundError(f"No cash register found for {day.isoformat()}")

    sales = defaultdict(int)
    for s in sessions:
        for key, value in s.sales_dict().items():
            sales[key] += value

    expenses = db.session.query(
        PaymentTransaction.category,
        func.coalesce(func.sum(PaymentTransaction.amount_cents), 0),
    ).filter(
        PaymentTransaction.type == "expense",
        PaymentTransaction.date >= start,
        PaymentTransaction.date < end,
        PaymentTransaction.status != "cancelled",
        PaymentTransaction.is_deleted.is_(False),
    ).group_by(PaymentTransaction.category).all()

    closed = [s for s in sessions if not s.is_open]
    return {
        "date": day.isoformat(),
        "sessions": [s.to_dict() for s in sessions],
        "session_count": len(sessions),
        "open_sessions": len(sessions) - len(closed),
        "opening_balance_cents": sum(s.opening_balance_cents for s in sessions),
        "closing_balance_cents": sum(s.closing_balance_cents or 0 for s in closed),
        "variance_cents": sum(s.variance_cents or 0 for s in closed),
        "sales": dict(sales),
        "payments": {
            "received": sum(s.payments_received_cents for s in sessions),
            "made": sum(s.payments_made_cents for s in sessions),
        },
        "expenses_by_category": {(category or "uncategorized"): int(total) for category, total in expenses},
    }
