# Overview: Service-layer operations for the payment ledger; encapsulates business logic and database work.

"""
Payment Ledger Service

WHY: Sales, debt payments and expenses are recorded against the open cash
register session. Each recorded payment moves session totals, the linked
order's payment history and the client's cached debt together.

DESIGN PRINCIPLES:
- One transaction per operation: validation first, then every effect, then commit
- A payment is counted in session totals at most once (posted_register_id)
- cash/pix/debit/credit complete immediately; check is counted immediately
  but stays pending until compensation; bank slips and promissory notes are
  counted only when they settle
- Cancellation reverses exactly what was counted; soft delete only hides
- Status moves one way: pending -> completed, pending|completed -> cancelled
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from ..extensions import db
from ..models import (
    Customer,
    LegacyClient,
    Order,
    OrderPaymentEntry,
    PaymentBankSlipDetail,
    PaymentCheckDetail,
    PaymentDebtInstallment,
    PaymentPromissoryNote,
    PaymentTransaction,
)
from optiledger.time_utils import day_bounds, utcnow
from optiledger.validation import ConflictError, NotFoundError, ValidationError
from . import debt_service, order_status_service, register_service
from .concurrency import lock_for_update, run_with_retry
from .pagination import paginate
from .payment_schemas import (
    DEFERRED_METHODS,
    INSTANT_METHODS,
    PAYMENT_METHODS,
    PAYMENT_TYPES,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_PENDING,
    BankSlipPayload,
    CheckPayload,
    PaymentInput,
    PromissoryNotePayload,
    parse_payment_input,
)


logger = logging.getLogger(__name__)


class AlreadyCancelledError(ConflictError):
    """Raised when cancelling a payment that is already cancelled."""


class InvalidTransitionError(ConflictError):
    """Raised for a status change the payment's state machine does not allow."""


# =============================================================================
# PAYMENT CREATION
# =============================================================================

def _resolve_order(inp: PaymentInput) -> Order | None:
    if inp.order_id is None:
        return None
    order = db.session.get(Order, inp.order_id)
    if order is None or order.is_deleted:
        raise NotFoundError("Order not found")
    if order.status == "cancelled":
        raise ValidationError("Cannot record a payment for a cancelled order")
    return order


def _resolve_client(customer_id: int | None, legacy_client_id: int | None) -> None:
    if customer_id is not None and db.session.get(Customer, customer_id) is None:
        raise NotFoundError("Customer not found")
    if legacy_client_id is not None and db.session.get(LegacyClient, legacy_client_id) is None:
        raise NotFoundError("Legacy client not found")


def _attach_payload(payment: PaymentTransaction, inp: PaymentInput) -> None:
    payload = inp.payload
    if isinstance(payload, CheckPayload):
        payment.check_detail = PaymentCheckDetail(
            bank=payload.bank,
            check_number=payload.check_number,
            check_date=payload.check_date,
            account_holder=payload.account_holder,
            branch=payload.branch,
            account_number=payload.account_number,
            presentation_date=payload.presentation_date,
            compensation_status="pending",
        )
    elif isinstance(payload, BankSlipPayload):
        payment.bank_slip_detail = PaymentBankSlipDetail(code=payload.code, bank=payload.bank)
    elif isinstance(payload, PromissoryNotePayload):
        payment.promissory_note = PaymentPromissoryNote(number=payload.number)

    if inp.installments is not None:
        payment.installment_current = inp.installments.current
        payment.installment_total = inp.installments.total
        payment.installment_value_cents = inp.installments.value_cents

    if inp.client_debt is not None:
        for number, due_date in enumerate(inp.client_debt.due_dates, start=1):
            payment.debt_installments.append(PaymentDebtInstallment(
                number=number,
                amount_cents=inp.client_debt.installment_value_cents,
                due_date=due_date,
                status="open",
            ))


def create_payment(data, created_by: str) -> PaymentTransaction:
    """
    Record a payment against the open cash register session.

    Args:
        data: Raw request payload (see payment_schemas.parse_payment_input)
        created_by: Acting user id

    Raises:
        ValidationError: Invalid payload or business rule (before any write)
        NotFoundError: Referenced order or client missing
        NoOpenRegisterError: No open session
    """
    if not created_by:
        raise ValidationError("created_by is required")
    inp = parse_payment_input(data)

    def _op():
        order = _resolve_order(inp)

        customer_id = inp.customer_id
        legacy_client_id = inp.legacy_client_id
        if order is not None:
            # A payment on an order belongs to the order's client
            if customer_id is None and legacy_client_id is None:
                customer_id = order.customer_id
                legacy_client_id = order.legacy_client_id
            elif (customer_id, legacy_client_id) != (order.customer_id, order.legacy_client_id):
                raise ValidationError("Payment client does not match the order's client")
        _resolve_client(customer_id, legacy_client_id)

        if inp.type == "debt_payment" and order is None:
            owed = debt_service.compute_debt_cents(customer_id=customer_id, legacy_client_id=legacy_client_id)
            owed -= debt_service.pending_debt_payments_cents(customer_id=customer_id, legacy_client_id=legacy_client_id)
            if inp.amount_cents > owed:
                raise ValidationError(
                    f"Debt payment of {inp.amount_cents} exceeds outstanding debt of {owed}"
                )

        session = register_service.get_current_register()

        payment = PaymentTransaction(
            amount_cents=inp.amount_cents,
            date=inp.date,
            type=inp.type,
            payment_method=inp.payment_method,
            status=STATUS_COMPLETED if inp.payment_method in INSTANT_METHODS else STATUS_PENDING,
            order_id=inp.order_id,
            customer_id=customer_id,
            legacy_client_id=legacy_client_id,
            institution_id=inp.institution_id,
            cash_register_id=session.id,
            description=inp.description,
            category=inp.category,
            created_by=created_by,
        )
        _attach_payload(payment, inp)
        if payment.status == STATUS_COMPLETED:
            payment.settled_at = utcnow()

        db.session.add(payment)
        db.session.flush()

        if inp.payment_method not in DEFERRED_METHODS:
            _post_to_session(payment, session.id)
            _apply_to_orders(payment)

        _refresh_dependents(payment)
        db.session.commit()
        return payment

    return run_with_retry(_op)


# =============================================================================
# EFFECTS (session totals, order history, client debt)
# =============================================================================

def _post_to_session(payment: PaymentTransaction, session_id: int) -> None:
    register_service.post_payment(session_id, payment)
    payment.posted_register_id = session_id


def _apply_to_orders(payment: PaymentTransaction, *, strict: bool = True) -> None:
    """Add the payment to order history (directly, or spread over open orders)."""
    if payment.type == "expense":
        return
    if payment.order_id is not None:
        order = db.session.get(Order, payment.order_id)
        order.payment_history.append(OrderPaymentEntry(
            payment_id=payment.id,
            amount_cents=payment.amount_cents,
            method=payment.payment_method,
            paid_at=payment.date,
        ))
    elif payment.type == "debt_payment":
        debt_service.allocate_debt_payment(payment, strict=strict)


def _remove_from_orders(payment: PaymentTransaction) -> set[int]:
    """Drop the payment's history entries. Returns the affected order ids."""
    entries = db.session.query(OrderPaymentEntry).filter(
        OrderPaymentEntry.payment_id == payment.id
    ).all()
    order_ids = set()
    for entry in entries:
        order_ids.add(entry.order_id)
        entry.order.payment_history.remove(entry)
    return order_ids


def _refresh_dependents(payment: PaymentTransaction, extra_order_ids=()) -> None:
    order_ids = set(extra_order_ids)
    if payment.order_id is not None:
        order_ids.add(payment.order_id)
    order_ids.update(
        e.order_id for e in db.session.query(OrderPaymentEntry.order_id).filter(
            OrderPaymentEntry.payment_id == payment.id
        )
    )
    for order_id in sorted(order_ids):
        order_status_service.refresh_order_payment_status(order_id)
    debt_service.refresh_client_debt(
        customer_id=payment.customer_id,
        legacy_client_id=payment.legacy_client_id,
    )


def reverse_payment_effects(payment: PaymentTransaction, *, strict_register: bool = True) -> None:
    """
    Undo what a payment counted. Does not commit.

    strict_register=True raises RegisterClosedError when the posting session
    is closed; False leaves a closed session's totals untouched.
    """
    if payment.posted_register_id is not None:
        posted = payment.posted_register
        if posted is not None and posted.is_open:
            register_service.unpost_payment(payment.posted_register_id, payment)
        elif strict_register:
            raise register_service.RegisterClosedError(
                f"Cash register session {payment.posted_register_id} is closed; its totals can no longer change"
            )
        else:
            logger.warning(
                "Payment %s reversed after session %s closed; session totals left unchanged",
                payment.id,
                payment.posted_register_id,
            )

    removed_from = _remove_from_orders(payment)
    for installment in payment.debt_installments:
        if installment.status != "paid":
            installment.status = "cancelled"

    _refresh_dependents(payment, removed_from)


def mark_cancelled(payment: PaymentTransaction, cancelled_by: str, reason: str | None) -> None:
    payment.status = STATUS_CANCELLED
    payment.cancelled_at = utcnow()
    payment.cancelled_by = cancelled_by
    payment.cancellation_reason = reason


# =============================================================================
# STATUS CHANGES
# =============================================================================

def _locked_payment(payment_id: int) -> PaymentTransaction:
    payment = lock_for_update(
        db.session.query(PaymentTransaction).filter(
            PaymentTransaction.id == payment_id,
            PaymentTransaction.is_deleted.is_(False),
        )
    ).first()
    if payment is None:
        raise NotFoundError("Payment not found")
    return payment


def cancel_payment(payment_id: int, cancelled_by: str, reason: str | None = None) -> PaymentTransaction:
    """
    Cancel a payment and reverse its effects.

    Raises:
        NotFoundError: If the payment does not exist (or is deleted)
        AlreadyCancelledError: If it is already cancelled
        RegisterClosedError: If it was counted in a session that is now closed
    """
    if not cancelled_by:
        raise ValidationError("cancelled_by is required")

    def _op():
        payment = _locked_payment(payment_id)
        if payment.status == STATUS_CANCELLED:
            raise AlreadyCancelledError("Payment is already cancelled")

        reverse_payment_effects(payment, strict_register=True)
        mark_cancelled(payment, cancelled_by, reason)

        db.session.commit()
        return payment

    return run_with_retry(_op)


def settle_payment(
    payment_id: int,
    settled_by: str,
    paid_amount_cents: int | None = None,
    paid_at: datetime | None = None,
) -> PaymentTransaction:
    """
    Complete a pending bank slip or promissory note.

    The amount is counted in the currently open session. When no session is
    open the payment still completes and reaches order history and debt,
    but no session total moves.

    Raises:
        NotFoundError: If the payment does not exist (or is deleted)
        InvalidTransitionError: If the payment is not a pending bank slip or promissory note
    """
    if not settled_by:
        raise ValidationError("settled_by is required")

    def _op():
        payment = _locked_payment(payment_id)
        if payment.payment_method not in DEFERRED_METHODS:
            raise InvalidTransitionError(f"{payment.payment_method} payments do not settle later")
        if payment.status != STATUS_PENDING:
            raise InvalidTransitionError(f"Cannot settle a {payment.status} payment")

        if paid_amount_cents is not None and paid_amount_cents != payment.amount_cents:
            logger.warning(
                "Payment %s settled with %s cents against %s expected",
                payment.id,
                paid_amount_cents,
                payment.amount_cents,
            )

        session = register_service.find_open_register()
        if session is not None:
            _post_to_session(payment, session.id)
        else:
            logger.warning("Payment %s settled with no open cash register; session totals unchanged", payment.id)
        _apply_to_orders(payment, strict=False)

        for installment in payment.debt_installments:
            if installment.status == "open":
                installment.status = "paid"

        payment.status = STATUS_COMPLETED
        payment.settled_at = paid_at or utcnow()

        _refresh_dependents(payment)
        db.session.commit()
        return payment

    return run_with_retry(_op)


def soft_delete_payment(payment_id: int, deleted_by: str) -> PaymentTransaction:
    """
    Hide a payment from listings. Session totals and order history are left
    as they are; cancel first to reverse them.

    Raises:
        NotFoundError: If the payment does not exist or is already deleted
    """
    def _op():
        payment = db.session.get(PaymentTransaction, payment_id)
        if payment is None or payment.is_deleted:
            raise NotFoundError("Payment not found")
        payment.is_deleted = True
        payment.deleted_at = utcnow()
        payment.deleted_by = deleted_by
        db.session.commit()
        return payment

    return run_with_retry(_op)


def update_check_compensation_status(payment_id: int, new_status: str, rejection_reason: str | None = None, actor: str | None = None):
    from . import check_service
    return check_service.update_check_compensation_status(payment_id, new_status, rejection_reason, actor)


def recalculate_client_debts(client_id: int | None = None, legacy: bool = False):
    return debt_service.recalculate_client_debts(client_id, legacy)


# =============================================================================
# QUERIES
# =============================================================================

def get_payment(payment_id: int, *, include_deleted: bool = False) -> PaymentTransaction:
    payment = db.session.get(PaymentTransaction, payment_id)
    if payment is None or (payment.is_deleted and not include_deleted):
        raise NotFoundError("Payment not found")
    return payment


def _filtered_query(
    *,
    type: str | None = None,
    payment_method: str | None = None,
    status: str | None = None,
    cash_register_id: int | None = None,
    customer_id: int | None = None,
    legacy_client_id: int | None = None,
    order_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    include_deleted: bool = False,
):
    if type is not None and type not in PAYMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(PAYMENT_TYPES)}")
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
    if status is not None and status not in (STATUS_PENDING, STATUS_COMPLETED, STATUS_CANCELLED):
        raise ValidationError("status must be pending, completed or cancelled")

    query = db.session.query(PaymentTransaction)
    if not include_deleted:
        query = query.filter(PaymentTransaction.is_deleted.is_(False))
    if type:
        query = query.filter(PaymentTransaction.type == type)
    if payment_method:
        query = query.filter(PaymentTransaction.payment_method == payment_method)
    if status:
        query = query.filter(PaymentTransaction.status == status)
    if cash_register_id is not None:
        query = query.filter(PaymentTransaction.cash_register_id == cash_register_id)
    if customer_id is not None:
        query = query.filter(PaymentTransaction.customer_id == customer_id)
    if legacy_client_id is not None:
        query = query.filter(PaymentTransaction.legacy_client_id == legacy_client_id)
    if order_id is not None:
        query = query.filter(PaymentTransaction.order_id == order_id)
    if start_date:
        query = query.filter(PaymentTransaction.date >= day_bounds(start_date)[0])
    if end_date:
        query = query.filter(PaymentTransaction.date < day_bounds(end_date)[1])
    return query.order_by(PaymentTransaction.date.desc(), PaymentTransaction.id.desc())


def list_payments(*, page: int | None = None, per_page: int | None = None, **filters) -> dict:
    """
    List payments, newest first.

    Filters: type, payment_method, status, cash_register_id, customer_id,
    legacy_client_id, order_id, start_date, end_date (inclusive days),
    include_deleted.
    """
    return paginate(_filtered_query(**filters), page=page, per_page=per_page)


def list_deleted_payments(*, page: int | None = None, per_page: int | None = None) -> dict:
    query = (
        db.session.query(PaymentTransaction)
        .filter(PaymentTransaction.is_deleted.is_(True))
        .order_by(PaymentTransaction.deleted_at.desc(), PaymentTransaction.id.desc())
    )
    return paginate(query, page=page, per_page=per_page)


def get_daily_payments(day: date, type: str | None = None) -> dict:
    """Payments dated on a calendar day, with totals by method and type (cancelled excluded)."""
    payments = _filtered_query(type=type, start_date=day, end_date=day).all()
    active = [p for p in payments if p.status != STATUS_CANCELLED]
    return {
        "date": day.isoformat(),
        "payments": [p.to_dict() for p in payments],
        "count": len(payments),
        "totals_by_method": calculate_method_totals(active),
        "totals_by_type": calculate_type_totals(active),
    }


def calculate_method_totals(payments) -> dict:
    totals = {method: 0 for method in PAYMENT_METHODS}
    for p in payments:
        totals[p.payment_method] += p.amount_cents
    return totals


def calculate_type_totals(payments) -> dict:
    totals = {"sales": 0, "debt_payments": 0, "expenses": 0}
    for p in payments:
        if p.type == "sale":
            totals["sales"] += p.amount_cents
        elif p.type == "debt_payment":
            totals["debt_payments"] += p.amount_cents
        elif p.type == "expense":
            totals["expenses"] += p.amount_cents
    totals["net"] = totals["sales"] + totals["debt_payments"] - totals["expenses"]
    return totals
