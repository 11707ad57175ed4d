"""
Check compensation sub-ledger.

A check is counted in the session the day it is received. Compensation
only records what the bank did with it afterwards:

    pending -> compensated   payment completes, totals unchanged
    pending -> rejected      payment cancelled, counted effects reversed

Both outcomes are terminal.
"""

from __future__ import annotations

from datetime import date

from ..extensions import db
from ..models import PaymentCheckDetail, PaymentTransaction
from optiledger.time_utils import day_bounds, utcnow
from optiledger.validation import NotFoundError, ValidationError
from .concurrency import lock_for_update, run_with_retry
from .payment_schemas import STATUS_CANCELLED, STATUS_COMPLETED
from .payment_service import InvalidTransitionError, mark_cancelled, reverse_payment_effects


CHECK_PENDING = "pending"
CHECK_COMPENSATED = "compensated"
CHECK_REJECTED = "rejected"
CHECK_STATUSES = (CHECK_PENDING, CHECK_COMPENSATED, CHECK_REJECTED)


class MissingReasonError(ValidationError):
    """Raised when a check is rejected without a reason."""


def update_check_compensation_status(
    payment_id: int,
    new_status: str,
    rejection_reason: str | None = None,
    actor: str | None = None,
) -> PaymentTransaction:
    """
    Move a check through its compensation state machine.

    Raises:
        ValidationError: Unknown status
        NotFoundError: Payment missing, deleted, or not a check
        InvalidTransitionError: From a terminal state, or back to pending
        MissingReasonError: Rejecting without a reason
    """
    if new_status not in CHECK_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(CHECK_STATUSES)}")
    reason = (rejection_reason or "").strip() or None
    if new_status == CHECK_REJECTED and not reason:
        raise MissingReasonError("rejection_reason is required when rejecting a check")

    def _op():
        payment = lock_for_update(
            db.session.query(PaymentTransaction).filter(
                PaymentTransaction.id == payment_id,
                PaymentTransaction.is_deleted.is_(False),
            )
        ).first()
        if payment is None or payment.payment_method != "check" or payment.check_detail is None:
            raise NotFoundError("Check payment not found")

        detail = payment.check_detail
        if detail.compensation_status != CHECK_PENDING:
            raise InvalidTransitionError(f"Check is already {detail.compensation_status}")
        if new_status == CHECK_PENDING:
            raise InvalidTransitionError("Check is already pending")
        if payment.status == STATUS_CANCELLED:
            raise InvalidTransitionError("Cannot change compensation of a cancelled payment")

        detail.compensation_status = new_status
        detail.compensation_updated_at = utcnow()

        if new_status == CHECK_COMPENSATED:
            payment.status = STATUS_COMPLETED
            payment.settled_at = detail.compensation_updated_at
        else:
            detail.rejection_reason = reason
            reverse_payment_effects(payment, strict_register=False)
            mark_cancelled(payment, actor or payment.created_by, f"Cheque devolvido: {reason}")

        db.session.commit()
        return payment

    return run_with_retry(_op)


def get_checks_by_status(
    status: str,
    start_date: date | None = None,
    end_date: date | None = None,
) -> list[PaymentTransaction]:
    """Check payments by compensation status; dates filter on the check date (inclusive days)."""
    if status not in CHECK_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(CHECK_STATUSES)}")

    query = (
        db.session.query(PaymentTransaction)
        .join(PaymentCheckDetail, PaymentCheckDetail.payment_id == PaymentTransaction.id)
        .filter(
            PaymentTransaction.payment_method == "check",
            PaymentTransaction.is_deleted.is_(False),
            PaymentCheckDetail.compensation_status == status,
        )
    )
    if start_date:
        query = query.filter(PaymentCheckDetail.check_date >= day_bounds(start_date)[0])
    if end_date:
        query = query.filter(PaymentCheckDetail.check_date < day_bounds(end_date)[1])
    return query.order_by(PaymentCheckDetail.check_date.asc(), PaymentTransaction.id.asc()).all()
