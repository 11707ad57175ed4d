# Overview: Binds boleto gateway results to local bank-slip payments (issue, reconcile, sync).

"""
Boleto Settlement Service

WHY: A bank-slip payment is recorded as pending in the ledger. The slip is
registered at the bank separately, and the payment only settles when the
bank reports it paid. This service keeps the local bank-slip details in step
with the gateway and settles payments through the payment ledger.

DESIGN:
- Gateway failures never roll back or cancel a payment; they are recorded on
  the bank-slip details and returned to the caller
- Settlement goes through payment_service.settle_payment so session totals,
  order history and client debt move exactly as for a manual settlement
- Sync is run on demand (CLI or API); one failing payment does not stop the run
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Customer, LegacyClient, PaymentBankSlipDetail, PaymentTransaction
from optiledger.time_utils import to_utc_z, utcnow
from optiledger.validation import ConflictError, NotFoundError, ValidationError, coerce_str
from . import payment_service
from .boleto_gateway import (
    BoletoRequest,
    BoletoStatusCode,
    CancelReason,
    GatewayError,
    GatewayResult,
    Payer,
    get_gateway,
)
from .concurrency import run_with_retry
from .payment_schemas import STATUS_PENDING


logger = logging.getLogger(__name__)


@dataclass
class SyncSummary:
    paid: int = 0
    overdue: int = 0
    cancelled: int = 0
    pending: int = 0


@dataclass
class SyncResult:
    total_processed: int = 0
    updated_payments: int = 0
    settled_payments: int = 0
    errors: list[dict] = field(default_factory=list)
    summary: SyncSummary = field(default_factory=SyncSummary)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ReconcileOutcome:
    payment: PaymentTransaction
    result: GatewayResult
    status_changed: bool = False
    settled: bool = False


# =============================================================================
# HELPERS
# =============================================================================

def _bank_slip_payment(payment_id: int) -> PaymentTransaction:
    payment = db.session.get(PaymentTransaction, payment_id)
    if payment is None or payment.is_deleted:
        raise NotFoundError("Payment not found")
    if payment.payment_method != "bank_slip" or payment.bank_slip_detail is None:
        raise ValidationError("Payment is not a bank slip payment")
    return payment


def payer_from_dict(data) -> Payer:
    if not isinstance(data, dict):
        raise ValidationError("payer must be an object")
    document = coerce_str(data.get("document"), "payer.document", max_length=18)
    digits = "".join(ch for ch in document if ch.isdigit())
    if len(digits) not in (11, 14):
        raise ValidationError("payer.document must be a CPF (11 digits) or CNPJ (14 digits)")
    return Payer(
        name=coerce_str(data.get("name"), "payer.name", max_length=128),
        document=digits,
        person_type="PESSOA_FISICA" if len(digits) == 11 else "PESSOA_JURIDICA",
        address=coerce_str(data.get("address"), "payer.address", required=False),
        city=coerce_str(data.get("city"), "payer.city", required=False),
        state=coerce_str(data.get("state"), "payer.state", required=False, max_length=2),
        zip_code=coerce_str(data.get("zip_code"), "payer.zip_code", required=False),
        email=coerce_str(data.get("email"), "payer.email", required=False),
        phone=coerce_str(data.get("phone"), "payer.phone", required=False),
    )


def _payer_from_client(payment: PaymentTransaction) -> Payer:
    client = None
    if payment.customer_id is not None:
        client = db.session.get(Customer, payment.customer_id)
    elif payment.legacy_client_id is not None:
        client = db.session.get(LegacyClient, payment.legacy_client_id)
    if client is None or not client.cpf:
        raise ValidationError("payer is required when the payment's client has no CPF on file")
    return payer_from_dict({
        "name": client.name,
        "document": client.cpf,
        "email": getattr(client, "email", None),
        "phone": getattr(client, "phone", None),
    })


def _record_error(detail: PaymentBankSlipDetail, error: GatewayError) -> None:
    detail.last_error_code = error.code[:64]
    detail.last_error_message = error.message[:255]
    detail.last_synced_at = utcnow()


# =============================================================================
# OPERATIONS
# =============================================================================

def issue_boleto(payment_id: int, payer: Payer | None = None, due_date: date | None = None) -> tuple[PaymentTransaction, GatewayResult]:
    """
    Register a bank slip at the bank for a pending bank-slip payment.

    The due date defaults to the first debt installment's due date. A
    gateway failure is stored on the details and returned; the payment
    itself is untouched.

    Raises:
        NotFoundError: Payment missing
        ValidationError: Not a bank slip, no payer, or no due date
        ConflictError: Payment not pending, or a slip was already issued
    """
    payment = _bank_slip_payment(payment_id)
    detail = payment.bank_slip_detail
    if payment.status != STATUS_PENDING:
        raise ConflictError(f"Cannot issue a boleto for a {payment.status} payment")
    if detail.nosso_numero:
        raise ConflictError(f"Boleto already issued ({detail.nosso_numero})")

    if due_date is None and payment.debt_installments:
        due_date = payment.debt_installments[0].due_date.date()
    if due_date is None:
        raise ValidationError("due_date is required")
    if payer is None:
        payer = _payer_from_client(payment)

    request = BoletoRequest(
        payer=payer,
        amount_cents=payment.amount_cents,
        due_date=due_date,
        our_number=f"PAY{payment.id}",
    )
    result = get_gateway().generate_boleto(request)

    def _op():
        if result.ok:
            receipt = result.data
            detail.nosso_numero = receipt.nosso_numero
            detail.barcode = receipt.barcode
            detail.digitable_line = receipt.digitable_line
            detail.pdf_url = receipt.pdf_url
            detail.qr_code = receipt.qr_code
            detail.gateway_status = BoletoStatusCode.REGISTERED.value
            detail.last_error_code = None
            detail.last_error_message = None
            detail.last_synced_at = utcnow()
        else:
            _record_error(detail, result.error)
        db.session.commit()
        return payment

    return run_with_retry(_op), result


def reconcile_boleto(payment_id: int, actor: str = "system") -> ReconcileOutcome:
    """
    Poll the bank for a slip's status and store it.

    When the bank reports the slip paid and the payment is still pending,
    the payment is settled with the paid amount and date.

    Raises:
        NotFoundError: Payment missing
        ValidationError: Not a bank slip, or no slip issued yet
    """
    payment = _bank_slip_payment(payment_id)
    detail = payment.bank_slip_detail
    if not detail.nosso_numero:
        raise ValidationError("No boleto has been issued for this payment")

    result = get_gateway().get_boleto_status(detail.nosso_numero)
    outcome = ReconcileOutcome(payment=payment, result=result)

    def _op():
        if not result.ok:
            _record_error(detail, result.error)
        else:
            status = result.data
            outcome.status_changed = detail.gateway_status != status.status.value
            detail.gateway_status = status.status.value
            detail.gateway_paid_cents = status.paid_amount_cents
            detail.gateway_paid_at = status.paid_at
            detail.last_error_code = None
            detail.last_error_message = None
            detail.last_synced_at = utcnow()
        db.session.commit()

    run_with_retry(_op)

    if result.ok and result.data.status == BoletoStatusCode.PAID and payment.status == STATUS_PENDING:
        outcome.payment = payment_service.settle_payment(
            payment.id,
            actor,
            paid_amount_cents=result.data.paid_amount_cents,
            paid_at=result.data.paid_at,
        )
        outcome.settled = True
        logger.info("Payment %s settled from boleto %s", payment.id, detail.nosso_numero)

    return outcome


def cancel_issued_boleto(payment_id: int, reason) -> tuple[PaymentTransaction, GatewayResult]:
    """
    Ask the bank to cancel a registered slip. The ledger payment is left
    as it is; cancel it separately if the sale is undone.

    Raises:
        NotFoundError: Payment missing
        ValidationError: Not a bank slip, no slip issued, or invalid reason
    """
    try:
        reason = CancelReason(reason)
    except ValueError:
        raise ValidationError(f"reason must be one of: {', '.join(r.value for r in CancelReason)}")

    payment = _bank_slip_payment(payment_id)
    detail = payment.bank_slip_detail
    if not detail.nosso_numero:
        raise ValidationError("No boleto has been issued for this payment")

    result = get_gateway().cancel_boleto(detail.nosso_numero, reason)

    def _op():
        if result.ok:
            detail.gateway_status = BoletoStatusCode.CANCELLED.value
            detail.last_error_code = None
            detail.last_error_message = None
            detail.last_synced_at = utcnow()
        else:
            _record_error(detail, result.error)
        db.session.commit()
        return payment

    return run_with_retry(_op), result


def sync_pending_boletos(
    customer_id: int | None = None,
    actor: str = "system",
    *,
    legacy_client_id: int | None = None,
) -> SyncResult:
    """
    Reconcile every pending, issued bank slip (optionally for one customer
    or one legacy client).

    Failures are collected per payment in result.errors and the run continues.
    """
    if customer_id is not None and legacy_client_id is not None:
        raise ValidationError("Provide customer_id or legacy_client_id, not both")

    query = (
        db.session.query(PaymentTransaction.id)
        .join(PaymentBankSlipDetail, PaymentBankSlipDetail.payment_id == PaymentTransaction.id)
        .filter(
            PaymentTransaction.payment_method == "bank_slip",
            PaymentTransaction.status == STATUS_PENDING,
            PaymentTransaction.is_deleted.is_(False),
            PaymentBankSlipDetail.nosso_numero.isnot(None),
        )
    )
    if customer_id is not None:
        query = query.filter(PaymentTransaction.customer_id == customer_id)
    if legacy_client_id is not None:
        query = query.filter(PaymentTransaction.legacy_client_id == legacy_client_id)
    payment_ids = [row.id for row in query.order_by(PaymentTransaction.id).all()]

    result = SyncResult(total_processed=len(payment_ids))
    for payment_id in payment_ids:
        try:
            outcome = reconcile_boleto(payment_id, actor=actor)
        except (ValidationError, NotFoundError, ConflictError) as e:
            result.errors.append({"payment_id": payment_id, "error": str(e)})
            continue
        except SQLAlchemyError:
            logger.exception("Database error while syncing payment %s", payment_id)
            result.errors.append({"payment_id": payment_id, "error": "Database error"})
            continue

        if not outcome.result.ok:
            err = outcome.result.error
            result.errors.append({"payment_id": payment_id, "error": err.message, "code": err.code})
            continue

        status = outcome.result.data.status
        if status == BoletoStatusCode.PAID:
            result.summary.paid += 1
        elif status == BoletoStatusCode.OVERDUE:
            result.summary.overdue += 1
        elif status == BoletoStatusCode.CANCELLED:
            result.summary.cancelled += 1
        else:
            result.summary.pending += 1
        if outcome.status_changed:
            result.updated_payments += 1
        if outcome.settled:
            result.settled_payments += 1

    logger.info(
        "Boleto sync processed %s payments: %s updated, %s settled, %s errors",
        result.total_processed,
        result.updated_payments,
        result.settled_payments,
        len(result.errors),
    )
    return result


def get_sync_stats() -> dict:
    """Counts of bank-slip payments by issue and gateway status."""
    base = (
        db.session.query(PaymentBankSlipDetail)
        .join(PaymentTransaction, PaymentTransaction.id == PaymentBankSlipDetail.payment_id)
        .filter(PaymentTransaction.is_deleted.is_(False))
    )
    by_status = dict(
        base.filter(PaymentBankSlipDetail.gateway_status.isnot(None))
        .with_entities(PaymentBankSlipDetail.gateway_status, func.count(PaymentBankSlipDetail.id))
        .group_by(PaymentBankSlipDetail.gateway_status)
        .all()
    )
    last_synced = base.with_entities(func.max(PaymentBankSlipDetail.last_synced_at)).scalar()

    return {
        "total_bank_slips": base.count(),
        "not_issued": base.filter(PaymentBankSlipDetail.nosso_numero.is_(None)).count(),
        "awaiting_payment": base.filter(
            PaymentBankSlipDetail.nosso_numero.isnot(None),
            PaymentTransaction.status == STATUS_PENDING,
        ).count(),
        "with_errors": base.filter(PaymentBankSlipDetail.last_error_code.isnot(None)).count(),
        "by_gateway_status": by_status,
        "last_synced_at": to_utc_z(last_synced),
    }
