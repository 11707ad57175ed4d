# Overview: Flask API routes for the payment ledger; parses input and returns JSON responses.

# backend/optiledger/routes/payments.py
"""
Payment Ledger API Routes

WHY: Every sale, debt receipt and expense passes through the ledger so the
till, the order and the client's debt stay in step.

DESIGN:
- Creation validates the whole payload before any write
- Cancellation reverses every effect; soft delete only hides the row
- Bank slips and promissory notes settle later (POST /<id>/settle)
- Checks move through compensation (PATCH /<id>/check-status)

SECURITY:
- Every endpoint requires the X-User-Id actor header
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import check_service, payment_service
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_cents,
    coerce_datetime,
    coerce_int,
    coerce_page,
    coerce_str,
    require_payload,
)
from ..decorators import require_actor
from ..time_utils import parse_iso_date, utcnow


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _query_date(name: str):
    try:
        return parse_iso_date(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be a YYYY-MM-DD date")


def _page_args():
    if request.args.get("page") is None:
        return None, None
    return coerce_page(
        request.args.get("page"),
        request.args.get("limit"),
        default_limit=current_app.config.get("PAGINATION_DEFAULT_LIMIT", 50),
    )


# =============================================================================
# LEDGER WRITES
# =============================================================================

@payments_bp.post("/")
@payments_bp.post("")
@require_actor
def create_payment_route():
    """
    Record a payment in the open cash register session.

    Request body:
    {
        "amount_cents": 5000,           (or "amount": "50.00", not both)
        "date": "2026-03-01T10:00:00Z",
        "type": "sale",                  (sale | debt_payment | expense)
        "payment_method": "cash",
        "order_id": 12,                  (optional)
        "customer_id": 3,                (optional; or legacy_client_id)
        "check": {...},                  (check payments)
        "bank_slip": {...},              (bank slip payments)
        "promissory_note": {...},        (promissory note payments)
        "installments": {"current": 1, "total": 3, "value_cents": 1667},
        "client_debt": {"generate_debt": true, "installments": {...}, "due_dates": [...]},
        "category": "aluguel",           (expenses)
        "description": "..."
    }

    Returns:
    - 201: Payment recorded
    - 400: Invalid payload or business rule
    - 404: No open register, or referenced order/client missing
    """
    try:
        data = require_payload(request.get_json(silent=True))
        payment = payment_service.create_payment(data, g.actor_id)
        return jsonify({"payment": payment.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to create payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/cancel")
@require_actor
def cancel_payment_route(payment_id: int):
    """
    Cancel a payment and reverse its effects.

    Request body:
    {
        "reason": "Cliente desistiu"  (optional)
    }

    Returns:
    - 200: Cancelled
    - 404: Unknown payment
    - 409: Already cancelled, or counted in a session that is now closed
    """
    try:
        data = require_payload(request.get_json(silent=True))
        reason = coerce_str(data.get("reason"), "reason", required=False, max_length=255)

        payment = payment_service.cancel_payment(payment_id, g.actor_id, reason)
        return jsonify({"payment": payment.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to cancel payment %s", payment_id)
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/settle")
@require_actor
def settle_payment_route(payment_id: int):
    """
    Settle a pending bank slip or promissory note.

    Request body:
    {
        "paid_amount_cents": 5000,      (optional, informational)
        "paid_at": "2026-03-10"         (optional, default now)
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        paid_amount = coerce_cents(data.get("paid_amount_cents"), "paid_amount_cents", required=False)
        paid_at = coerce_datetime(data.get("paid_at"), "paid_at", required=False)

        payment = payment_service.settle_payment(payment_id, g.actor_id, paid_amount, paid_at)
        return jsonify({"payment": payment.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to settle payment %s", payment_id)
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.patch("/<int:payment_id>/check-status")
@require_actor
def update_check_status_route(payment_id: int):
    """
    Record the bank's compensation outcome for a check.

    Request body:
    {
        "status": "rejected",            (compensated | rejected)
        "rejection_reason": "Sem fundos" (required when rejected)
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        new_status = coerce_str(data.get("status"), "status")
        reason = coerce_str(data.get("rejection_reason"), "rejection_reason", required=False, max_length=255)

        payment = check_service.update_check_compensation_status(payment_id, new_status, reason, g.actor_id)
        return jsonify({"payment": payment.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to update check status for payment %s", payment_id)
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.delete("/<int:payment_id>")
@require_actor
def delete_payment_route(payment_id: int):
    """Soft-delete a payment. Effects are not reversed; cancel first."""
    try:
        payment = payment_service.soft_delete_payment(payment_id, g.actor_id)
        return jsonify({"payment": payment.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to delete payment %s", payment_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@payments_bp.get("/")
@payments_bp.get("")
@require_actor
def list_payments_route():
    """
    List payments, newest first.

    Query params:
    - type, payment_method, status
    - cash_register_id, customer_id, legacy_client_id, order_id
    - start_date, end_date: YYYY-MM-DD (inclusive, on payment date)
    - page, limit: optional pagination
    """
    try:
        page, per_page = _page_args()
        result = payment_service.list_payments(
            page=page,
            per_page=per_page,
            type=request.args.get("type") or None,
            payment_method=request.args.get("payment_method") or None,
            status=request.args.get("status") or None,
            cash_register_id=coerce_int(request.args.get("cash_register_id"), "cash_register_id", required=False),
            customer_id=coerce_int(request.args.get("customer_id"), "customer_id", required=False),
            legacy_client_id=coerce_int(request.args.get("legacy_client_id"), "legacy_client_id", required=False),
            order_id=coerce_int(request.args.get("order_id"), "order_id", required=False),
            start_date=_query_date("start_date"),
            end_date=_query_date("end_date"),
        )
        return jsonify(result), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@payments_bp.get("/daily")
@require_actor
def daily_payments_route():
    """
    Payments on one day with totals by method and by type.

    Query params:
    - date: YYYY-MM-DD (default: today, UTC)
    - type: optional type filter
    """
    try:
        day = _query_date("date") or utcnow().date()
        return jsonify(payment_service.get_daily_payments(day, request.args.get("type") or None)), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@payments_bp.get("/deleted")
@require_actor
def list_deleted_payments_route():
    try:
        page, per_page = _page_args()
        return jsonify(payment_service.list_deleted_payments(page=page, per_page=per_page)), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@payments_bp.get("/checks")
@require_actor
def list_checks_route():
    """
    Check payments by compensation status.

    Query params:
    - status: pending | compensated | rejected (default: pending)
    - start_date, end_date: YYYY-MM-DD (on check date)
    """
    try:
        checks = check_service.get_checks_by_status(
            request.args.get("status") or check_service.CHECK_PENDING,
            _query_date("start_date"),
            _query_date("end_date"),
        )
        return jsonify({"items": [p.to_dict() for p in checks], "count": len(checks)}), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@payments_bp.get("/<int:payment_id>")
@require_actor
def get_payment_route(payment_id: int):
    try:
        payment = payment_service.get_payment(payment_id)
        return jsonify({"payment": payment.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
