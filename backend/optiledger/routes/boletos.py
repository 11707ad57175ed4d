# Overview: Flask API routes for bank slip (boleto) registration and reconciliation.

# backend/optiledger/routes/boletos.py
"""
Boleto API Routes

WHY: Bank-slip payments are registered at the bank and settle when the
bank reports them paid. These endpoints drive the gateway for a single
payment or for every pending slip.

DESIGN:
- Gateway failures return 502 with the gateway's code and details; the
  ledger payment is never rolled back by them
- /health is unauthenticated and never exposes credentials
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import boleto_service
from ..services.boleto_gateway import get_gateway
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_int,
    coerce_str,
    require_payload,
)
from ..decorators import require_actor
from ..time_utils import parse_iso_date


boletos_bp = Blueprint("boletos", __name__, url_prefix="/api/boletos")


def _gateway_error_response(error, payment=None):
    body = {"error": error.message, "code": error.code, "details": error.details}
    if payment is not None:
        body["payment"] = payment.to_dict()
    return jsonify(body), 502


@boletos_bp.get("/health")
def gateway_health_route():
    """
    Gateway configuration and token check.

    Returns:
    - 200: Token obtained
    - 503: Not configured or authentication failed
    """
    gateway = get_gateway()
    info = gateway.describe()
    connected = info["configured"] and gateway.test_connection()
    info["connected"] = connected
    return jsonify(info), 200 if connected else 503


@boletos_bp.post("/payments/<int:payment_id>/issue")
@require_actor
def issue_boleto_route(payment_id: int):
    """
    Register a bank slip at the bank for a pending bank-slip payment.

    Request body (all optional):
    {
        "payer": {"name": "...", "document": "123.456.789-09", "email": "..."},
        "due_date": "2026-04-10"
    }

    Without a payer the payment's client (name + CPF) is used. Without a
    due date the first installment's due date is used.

    Returns:
    - 201: Slip registered (payment includes bank_slip barcode and line)
    - 409: Payment not pending, or slip already issued
    - 502: Gateway failure (stored on the payment)
    """
    try:
        data = require_payload(request.get_json(silent=True))
        payer = boleto_service.payer_from_dict(data["payer"]) if data.get("payer") is not None else None
        try:
            due_date = parse_iso_date(data.get("due_date"))
        except (ValueError, AttributeError):
            raise ValidationError("due_date must be a YYYY-MM-DD date")

        payment, result = boleto_service.issue_boleto(payment_id, payer=payer, due_date=due_date)
        if not result.ok:
            return _gateway_error_response(result.error, payment)
        return jsonify({"payment": payment.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to issue boleto for payment %s", payment_id)
        return jsonify({"error": "Internal server error"}), 500


@boletos_bp.post("/payments/<int:payment_id>/reconcile")
@require_actor
def reconcile_boleto_route(payment_id: int):
    """
    Poll the bank for one slip and settle the payment if it was paid.

    Returns:
    - 200: {"payment", "boleto_status", "status_changed", "settled"}
    - 502: Gateway failure
    """
    try:
        outcome = boleto_service.reconcile_boleto(payment_id, actor=g.actor_id)
        if not outcome.result.ok:
            return _gateway_error_response(outcome.result.error, outcome.payment)
        return jsonify({
            "payment": outcome.payment.to_dict(),
            "boleto_status": outcome.result.data.to_dict(),
            "status_changed": outcome.status_changed,
            "settled": outcome.settled,
        }), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to reconcile boleto for payment %s", payment_id)
        return jsonify({"error": "Internal server error"}), 500


@boletos_bp.post("/payments/<int:payment_id>/cancel")
@require_actor
def cancel_boleto_route(payment_id: int):
    """
    Cancel a registered slip at the bank. The ledger payment is untouched.

    Request body:
    {
        "reason": "ACERTOS"
    }
    """
    try:
        data = require_payload(request.get_json(silent=True))
        reason = coerce_str(data.get("reason"), "reason")

        payment, result = boleto_service.cancel_issued_boleto(payment_id, reason)
        if not result.ok:
            return _gateway_error_response(result.error, payment)
        return jsonify({"payment": payment.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to cancel boleto for payment %s", payment_id)
        return jsonify({"error": "Internal server error"}), 500


@boletos_bp.get("/<nosso_numero>/status")
@require_actor
def boleto_status_route(nosso_numero: str):
    """Query the bank directly for a slip's status (no local changes)."""
    result = get_gateway().get_boleto_status(nosso_numero)
    if not result.ok:
        return _gateway_error_response(result.error)
    return jsonify({"boleto_status": result.data.to_dict()}), 200


@boletos_bp.post("/sync")
@require_actor
def sync_boletos_route():
    """
    Reconcile every pending, issued slip.

    Request body (optional, one of):
    {
        "customer_id": 3
    }
    {
        "legacy_client_id": 7
    }

    Returns:
    - 200: {"total_processed", "updated_payments", "settled_payments", "errors", "summary"}
    """
    try:
        data = require_payload(request.get_json(silent=True))
        customer_id = coerce_int(data.get("customer_id"), "customer_id", required=False)
        legacy_client_id = coerce_int(data.get("legacy_client_id"), "legacy_client_id", required=False)

        result = boleto_service.sync_pending_boletos(
            customer_id,
            actor=g.actor_id,
            legacy_client_id=legacy_client_id,
        )
        return jsonify(result.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Boleto sync failed")
        return jsonify({"error": "Internal server error"}), 500


@boletos_bp.get("/sync/stats")
@require_actor
def sync_stats_route():
    return jsonify(boleto_service.get_sync_stats()), 200
