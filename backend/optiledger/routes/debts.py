# Overview: Flask API routes for client debt; exposes the debt aggregator.

# backend/optiledger/routes/debts.py
"""
Client Debt API Routes

WHY: Collections staff need the live debt of a client and the orders
behind it, and a way to repair cached debt after manual data fixes.
"""

from flask import Blueprint, request, jsonify, current_app

from ..services import debt_service
from ..validation import NotFoundError, ValidationError, coerce_int, require_payload
from ..decorators import require_actor


debts_bp = Blueprint("debts", __name__, url_prefix="/api/debts")


@debts_bp.get("/customers/<int:customer_id>")
@require_actor
def customer_debt_route(customer_id: int):
    try:
        return jsonify(debt_service.compute_debt(customer_id).to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@debts_bp.get("/legacy-clients/<int:client_id>")
@require_actor
def legacy_client_debt_route(client_id: int):
    try:
        return jsonify(debt_service.compute_debt(client_id, legacy=True).to_dict()), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@debts_bp.post("/recalculate")
@require_actor
def recalculate_debts_route():
    """
    Rewrite cached client debt from live order data.

    Request body (all optional; empty body recalculates every active client):
    {
        "customer_id": 3
    }
    or
    {
        "legacy_client_id": 7
    }

    Returns:
    - 200: {"updated": n, "clients": [{"id", "kind", "old", "new", "diff"}]}
    """
    try:
        data = require_payload(request.get_json(silent=True))
        customer_id = coerce_int(data.get("customer_id"), "customer_id", required=False)
        legacy_client_id = coerce_int(data.get("legacy_client_id"), "legacy_client_id", required=False)
        if customer_id is not None and legacy_client_id is not None:
            raise ValidationError("Provide customer_id or legacy_client_id, not both")

        if legacy_client_id is not None:
            result = debt_service.recalculate_client_debts(legacy_client_id, legacy=True)
        else:
            result = debt_service.recalculate_client_debts(customer_id)
        return jsonify(result.to_dict()), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except Exception:
        current_app.logger.exception("Failed to recalculate client debts")
        return jsonify({"error": "Internal server error"}), 500
