# Overview: Flask API routes for cash register sessions; parses input and returns JSON responses.

# backend/optiledger/routes/registers.py
"""
Cash Register Session API Routes

WHY: Cashiers open the till at the start of the day and close it with a
counted balance. Every payment endpoint depends on exactly one session
being open.

DESIGN:
- Session lifecycle: open -> closed (frozen once closed)
- Closing records the variance against the expected drawer balance
- Soft delete only, refused for the open session
- Totals are never edited here; they move only through payments

SECURITY:
- Every endpoint requires the X-User-Id actor header
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..services import register_service
from ..services.register_service import AlreadyOpenError, NoOpenRegisterError
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_cents,
    coerce_page,
    coerce_str,
    require_payload,
)
from ..decorators import require_actor
from ..time_utils import parse_iso_date, utcnow


registers_bp = Blueprint("registers", __name__, url_prefix="/api/cash-registers")


def _query_date(name: str):
    try:
        return parse_iso_date(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be a YYYY-MM-DD date")


def _page_args():
    """Pagination is opt-in: without ?page= every row is returned."""
    if request.args.get("page") is None:
        return None, None
    return coerce_page(
        request.args.get("page"),
        request.args.get("limit"),
        default_limit=current_app.config.get("PAGINATION_DEFAULT_LIMIT", 50),
    )


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

@registers_bp.post("/open")
@require_actor
def open_register_route():
    """
    Open a new cash register session.

    Request body:
    {
        "opening_balance_cents": 10000,
        "observations": "Troco inicial"  (optional)
    }

    Returns:
    - 201: Session opened
    - 409: A session is already open
    """
    try:
        data = require_payload(request.get_json(silent=True))
        opening = coerce_cents(data.get("opening_balance_cents"), "opening_balance_cents", allow_zero=True)
        observations = coerce_str(data.get("observations"), "observations", required=False, max_length=1000)

        session = register_service.open_register(opening, g.actor_id, observations)
        return jsonify({"register": session.to_dict()}), 201

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except AlreadyOpenError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to open cash register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.post("/close")
@require_actor
def close_register_route():
    """
    Close the open session with the counted drawer balance.

    Request body:
    {
        "closing_balance_cents": 14000,
        "observations": "..."  (optional)
    }

    Returns:
    - 200: Session closed (variance_cents = counted - expected)
    - 404: No open session
    """
    try:
        data = require_payload(request.get_json(silent=True))
        closing = coerce_cents(data.get("closing_balance_cents"), "closing_balance_cents", allow_zero=True)
        observations = coerce_str(data.get("observations"), "observations", required=False, max_length=1000)

        session = register_service.close_register(closing, g.actor_id, observations)
        return jsonify({"register": session.to_dict()}), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NoOpenRegisterError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to close cash register")
        return jsonify({"error": "Internal server error"}), 500


@registers_bp.get("/current")
@require_actor
def current_register_route():
    """Get the open session, or 404 when the till is closed."""
    try:
        session = register_service.get_current_register()
        return jsonify({"register": session.to_dict()}), 200
    except NoOpenRegisterError as e:
        return jsonify({"error": str(e)}), 404


@registers_bp.delete("/<int:session_id>")
@require_actor
def delete_register_route(session_id: int):
    """
    Soft-delete a closed session.

    Returns:
    - 200: Deleted
    - 404: Unknown or already deleted
    - 409: Session is still open
    """
    try:
        session = register_service.soft_delete_register(session_id, g.actor_id)
        return jsonify({"register": session.to_dict()}), 200

    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    except Exception:
        current_app.logger.exception("Failed to delete cash register %s", session_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@registers_bp.get("/")
@registers_bp.get("")
@require_actor
def list_registers_route():
    """
    List sessions, newest first.

    Query params:
    - status: open | closed
    - start_date, end_date: YYYY-MM-DD (inclusive, on opened_at)
    - page, limit: optional pagination
    """
    try:
        page, per_page = _page_args()
        result = register_service.list_registers(
            page=page,
            per_page=per_page,
            status=request.args.get("status") or None,
            start_date=_query_date("start_date"),
            end_date=_query_date("end_date"),
        )
        return jsonify(result), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@registers_bp.get("/deleted")
@require_actor
def list_deleted_registers_route():
    """List soft-deleted sessions (audit view)."""
    try:
        page, per_page = _page_args()
        return jsonify(register_service.list_deleted_registers(page=page, per_page=per_page)), 200
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@registers_bp.get("/daily-summary")
@require_actor
def daily_summary_route():
    """
    Aggregate the sessions opened on one day.

    Query params:
    - date: YYYY-MM-DD (default: today, UTC)
    """
    try:
        day = _query_date("date") or utcnow().date()
        return jsonify(register_service.get_daily_summary(day)), 200

    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@registers_bp.get("/<int:session_id>")
@require_actor
def get_register_route(session_id: int):
    try:
        session = register_service.get_register(session_id)
        return jsonify({"register": session.to_dict()}), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404


@registers_bp.get("/<int:session_id>/summary")
@require_actor
def register_summary_route(session_id: int):
    """Breakdown of a session's totals by the payments behind them."""
    try:
        return jsonify(register_service.get_register_summary(session_id)), 200
    except NotFoundError as e:
        return jsonify({"error": str(e)}), 404
