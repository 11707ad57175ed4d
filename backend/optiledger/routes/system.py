# backend/optiledger/routes/system.py
"""
System health and version endpoints.

Reports database reachability and boleto gateway configuration for
deployment debugging.
"""

import sys
import time
from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import CashRegisterSession, PaymentTransaction
from ..services.boleto_gateway import get_gateway
from optiledger.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity with a few cheap ledger queries.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        session_count = db.session.query(func.count(CashRegisterSession.id)).scalar()
        open_count = db.session.query(func.count(CashRegisterSession.id)).filter(
            CashRegisterSession.status == "open",
            CashRegisterSession.is_deleted.is_(False),
        ).scalar()
        payment_count = db.session.query(func.count(PaymentTransaction.id)).scalar()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "register_sessions": session_count,
                "open_registers": open_count,
                "payments": payment_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


def check_boleto_gateway_config() -> dict:
    """
    Configuration-only check (no network call). An unconfigured gateway is
    degraded, not unhealthy: the ledger works without it.
    """
    info = get_gateway().describe()
    if not info["configured"]:
        return {"status": "degraded", "warning": "Boleto gateway not configured", "details": info}
    return {"status": "healthy", "details": info}


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: Healthy or degraded
    - 503: Database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    gateway_health = check_boleto_gateway_config()

    all_checks = [database_health, gateway_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "boleto_gateway": gateway_health,
        }
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment information."""
    env = "production" if not current_app.debug else "development"

    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
