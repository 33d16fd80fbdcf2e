# backend/medhub/routes/system.py
"""
System health endpoint.

Checks the database and reports whether the payment gateway is configured,
for deployment debugging.
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Order, Provider, SessionToken
from ..models.catalog import VERIFICATION_VERIFIED
from medhub.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        provider_count = db.session.query(Provider).filter_by(verification_status=VERIFICATION_VERIFIED).count()
        order_count = db.session.query(Order).count()
        active_sessions = db.session.query(SessionToken).filter_by(is_revoked=False).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "verified_providers": provider_count,
                "orders": order_count,
                "active_sessions": active_sessions,
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


def check_payment_gateway_config() -> dict:
    """No network call: only whether a base URL and secret key are set."""
    base_url = current_app.config.get("PAYMENT_GATEWAY_BASE_URL")
    if not base_url or not current_app.config.get("PAYMENT_GATEWAY_SECRET_KEY"):
        return {"status": "degraded", "warning": "Payment gateway secret key is not configured"}
    return {"status": "healthy", "details": {"base_url": base_url}}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy, or degraded (still operational)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    gateway_health = check_payment_gateway_config()

    all_checks = [database_health, gateway_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "payment_gateway": gateway_health,
        }
    }

    return response, http_status
