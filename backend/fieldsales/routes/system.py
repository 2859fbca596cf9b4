# backend/fieldsales/routes/system.py
"""
System health endpoint.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Company
from fieldsales.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity with a trivial query.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        company_count = db.session.query(Company).count()
        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"companies": company_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/api/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unhealthy
    """
    database_health = check_database_health()
    http_status = 200 if database_health["status"] == "healthy" else 503

    response = {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {"database": database_health},
    }
    return response, http_status
