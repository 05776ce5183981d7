# backend/medpos/routes/system.py
"""
System endpoints.

/api/ping is the connectivity probe tills use to decide between committing
a sale directly and queueing it offline.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity.

    Returns dict with status and latency.
    """
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/api/ping")
def ping():
    """
    Connectivity probe.

    Returns:
    - 200: server reachable and database answering
    - 503: server reachable but database down (tills should queue)
    """
    database_health = check_database_health()
    http_status = 200 if database_health["status"] == "healthy" else 503

    return {
        "status": "ok" if http_status == 200 else "unavailable",
        "timestamp": utcnow().isoformat() + "Z",
        "database": database_health,
    }, http_status
