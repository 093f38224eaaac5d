# backend/chaintrack/routes/system.py
"""
System health and version endpoints.

Health reports database reachability and serial-range headroom. An
exhausted range is "degraded": the engine still works, but production of
serialized goods will fail until an admin widens the range.
"""

import sys
import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Product, ProductUnit, User
from ..services.serial_service import serial_usage
from chaintrack.time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        details = {
            "users": db.session.query(User).count(),
            "products": db.session.query(Product).count(),
            "units": db.session.query(ProductUnit).count(),
        }
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "details": details,
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


def check_serial_range_health() -> dict:
    try:
        usage = serial_usage()
    except Exception:
        current_app.logger.exception("Serial range health check failed")
        return {"status": "unhealthy", "error": "Serial settings unavailable"}

    details = {
        "range_start": usage["range_start"],
        "range_end": usage["range_end"],
        "available": usage["available"],
        "reclaimed": len(usage["reclaimed"]),
    }
    if usage["available"] == 0 and not usage["reclaimed"]:
        return {"status": "degraded", "warning": "Serial number range exhausted", "details": details}
    return {"status": "healthy", "details": details}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    checks = {"database": database_health}
    if database_health["status"] == "healthy":
        checks["serial_range"] = check_serial_range_health()

    statuses = [c["status"] for c in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    env = "production" if not current_app.debug else "development"
    return {
        "api_version": "1.0.0",
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
