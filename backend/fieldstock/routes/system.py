# backend/fieldstock/routes/system.py
"""
System health endpoint.
"""
import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Imei, User
from ..responses import fail, ok

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        imei_count = db.session.query(Imei).count()
        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "details": {"users": user_count, "imeis": imei_count},
        }
    except Exception:
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start_time) * 1000, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    database = check_database_health()
    body = {"status": database["status"], "checks": {"database": database}}
    if database["status"] != "healthy":
        return fail("Database unavailable", 503, data=body)
    return ok(body)
