# backend/pasal/routes/system.py
"""
System health and version endpoints.

Health checks cover the database, the session table and the pending-payment
backlog, so a stuck reconciliation shows up before shoppers report it.
"""

import os
import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import PendingPayment, Product, SessionToken, User
from pasal.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        product_count = db.session.query(Product).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"users": user_count, "products": product_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


def check_session_service_health() -> dict:
    start_time = time.time()
    try:
        now = utcnow()
        active_sessions = db.session.query(SessionToken).filter(
            SessionToken.is_revoked.is_(False), SessionToken.expires_at >= now
        ).count()
        expired_sessions = db.session.query(SessionToken).filter(
            SessionToken.expires_at < now, SessionToken.is_revoked.is_(False)
        ).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"active_sessions": active_sessions, "expired_pending_cleanup": expired_sessions},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Session service health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Session service error"}


def check_payment_backlog_health() -> dict:
    """Pending payments past their expiry mean the expiry job is not running."""
    start_time = time.time()
    try:
        overdue = db.session.query(PendingPayment).filter(
            PendingPayment.status == "pending", PendingPayment.expires_at < utcnow()
        ).count()
        elapsed_ms = (time.time() - start_time) * 1000
        result = {
            "status": "degraded" if overdue else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"overdue_pending_payments": overdue},
        }
        if overdue:
            result["warning"] = "Run `flask maintenance expire-pending-payments`"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Payment backlog health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Payment backlog error"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "session_service": check_session_service_health(),
        "payments": check_payment_backlog_health(),
    }
    statuses = [check["status"] for check in checks.values()]

    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status


@system_bp.get("/api/version")
def version():
    return {
        "name": "pasal",
        "version": os.environ.get("APP_VERSION", "dev"),
        "build": os.environ.get("BUILD_SHA"),
        "currency": current_app.config["CURRENCY"],
    }
