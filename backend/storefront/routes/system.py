# backend/storefront/routes/system.py
"""
System health and version endpoints.

/health runs four checks. The database and session checks prove the tables
answer, and the inventory check flags any product whose stock fell below
zero. The payment check reports which verifier is active, so a deployment
running on the client-reported fallback shows up as "degraded".
"""

import sys
import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db
from ..models import Order, Product, SessionToken
from storefront.time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)

API_VERSION = "1.0.0"
LOW_STOCK_THRESHOLD = 5


def _timed(name: str, check) -> dict:
    """Run check(), attach its latency, and turn a crash into an unhealthy result."""
    started = time.perf_counter()
    try:
        result = check()
    except Exception:
        current_app.logger.exception("%s health check failed", name)
        result = {"status": "unhealthy", "error": f"{name} check failed"}
    result["latency_ms"] = round((time.perf_counter() - started) * 1000, 2)
    return result


def _database() -> dict:
    db.session.execute(text("SELECT 1"))
    return {
        "status": "healthy",
        "details": {"orders": db.session.query(Order).count()},
    }


def _inventory() -> dict:
    oversold = db.session.query(Product).filter(Product.stock < 0).count()
    low_stock = db.session.query(Product).filter(
        Product.is_active.is_(True),
        Product.stock < LOW_STOCK_THRESHOLD,
    ).count()

    details = {"negative_stock_products": oversold, "low_stock_products": low_stock}
    if oversold:
        return {"status": "unhealthy", "error": "Negative stock detected", "details": details}
    return {"status": "healthy", "details": details}


def _sessions() -> dict:
    now = utcnow()
    live = db.session.query(SessionToken).filter(
        SessionToken.is_revoked.is_(False),
        SessionToken.expires_at >= now,
    ).count()
    return {"status": "healthy", "details": {"live_sessions": live}}


def _payment_verifier() -> dict:
    verifier = current_app.extensions.get("storefront.payment_verifier")
    if verifier is None:
        return {"status": "unhealthy", "error": "Payment verifier not configured"}

    details = {"verifier": verifier.name}
    if verifier.name == "gateway":
        return {"status": "healthy", "details": details}
    return {
        "status": "degraded",
        "warning": "Payments are not confirmed with the gateway",
        "details": details,
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: any check unhealthy
    """
    checks = {
        "database": _timed("Database", _database),
        "inventory": _timed("Inventory", _inventory),
        "sessions": _timed("Session", _sessions),
        "payment_verifier": _timed("Payment verifier", _payment_verifier),
    }

    statuses = {check["status"] for check in checks.values()}
    if "unhealthy" in statuses:
        overall, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall, http_status = "degraded", 200
    else:
        overall, http_status = "healthy", 200

    return {
        "status": overall,
        "timestamp": to_utc_z(utcnow()),
        "checks": checks,
    }, http_status


@system_bp.get("/version")
def version():
    # No credentials or database URLs here
    return {
        "api_version": API_VERSION,
        "environment": "development" if current_app.debug else "production",
        "python_version": sys.version.split()[0],
        "payment_verifier": current_app.extensions["storefront.payment_verifier"].name,
    }
