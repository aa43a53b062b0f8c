# backend/shopledger/routes/system.py
"""
System health endpoint.

Each check reports healthy / degraded / unhealthy with its own latency.
Any unhealthy check turns the response into a 503.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db, notifications
from ..models import InventoryItem, IncomeSummary, Owner
from ..services.notification_service import NullNotifier
from shopledger.time_utils import business_date, to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api/system")


def _timed(label: str, probe) -> dict:
    """Run ``probe`` (returns (status, details)) and wrap it with timing."""
    start_time = time.time()
    try:
        status, details = probe()
        result = {"status": status, "details": details}
    except Exception:
        current_app.logger.exception("%s health check failed", label)
        result = {"status": "unhealthy", "error": f"{label} error"}
    result["latency_ms"] = round((time.time() - start_time) * 1000, 2)
    return result


def _database_probe():
    return "healthy", {
        "owners": db.session.query(Owner).count(),
        "active_items": db.session.query(InventoryItem).filter_by(is_active=True).count(),
    }


def _income_ledger_probe():
    today = business_date()
    rows = db.session.query(IncomeSummary).filter_by(date=today).count()
    return "healthy", {"business_date": today.isoformat(), "owners_with_income_today": rows}


def _notification_probe():
    # Alerts stop but sales keep working, so a disabled backend only degrades
    backend = type(notifications.notifier).__name__
    status = "degraded" if isinstance(notifications.notifier, NullNotifier) else "healthy"
    return status, {"backend": backend}


@system_bp.get("/health")
def health():
    start_time = time.time()
    checks = {
        "database": _timed("Database", _database_probe),
        "income_ledger": _timed("Income ledger", _income_ledger_probe),
        "notifications": _timed("Notifications", _notification_probe),
    }

    statuses = {c["status"] for c in checks.values()}
    if "unhealthy" in statuses:
        overall, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall, http_status = "degraded", 200
    else:
        overall, http_status = "healthy", 200

    return {
        "status": overall,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status
