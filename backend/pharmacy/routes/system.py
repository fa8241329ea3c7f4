# backend/pharmacy/routes/system.py
"""
System health and version endpoints.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db, feeds
from ..models import Medicine, Sale, StockDeduction
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        medicine_count = db.session.query(Medicine).count()
        sale_count = db.session.query(Sale).count()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "medicines": medicine_count,
                "sales": sale_count,
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


def check_commit_log_health() -> dict:
    """
    Sales with PENDING or FAILED stock deductions mean the ledger and the
    journal disagree until someone resumes or reconciles them.
    """
    start_time = time.time()
    try:
        pending = db.session.query(StockDeduction).filter_by(status=StockDeduction.PENDING).count()
        failed = db.session.query(StockDeduction).filter_by(status=StockDeduction.FAILED).count()

        elapsed_ms = (time.time() - start_time) * 1000

        result = {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "pending_deductions": pending,
                "failed_deductions": failed,
            }
        }
        if pending or failed:
            result["status"] = "degraded"
            result["warning"] = "Unfinished sale commits; see /api/sales/unfinished"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Commit log health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Commit log error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (still operational)
    - 503: one or more checks unhealthy
    """
    start_time = time.time()

    database_health = check_database_health()
    commit_log_health = check_commit_log_health()

    all_checks = [database_health, commit_log_health]
    unhealthy_count = sum(1 for check in all_checks if check["status"] == "unhealthy")
    degraded_count = sum(1 for check in all_checks if check["status"] == "degraded")

    if unhealthy_count > 0:
        overall_status = "unhealthy"
        http_status = 503
    elif degraded_count > 0:
        overall_status = "degraded"
        http_status = 200
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
            "commit_log": commit_log_health,
        },
        "feeds": {
            "medicines_subscribers": feeds.medicines.subscriber_count,
            "sales_subscribers": feeds.sales.subscriber_count,
        },
    }

    return response, http_status


@system_bp.get("/version")
def version():
    """
    Version endpoint for deployment debugging.

    Does NOT expose secret keys or database credentials.
    """
    import sys

    env = "production" if not current_app.debug else "development"

    return {
        "api_version": current_app.config["API_VERSION"],
        "environment": env,
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
