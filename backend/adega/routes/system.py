# backend/adega/routes/system.py
"""
System health endpoint.

Reports database connectivity and the number of live dashboard
connections held by the event broadcaster.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Category, Courier, Order, Product
from ..services.broadcast_service import get_broadcaster
from adega.time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        details = {
            "categories": db.session.query(Category).count(),
            "products": db.session.query(Product).count(),
            "orders": db.session.query(Order).count(),
            "couriers": db.session.query(Courier).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except SQLAlchemyError:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_broadcaster_health() -> dict:
    broadcaster = get_broadcaster()
    return {
        "status": "healthy",
        "details": {"connected_clients": broadcaster.channel_count},
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: all checks healthy
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    broadcaster_health = check_broadcaster_health()

    unhealthy = database_health["status"] == "unhealthy"
    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": "unhealthy" if unhealthy else "healthy",
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "broadcaster": broadcaster_health,
        },
    }
    return response, 503 if unhealthy else 200
