# backend/stockbill/routes/system.py
"""
System health endpoint.

Reports database reachability and the stock/lot consistency of the catalog.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Product, CostLot, Card
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        card_count = db.session.query(Card).count()
        open_lots = db.session.query(func.count(CostLot.id)).filter(CostLot.remaining_quantity > 0).scalar()

        elapsed_ms = (time.time() - start_time) * 1000

        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "cards": card_count,
                "open_lots": int(open_lots or 0),
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


def check_stock_consistency() -> dict:
    """Products whose aggregate stock disagrees with the sum of their lots."""
    start_time = time.time()
    try:
        lot_totals = (
            db.session.query(
                CostLot.product_id,
                func.coalesce(func.sum(CostLot.remaining_quantity), 0).label("units"),
            )
            .group_by(CostLot.product_id)
            .subquery()
        )
        drifted = (
            db.session.query(Product.id)
            .outerjoin(lot_totals, lot_totals.c.product_id == Product.id)
            .filter(Product.stock != func.coalesce(lot_totals.c.units, 0))
            .all()
        )
        elapsed_ms = (time.time() - start_time) * 1000

        if drifted:
            return {
                "status": "degraded",
                "latency_ms": round(elapsed_ms, 2),
                "warning": "stock out of sync with cost lots (run: flask inventory sync-stock)",
                "details": {"product_ids": [row.id for row in drifted]},
            }
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Stock consistency check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Stock consistency error"
        }


@system_bp.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
    - 200: healthy or degraded (stock drift is repairable, still operational)
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    stock_health = check_stock_consistency()

    all_checks = [database_health, stock_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "stock": stock_health,
        }
    }, http_status
