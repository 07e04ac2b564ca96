# Overview: Flask API routes for cost-lot inventory; parses input and returns JSON responses.

# backend/stockbill/routes/inventory.py
"""
Inventory routes.

Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- received_at is the lot's ordering key and may be back-dated.

Allocation asking for more than the lots hold returns 409 with the requested
and available quantities; nothing is consumed in that case.
"""
from flask import Blueprint, request, current_app

from ..extensions import db
from ..services.concurrency import commit_with_retry
from ..services.inventory_service import (
    StockError,
    InsufficientStockError,
    allocate_stock,
    get_inventory_summary,
    list_cost_lots,
    replenish_stock,
    sync_product_stock,
)
from ..validation import (
    ValidationError,
    coerce_int,
    enforce_rules_stock_replenish,
    enforce_rules_stock_allocate,
)


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _stock_error_response(e: StockError):
    if str(e) == "product not found":
        return {"error": str(e)}, 404
    return {"error": str(e)}, 400


def _read_int_fields(payload: dict, required: tuple, optional: tuple = ()) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    missing = sorted(k for k in required if payload.get(k) is None)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return {
        k: coerce_int(payload[k], k)
        for k in (*required, *optional)
        if payload.get(k) is not None
    }


@inventory_bp.post("/replenish")
def replenish_route():
    """
    Receive stock as a new cost lot.

    Body: product_id, quantity, unit_cost_cents, received_at (optional)
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = _read_int_fields(payload, ("product_id", "quantity", "unit_cost_cents"))
        enforce_rules_stock_replenish(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        result = replenish_stock(
            product_id=patch["product_id"],
            quantity=patch["quantity"],
            unit_cost_cents=patch["unit_cost_cents"],
            received_at=payload.get("received_at"),
        )
    except StockError as e:
        return _stock_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to replenish stock")
        return {"error": "Internal server error"}, 500

    summary = get_inventory_summary(product_id=patch["product_id"])
    return {**result.to_dict(), "summary": summary}, 201


@inventory_bp.post("/allocate")
def allocate_route():
    """
    Consume stock across cost lots.

    Body: product_id, quantity, ordering (optional: lifo_cost_desc | fifo)
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = _read_int_fields(payload, ("product_id", "quantity"))
        enforce_rules_stock_allocate(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        result = allocate_stock(
            product_id=patch["product_id"],
            quantity=patch["quantity"],
            ordering=payload.get("ordering"),
        )
    except InsufficientStockError as e:
        return {"error": str(e), "requested": e.requested, "available": e.available}, 409
    except StockError as e:
        return _stock_error_response(e)
    except ValueError as e:
        # unknown ordering name
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to allocate stock")
        return {"error": "Internal server error"}, 500

    return result.to_dict()


@inventory_bp.get("/<int:product_id>/lots")
def list_lots_route(product_id: int):
    """
    Cost lots for a product, newest first.

    Query params:
    - open_only: bool (optional) - hide fully consumed lots
    - limit: int (optional, default 200, max 1000)
    """
    open_only = request.args.get("open_only", "false").lower() == "true"
    limit = min(request.args.get("limit", default=200, type=int), 1000)

    try:
        lots = list_cost_lots(product_id=product_id, include_empty=not open_only, limit=limit)
    except StockError as e:
        return _stock_error_response(e)

    return {"product_id": product_id, "lots": [lot.to_dict() for lot in lots]}


@inventory_bp.get("/<int:product_id>/summary")
def summary_route(product_id: int):
    try:
        return get_inventory_summary(product_id=product_id)
    except StockError as e:
        return _stock_error_response(e)


@inventory_bp.post("/<int:product_id>/sync")
def sync_route(product_id: int):
    """Recompute the product's aggregate stock from its lots."""
    try:
        stock = sync_product_stock(product_id)
        commit_with_retry()
    except StockError as e:
        db.session.rollback()
        return _stock_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to sync product stock")
        return {"error": "Internal server error"}, 500

    return {"product_id": product_id, "stock": stock}
