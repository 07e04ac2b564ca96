# Overview: Flask API routes for registering transactions and card-paid purchases.

# backend/stockbill/routes/transactions.py
"""
Transaction registration routes.

A registration is all or nothing: stock movement and payment rows are
committed together. Sending the same idempotency_key again returns the
stored payments (200) instead of registering twice.
"""
from flask import Blueprint, request, current_app

from ..services.installment_service import InstallmentError
from ..services.inventory_service import StockError, InsufficientStockError
from ..services.transaction_service import (
    TransactionError,
    LotPaymentNotFoundError,
    register_transaction,
    register_purchase,
    get_lot_payment,
)
from ..validation import (
    ValidationError,
    coerce_date,
    coerce_int,
    enforce_rules_transaction,
    enforce_rules_stock_replenish,
)

transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")

TRANSACTION_FIELDS = {
    "direction", "method", "amount_cents", "transaction_date", "description", "card_id",
    "product_id", "quantity", "unit_cost_cents", "installment_count", "idempotency_key", "ordering",
}

PURCHASE_FIELDS = {
    "product_id", "quantity", "unit_cost_cents", "card_id", "purchase_date",
    "total_amount_cents", "installment_count", "description", "idempotency_key",
}

_INT_FIELDS = {
    "amount_cents", "card_id", "product_id", "quantity", "unit_cost_cents",
    "installment_count", "total_amount_cents",
}


def _parse_body(payload, allowed: set, required: set) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    for key in payload:
        if key not in allowed:
            raise ValidationError(f"Field not allowed: {key}")
    missing = sorted(k for k in required if payload.get(k) is None)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    data = {}
    for key, raw in payload.items():
        if raw is None:
            continue
        if key in _INT_FIELDS:
            data[key] = coerce_int(raw, key)
        elif key == "transaction_date":
            data[key] = coerce_date(raw, key)
        elif isinstance(raw, str):
            data[key] = raw.strip()
        else:
            data[key] = raw
    return data


def _domain_error_response(e: Exception):
    if isinstance(e, InsufficientStockError):
        return {"error": str(e), "requested": e.requested, "available": e.available}, 409
    if isinstance(e, StockError) and str(e) == "product not found":
        return {"error": str(e)}, 404
    return {"error": str(e)}, 400


@transactions_bp.post("")
def register_transaction_route():
    """
    Register a sale (EXPENSE) or restock (INCOME) with its payment rows.

    Body:
    - direction, method, amount_cents, transaction_date (required)
    - card_id (required for CARD), installment_count (CARD only, default 1)
    - product_id, quantity, unit_cost_cents (optional stock movement)
    - idempotency_key (optional; replays return the stored rows)
    """
    payload = request.get_json(silent=True) or {}

    try:
        data = _parse_body(
            payload,
            TRANSACTION_FIELDS,
            {"direction", "method", "amount_cents", "transaction_date"},
        )
        data.setdefault("installment_count", 1)
        enforce_rules_transaction(data)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        result = register_transaction(
            direction=data["direction"],
            method=data["method"],
            amount_cents=data["amount_cents"],
            transaction_date=data["transaction_date"],
            description=data.get("description"),
            card_id=data.get("card_id"),
            product_id=data.get("product_id"),
            quantity=data.get("quantity"),
            unit_cost_cents=data.get("unit_cost_cents"),
            installment_count=data["installment_count"],
            idempotency_base=data.get("idempotency_key"),
            ordering=data.get("ordering"),
        )
    except (StockError, InstallmentError, TransactionError) as e:
        return _domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register transaction")
        return {"error": "Internal server error"}, 500

    return result.to_dict(), 200 if result.replayed else 201


@transactions_bp.post("/purchases")
def register_purchase_route():
    """
    Restock paid by card: creates a cost lot and card payments linked to it.

    Body: product_id, quantity, unit_cost_cents, card_id (required);
    purchase_date, total_amount_cents, installment_count, description (optional)
    """
    payload = request.get_json(silent=True) or {}

    try:
        data = _parse_body(
            payload,
            PURCHASE_FIELDS,
            {"product_id", "quantity", "unit_cost_cents", "card_id"},
        )
        enforce_rules_stock_replenish(data)
        if data.get("total_amount_cents") is not None and data["total_amount_cents"] < 0:
            raise ValidationError("total_amount_cents must be >= 0")
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        result = register_purchase(
            product_id=data["product_id"],
            quantity=data["quantity"],
            unit_cost_cents=data["unit_cost_cents"],
            card_id=data["card_id"],
            purchase_date=data.get("purchase_date"),
            total_amount_cents=data.get("total_amount_cents"),
            installment_count=data.get("installment_count", 1),
            description=data.get("description"),
            idempotency_base=data.get("idempotency_key"),
        )
    except (StockError, InstallmentError, TransactionError) as e:
        return _domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register purchase")
        return {"error": "Internal server error"}, 500

    return result.to_dict(), 200 if result.replayed else 201


@transactions_bp.get("/purchases/<int:lot_id>/payment")
def lot_payment_route(lot_id: int):
    try:
        return get_lot_payment(lot_id)
    except LotPaymentNotFoundError as e:
        return {"error": str(e)}, 404
