# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/stockbill/routes/products.py
"""
Product catalog routes.

Cost and sale price changes are appended to price history. A failed history
write never fails the request; it comes back in "warnings".
"""
from flask import Blueprint, request, current_app

from ..models import Product
from ..services.products_service import (
    ProductNotFoundError,
    create_product,
    get_price_history,
    get_product,
    list_products,
    update_product_prices,
)
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    ConflictError,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "cost_cents", "price_cents", "min_stock"},
    required_on_create={"name"},
)

PRODUCT_PRICES_POLICY = ModelValidationPolicy(
    writable_fields={"cost_cents", "price_cents", "min_stock"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products_route():
    """
    List products.

    Query params:
    - include_inactive: bool (optional, default false)
    """
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    products = list_products(include_inactive=include_inactive)
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.post("")
def create_product_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        product, warnings = create_product(
            name=patch["name"],
            sku=patch.get("sku"),
            cost_cents=patch.get("cost_cents"),
            price_cents=patch.get("price_cents"),
            min_stock=patch.get("min_stock") or 0,
        )
    except ConflictError as e:
        return {"error": str(e)}, 409
    except ValidationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    return {"product": product.to_dict(), "warnings": warnings}, 201


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = get_product(product_id)
    except ProductNotFoundError as e:
        return {"error": str(e)}, 404
    return product.to_dict()


@products_bp.patch("/<int:product_id>/prices")
def update_prices_route(product_id: int):
    """
    Change cost, sale price and/or minimum stock.

    History rows are written only for prices that actually changed.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_PRICES_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        product, warnings = update_product_prices(
            product_id,
            cost_cents=patch.get("cost_cents"),
            price_cents=patch.get("price_cents"),
            min_stock=patch.get("min_stock"),
        )
    except ProductNotFoundError as e:
        return {"error": str(e)}, 404
    except ValidationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to update product prices")
        return {"error": "Internal server error"}, 500

    return {"product": product.to_dict(), "warnings": warnings}


@products_bp.get("/<int:product_id>/price-history")
def price_history_route(product_id: int):
    kind = request.args.get("kind")
    try:
        rows = get_price_history(product_id, kind=kind)
    except ProductNotFoundError as e:
        return {"error": str(e)}, 404
    return {"items": [r.to_dict() for r in rows]}
