# backend/stockbill/services/products_service.py
"""
Products Service

Product master data plus the price history that records every cost and sale
price change. Stock is NOT edited here; it only moves through cost lots
(see inventory_service).

PRICE HISTORY:
- History rows are written inside a SAVEPOINT.
- A failed history write never fails the surrounding operation. It is
  logged as a warning and the warning text is returned to the caller.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Product, PriceHistory
from ..validation import ConflictError, ValidationError, MAX_PRICE_CENTS
from .concurrency import lock_for_update, run_with_retry

PRICE_KIND_COST = "COST"
PRICE_KIND_SALE = "SALE"


class ProductNotFoundError(LookupError):
    """Raised when a product id does not exist."""


def record_price_history(
    *,
    product_id: int,
    kind: str,
    price_cents: int,
    cost_lot_id: int | None = None,
) -> str | None:
    """
    Best-effort append of a price history row.

    Returns None on success, or a warning message when the row could not be
    written. The caller's transaction stays usable either way.
    """
    try:
        with db.session.begin_nested():
            row = PriceHistory(
                product_id=product_id,
                kind=kind,
                price_cents=price_cents,
                cost_lot_id=cost_lot_id,
            )
            db.session.add(row)
            db.session.flush()
    except SQLAlchemyError as exc:
        current_app.logger.warning(
            "Price history not recorded for product %s (%s %s): %s",
            product_id, kind, price_cents, exc,
        )
        return f"price history not recorded: {exc.__class__.__name__}"
    return None


def _check_price(value, name: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer")
    if value < 0:
        raise ValidationError(f"{name} must be >= 0")
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFoundError(f"Product {product_id} not found")
    return product


def list_products(*, include_inactive: bool = False) -> list[Product]:
    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def create_product(
    *,
    name: str,
    sku: str | None = None,
    cost_cents: int | None = None,
    price_cents: int | None = None,
    min_stock: int = 0,
) -> tuple[Product, list[str]]:
    """
    Create a product with zero stock. Initial cost/price go to price history.

    Returns (product, warnings).
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    _check_price(cost_cents, "cost_cents")
    _check_price(price_cents, "price_cents")
    if isinstance(min_stock, bool) or not isinstance(min_stock, int) or min_stock < 0:
        raise ValidationError("min_stock must be an integer >= 0")

    sku = sku.strip() if sku else None

    def _op():
        if sku and db.session.query(Product).filter_by(sku=sku).first() is not None:
            raise ConflictError(f"SKU {sku!r} already exists")

        product = Product(
            name=name,
            sku=sku,
            stock=0,
            min_stock=min_stock,
            cost_cents=cost_cents,
            price_cents=price_cents,
            is_active=True,
        )
        db.session.add(product)
        db.session.flush()

        warnings = []
        for kind, value in ((PRICE_KIND_COST, cost_cents), (PRICE_KIND_SALE, price_cents)):
            if value:
                warning = record_price_history(product_id=product.id, kind=kind, price_cents=value)
                if warning:
                    warnings.append(warning)

        db.session.commit()
        return product, warnings

    return run_with_retry(_op)


def update_product_prices(
    product_id: int,
    *,
    cost_cents: int | None = None,
    price_cents: int | None = None,
    min_stock: int | None = None,
) -> tuple[Product, list[str]]:
    """
    Update cost, sale price and/or minimum stock.

    History rows are written only for values that actually changed.
    Returns (product, warnings).
    """
    _check_price(cost_cents, "cost_cents")
    _check_price(price_cents, "price_cents")
    if min_stock is not None and (isinstance(min_stock, bool) or not isinstance(min_stock, int) or min_stock < 0):
        raise ValidationError("min_stock must be an integer >= 0")

    def _op():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise ProductNotFoundError(f"Product {product_id} not found")

        changes = []
        if cost_cents is not None and cost_cents != product.cost_cents:
            product.cost_cents = cost_cents
            changes.append((PRICE_KIND_COST, cost_cents))
        if price_cents is not None and price_cents != product.price_cents:
            product.price_cents = price_cents
            changes.append((PRICE_KIND_SALE, price_cents))
        if min_stock is not None:
            product.min_stock = min_stock
        db.session.flush()

        warnings = []
        for kind, value in changes:
            warning = record_price_history(product_id=product.id, kind=kind, price_cents=value)
            if warning:
                warnings.append(warning)

        db.session.commit()
        return product, warnings

    return run_with_retry(_op)


def get_price_history(product_id: int, *, kind: str | None = None, limit: int = 200) -> list[PriceHistory]:
    get_product(product_id)
    q = db.session.query(PriceHistory).filter_by(product_id=product_id)
    if kind:
        q = q.filter_by(kind=kind)
    return q.order_by(PriceHistory.created_at.desc(), PriceHistory.id.desc()).limit(limit).all()
