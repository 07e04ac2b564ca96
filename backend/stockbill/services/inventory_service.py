# Overview: Service-layer operations for cost-lot inventory; encapsulates business logic and database work.

# backend/stockbill/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Product, CostLot
from ..time_utils import utcnow, parse_iso_datetime, to_utc_z
from .concurrency import lock_for_update, run_with_retry
from .lot_ordering import LotOrdering, get_lot_ordering
from .products_service import record_price_history, PRICE_KIND_COST
"""
Cost-Lot Inventory Invariants (authoritative)

Inventory model:
- Stock is held as CostLot rows, one per restock, each with its own unit cost.
- remaining_quantity starts at original_quantity, only decreases, never < 0.
- Product.stock is a denormalized SUM(remaining_quantity) and is resynced in
  the same DB transaction as every lot change.

Allocation (stock leaving):
- Lots are drained one at a time in LotOrdering order (default: newest first,
  most expensive first among equally recent lots).
- The whole drain is one DB transaction. The product row is locked first, so
  allocations for the same product are serialized; lot rows carry a version
  column so a lost update becomes a retryable StaleDataError.
- Asking for more than the summed remaining quantity raises
  InsufficientStockError and nothing is persisted.

Replenishment (stock entering):
- Creates exactly one lot with remaining_quantity == original_quantity.
- Appends a COST price-history row in a SAVEPOINT. A failure there is logged
  and returned as a warning; the lot is still committed.

Time:
- CostLot.created_at is business time (when the lot was received), UTC-naive.
"""


class StockError(Exception):
    """Raised for invalid stock operations."""


class InsufficientStockError(StockError):
    """Raised when the requested quantity exceeds the summed remaining lot quantity."""

    def __init__(self, product_id: int, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"insufficient stock for product {product_id}: requested {requested}, available {available}"
        )


@dataclass(frozen=True)
class ConsumedLot:
    """Units taken from one lot by a single allocation."""
    lot_id: int
    quantity: int
    unit_cost_cents: int

    @property
    def cost_cents(self) -> int:
        return self.quantity * self.unit_cost_cents

    def to_dict(self) -> dict:
        return {
            "lot_id": self.lot_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "cost_cents": self.cost_cents,
        }


@dataclass(frozen=True)
class AllocationResult:
    product_id: int
    quantity: int
    ordering: str
    consumed: list[ConsumedLot] = field(default_factory=list)
    stock_after: int = 0

    @property
    def total_cost_cents(self) -> int:
        return sum(c.cost_cents for c in self.consumed)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "ordering": self.ordering,
            "consumed": [c.to_dict() for c in self.consumed],
            "total_cost_cents": self.total_cost_cents,
            "stock_after": self.stock_after,
        }


@dataclass
class ReplenishResult:
    lot: CostLot
    warnings: list[str] = field(default_factory=list)
    stock_after: int = 0

    def to_dict(self) -> dict:
        return {
            "lot": self.lot.to_dict(),
            "warnings": list(self.warnings),
            "stock_after": self.stock_after,
        }


def parse_received_at(value):
    """
    Normalize received_at to canonical UTC-naive datetime.

    Accepts:
    - None -> utcnow() (UTC-naive)
    - datetime:
        - aware -> convert to UTC, strip tzinfo
        - naive -> treat as UTC-naive
    - str -> parse_iso_datetime (accepts Z/offsets; returns UTC-naive)
    """
    if value is None:
        return utcnow()

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise StockError("invalid received_at") from None
        if dt is None:
            raise StockError("invalid received_at")
        return dt

    raise StockError("invalid received_at")


def _require_positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise StockError(f"{name} must be a positive integer")
    return value


def _get_product(product_id: int, *, require_active: bool = False, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise StockError("product not found")
    if require_active and not product.is_active:
        raise StockError("product is inactive")
    return product


def get_available_quantity(product_id: int) -> int:
    """SUM(remaining_quantity) over the product's lots (the source of truth)."""
    total = db.session.query(
        func.coalesce(func.sum(CostLot.remaining_quantity), 0)
    ).filter(CostLot.product_id == product_id).scalar()
    return int(total or 0)


def sync_product_stock(product_id: int) -> int:
    """
    Resynchronize Product.stock from its lots. Flushes, does not commit.

    Returns the synchronized stock value.
    """
    total = get_available_quantity(product_id)
    product = db.session.get(Product, product_id)
    if product is None:
        raise StockError("product not found")
    if product.stock != total:
        product.stock = total
    db.session.flush()
    return total


# =============================================================================
# ALLOCATION (stock leaving)
# =============================================================================

def _allocate_stock_inner(
    *,
    product_id: int,
    quantity: int,
    ordering: LotOrdering,
) -> AllocationResult:
    """Core allocation loop without retry or commit.

    Called by allocate_stock() and by transaction registration, which commits
    the stock change together with its payment rows.
    """
    _require_positive_int(quantity, "quantity")

    # Lock the product row first: serializes allocations for this product
    _get_product(product_id, require_active=True, lock=True)

    available = get_available_quantity(product_id)
    if available < quantity:
        raise InsufficientStockError(product_id, quantity, available)

    needed = quantity
    consumed: list[ConsumedLot] = []

    while needed > 0:
        lot = lock_for_update(
            db.session.query(CostLot)
            .filter(CostLot.product_id == product_id, CostLot.remaining_quantity > 0)
            .order_by(*ordering.order_by())
        ).first()

        if lot is None:
            # Another writer drained lots between the availability check and now
            raise InsufficientStockError(product_id, quantity, quantity - needed)

        take = min(needed, lot.remaining_quantity)
        lot.remaining_quantity = lot.remaining_quantity - take
        db.session.flush()

        consumed.append(ConsumedLot(lot_id=lot.id, quantity=take, unit_cost_cents=lot.unit_cost_cents))
        needed -= take

    stock_after = sync_product_stock(product_id)

    return AllocationResult(
        product_id=product_id,
        quantity=quantity,
        ordering=ordering.name,
        consumed=consumed,
        stock_after=stock_after,
    )


def allocate_stock(
    *,
    product_id: int,
    quantity: int,
    ordering: LotOrdering | str | None = None,
    commit: bool = True,
) -> AllocationResult:
    """
    Consume `quantity` units of a product across its cost lots.

    WHY one transaction: the loop touches several lots. Committing per lot
    would leave earlier lots drained when a later step fails; here either
    every decrement lands or none does.

    Raises:
        InsufficientStockError: summed remaining quantity < quantity
        StockError: invalid quantity, unknown or inactive product
    """
    if not isinstance(ordering, LotOrdering):
        ordering = get_lot_ordering(ordering)

    def _op():
        result = _allocate_stock_inner(
            product_id=product_id,
            quantity=quantity,
            ordering=ordering,
        )
        if commit:
            db.session.commit()
        current_app.logger.info(
            "Allocated %s units of product %s from %s lot(s) (%s)",
            quantity, product_id, len(result.consumed), ordering.name,
        )
        return result

    return run_with_retry(_op)


# =============================================================================
# REPLENISHMENT (stock entering)
# =============================================================================

def _replenish_stock_inner(
    *,
    product_id: int,
    quantity: int,
    unit_cost_cents: int,
    received_dt: datetime,
) -> ReplenishResult:
    """Core restock logic without retry, future-guard, or commit."""
    _require_positive_int(quantity, "quantity")
    if isinstance(unit_cost_cents, bool) or not isinstance(unit_cost_cents, int) or unit_cost_cents < 0:
        raise StockError("unit_cost_cents must be an integer >= 0")

    product = _get_product(product_id, require_active=True, lock=True)

    lot = CostLot(
        product_id=product_id,
        unit_cost_cents=unit_cost_cents,
        original_quantity=quantity,
        remaining_quantity=quantity,
        created_at=received_dt,
    )
    db.session.add(lot)
    db.session.flush()

    # Product cost follows the most recently received lot (back-dated lots don't win)
    latest = (
        db.session.query(CostLot)
        .filter(CostLot.product_id == product_id)
        .order_by(CostLot.created_at.desc(), CostLot.id.desc())
        .first()
    )
    if latest is not None and product.cost_cents != latest.unit_cost_cents:
        product.cost_cents = latest.unit_cost_cents

    warnings: list[str] = []
    warning = record_price_history(
        product_id=product_id,
        kind=PRICE_KIND_COST,
        price_cents=unit_cost_cents,
        cost_lot_id=lot.id,
    )
    if warning:
        warnings.append(warning)

    stock_after = sync_product_stock(product_id)
    return ReplenishResult(lot=lot, warnings=warnings, stock_after=stock_after)


def replenish_stock(
    *,
    product_id: int,
    quantity: int,
    unit_cost_cents: int,
    received_at=None,
    commit: bool = True,
) -> ReplenishResult:
    """
    Add `quantity` units at `unit_cost_cents` as a new cost lot.

    received_at may be back-dated (it is the lot's ordering key) but not set
    in the future.
    """
    def _op():
        received_dt = parse_received_at(received_at)
        if received_dt > (utcnow() + timedelta(minutes=2)):
            raise StockError("received_at cannot be in the future")

        result = _replenish_stock_inner(
            product_id=product_id,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            received_dt=received_dt,
        )
        if commit:
            db.session.commit()
        current_app.logger.info(
            "Replenished product %s with lot %s (%s units @ %s cents)",
            product_id, result.lot.id, quantity, unit_cost_cents,
        )
        return result

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def list_cost_lots(*, product_id: int, include_empty: bool = True, limit: int = 200) -> list[CostLot]:
    _get_product(product_id)

    q = db.session.query(CostLot).filter(CostLot.product_id == product_id)
    if not include_empty:
        q = q.filter(CostLot.remaining_quantity > 0)

    return q.order_by(CostLot.created_at.desc(), CostLot.id.desc()).limit(limit).all()


def get_inventory_summary(*, product_id: int) -> dict:
    product = _get_product(product_id)

    row = db.session.query(
        func.coalesce(func.sum(CostLot.remaining_quantity), 0).label("units"),
        func.coalesce(func.sum(CostLot.remaining_quantity * CostLot.unit_cost_cents), 0).label("value"),
        func.count(CostLot.id).label("open_lots"),
    ).filter(
        CostLot.product_id == product_id,
        CostLot.remaining_quantity > 0,
    ).one()

    units = int(row.units or 0)
    value = int(row.value or 0)
    # nearest-cent rounding (half-up)
    wac = (value + (units // 2)) // units if units > 0 else None

    latest = (
        db.session.query(CostLot)
        .filter(CostLot.product_id == product_id)
        .order_by(CostLot.created_at.desc(), CostLot.id.desc())
        .first()
    )

    return {
        "product_id": product_id,
        "as_of": to_utc_z(utcnow()),
        "stock": product.stock,
        "lot_quantity": units,
        "in_sync": product.stock == units,
        "open_lots": int(row.open_lots or 0),
        "inventory_value_cents": value,
        "weighted_average_cost_cents": wac,
        "recent_unit_cost_cents": latest.unit_cost_cents if latest else None,
        "min_stock": product.min_stock,
        "below_min_stock": product.stock < product.min_stock,
    }


def sync_all_product_stock() -> dict[int, tuple[int, int]]:
    """
    Resync every product's aggregate stock. Returns {product_id: (old, new)}
    for the rows that changed. Does not commit.
    """
    changed: dict[int, tuple[int, int]] = {}
    for product in db.session.query(Product).order_by(Product.id.asc()).all():
        before = product.stock
        after = sync_product_stock(product.id)
        if before != after:
            changed[product.id] = (before, after)
    return changed
