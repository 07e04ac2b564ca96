from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Product(db.Model):
    """
    Product master data.

    STOCK DESIGN DECISION:
    Product.stock is a denormalized aggregate. The source of truth is the set
    of CostLot rows for the product: stock == SUM(cost_lots.remaining_quantity).

    WHY keep the column at all:
    1. Every listing and low-stock check reads it; summing lots per row is wasteful
    2. The allocator and replenisher are the only writers and resync it in the
       same DB transaction as the lot change, so it cannot drift
    3. `flask inventory sync-stock` repairs rows written by anything else
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_name", "name"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=True)
    name = db.Column(db.String(255), nullable=False)

    # Aggregate of remaining lot quantities (see class docstring)
    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    # Authoritative storage in cents (frontend may only format for display)
    cost_cents = db.Column(db.Integer, nullable=True)
    price_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "stock": self.stock,
            "min_stock": self.min_stock,
            "cost_cents": self.cost_cents,
            "price_cents": self.price_cents,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CostLot(db.Model):
    """
    One restock event: a batch of units received at a single unit cost.

    INVARIANTS (also enforced by check constraints):
    - 0 <= remaining_quantity <= original_quantity
    - original_quantity never changes after insert
    - remaining_quantity only decreases (allocator) and rows are never deleted here

    created_at is business time (when the lot was received) and is the primary
    ordering key for consumption, so it may be back-dated by the caller.
    """
    __tablename__ = "cost_lots"
    __table_args__ = (
        db.CheckConstraint("original_quantity > 0", name="ck_cost_lots_original_pos"),
        db.CheckConstraint("remaining_quantity >= 0", name="ck_cost_lots_remaining_nonneg"),
        db.CheckConstraint(
            "remaining_quantity <= original_quantity", name="ck_cost_lots_remaining_le_original"
        ),
        db.CheckConstraint("unit_cost_cents >= 0", name="ck_cost_lots_cost_nonneg"),
        db.Index("ix_cost_lots_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    unit_cost_cents = db.Column(db.Integer, nullable=False)
    original_quantity = db.Column(db.Integer, nullable=False)
    remaining_quantity = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    # Optimistic locking: a concurrent decrement raises StaleDataError
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("cost_lots", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<CostLot id={self.id} product_id={self.product_id} "
            f"remaining={self.remaining_quantity}/{self.original_quantity} cost={self.unit_cost_cents}>"
        )

    @property
    def remaining_value_cents(self) -> int:
        return self.remaining_quantity * self.unit_cost_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "unit_cost_cents": self.unit_cost_cents,
            "original_quantity": self.original_quantity,
            "remaining_quantity": self.remaining_quantity,
            "remaining_value_cents": self.remaining_value_cents,
            "created_at": to_utc_z(self.created_at),
        }


class PriceHistory(db.Model):
    """
    Append-only log of cost and sale price changes per product.

    Rows with kind='COST' written by a restock point at the lot that
    introduced the cost.
    """
    __tablename__ = "price_history"
    __table_args__ = (
        db.Index("ix_price_history_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    kind = db.Column(db.String(16), nullable=False)  # COST, SALE
    price_cents = db.Column(db.Integer, nullable=False)

    cost_lot_id = db.Column(db.Integer, db.ForeignKey("cost_lots.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "kind": self.kind,
            "price_cents": self.price_cents,
            "cost_lot_id": self.cost_lot_id,
            "created_at": to_utc_z(self.created_at),
        }
