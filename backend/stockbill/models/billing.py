from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z, utcnow


class Card(db.Model):
    """
    Card-like payment instrument with a monthly statement cycle.

    closing_day: day of month the statement closes (clamped to short months)
    due_day: day of month the closed statement must be paid
    """
    __tablename__ = "cards"
    __table_args__ = (
        db.CheckConstraint("closing_day BETWEEN 1 AND 31", name="ck_cards_closing_day"),
        db.CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_cards_due_day"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    alias = db.Column(db.String(128), nullable=False)
    closing_day = db.Column(db.Integer, nullable=False)
    due_day = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Card id={self.id} alias={self.alias!r} closing_day={self.closing_day}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "alias": self.alias,
            "closing_day": self.closing_day,
            "due_day": self.due_day,
            "created_at": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    """
    One billed installment or one single payment.

    WHY one row per installment: statement views sum rows by billing cycle,
    so a plan of N installments is stored as N rows and never as a parent
    total plus children (that would double count).

    INSTALLMENT PLANS:
    - installment_index is a contiguous 1..installment_count sequence
    - amount_cents is already divided; the plan total is SUM(amount_cents)
    - parent_transaction_id links siblings; legacy rows may lack it and are
      regrouped by the "(Cuota i/N)" description suffix instead
    - idempotency_key is unique: "<base>" for single payments and
      "<base>-cuota-<i>" for installments
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_payments_idempotency_key"),
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_pos"),
        db.CheckConstraint("installment_count >= 1", name="ck_payments_installment_count"),
        db.CheckConstraint(
            "installment_index BETWEEN 1 AND installment_count", name="ck_payments_installment_index"
        ),
        db.Index("ix_payments_card_cycle", "card_id", "billing_cycle_date"),
        db.Index("ix_payments_transaction_date", "transaction_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    card_id = db.Column(db.Integer, db.ForeignKey("cards.id"), nullable=True, index=True)
    cost_lot_id = db.Column(db.Integer, db.ForeignKey("cost_lots.id"), nullable=True, index=True)

    method = db.Column(db.String(16), nullable=False, index=True)  # CARD, CASH, TRANSFER

    amount_cents = db.Column(db.Integer, nullable=False)

    transaction_date = db.Column(db.Date, nullable=False)
    billing_cycle_date = db.Column(db.Date, nullable=True)

    installment_count = db.Column(db.Integer, nullable=False, default=1)
    installment_index = db.Column(db.Integer, nullable=False, default=1)
    is_installment = db.Column(db.Boolean, nullable=False, default=False)

    parent_transaction_id = db.Column(db.String(64), nullable=True, index=True)

    description = db.Column(db.String(255), nullable=True)
    idempotency_key = db.Column(db.String(128), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    card = db.relationship("Card", backref=db.backref("payments", lazy=True))
    product = db.relationship("Product", backref=db.backref("payments", lazy=True))

    def __repr__(self) -> str:
        return (
            f"<Payment id={self.id} amount_cents={self.amount_cents} "
            f"installment={self.installment_index}/{self.installment_count}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "card_id": self.card_id,
            "cost_lot_id": self.cost_lot_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
            "transaction_date": to_iso_date(self.transaction_date),
            "billing_cycle_date": to_iso_date(self.billing_cycle_date),
            "installment_count": self.installment_count,
            "installment_index": self.installment_index,
            "is_installment": self.is_installment,
            "parent_transaction_id": self.parent_transaction_id,
            "description": self.description,
            "idempotency_key": self.idempotency_key,
            "created_at": to_utc_z(self.created_at),
        }
