# Overview: Service-layer operations that register an economic event: stock movement plus its payment rows.

"""
Transaction Registration Invariants (authoritative)

One call = one DB transaction:
- EXPENSE with a product: lots are consumed by the allocator
- INCOME with a product: a new cost lot is created by the replenisher
- Then the payment rows (1..N installments) are inserted
- Any failure (insufficient stock, bad card, store error) rolls back the
  whole unit: no lot change without its payments and vice versa

Replay:
- The idempotency base is checked BEFORE touching stock. Replaying a
  registered base returns the stored payments and moves no stock.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta

from flask import current_app

from ..extensions import db
from ..models import Card, Payment
from ..time_utils import parse_iso_date, today_utc, utcnow
from .concurrency import run_with_retry
from .installment_service import (
    METHOD_CARD,
    VALID_METHODS,
    _find_replay,
    build_installment_records,
    new_idempotency_base,
    split_amount_cents,
)
from .inventory_service import (
    AllocationResult,
    ReplenishResult,
    StockError,
    _allocate_stock_inner,
    _replenish_stock_inner,
    parse_received_at,
)
from .lot_ordering import LotOrdering, get_lot_ordering


class TransactionError(Exception):
    """Raised for transaction registration errors."""
    pass


class LotPaymentNotFoundError(TransactionError):
    pass


DIRECTION_EXPENSE = "EXPENSE"
DIRECTION_INCOME = "INCOME"

VALID_DIRECTIONS = [
    DIRECTION_EXPENSE,
    DIRECTION_INCOME,
]

DEFAULT_PURCHASE_DESCRIPTION = "Compra de producto"


@dataclass
class TransactionResult:
    direction: str
    method: str
    payments: list[Payment] = field(default_factory=list)
    allocation: AllocationResult | None = None
    replenishment: ReplenishResult | None = None
    replayed: bool = False

    @property
    def warnings(self) -> list[str]:
        return list(self.replenishment.warnings) if self.replenishment else []

    def to_dict(self) -> dict:
        return {
            "direction": self.direction,
            "method": self.method,
            "replayed": self.replayed,
            "payments": [p.to_dict() for p in self.payments],
            "allocation": self.allocation.to_dict() if self.allocation else None,
            "replenishment": self.replenishment.to_dict() if self.replenishment else None,
            "warnings": self.warnings,
        }


def _load_closing_day(method: str, card_id) -> int | None:
    if method != METHOD_CARD:
        return None
    if not card_id:
        raise TransactionError("card_id is required for CARD payments")
    card = db.session.get(Card, card_id)
    if card is None:
        raise TransactionError(f"Card {card_id} not found")
    return card.closing_day


def _lot_received_at(tx_date) -> datetime:
    """Lots received today (or dated ahead) get the current time; back-dated lots start at midnight."""
    if tx_date >= today_utc():
        return utcnow()
    return datetime.combine(tx_date, time.min)


def _resolve_ordering(ordering) -> LotOrdering:
    if isinstance(ordering, LotOrdering):
        return ordering
    try:
        return get_lot_ordering(ordering)
    except ValueError as exc:
        raise TransactionError(str(exc)) from exc


def register_transaction(
    *,
    direction: str,
    method: str,
    amount_cents: int,
    transaction_date,
    description: str | None = None,
    card_id: int | None = None,
    product_id: int | None = None,
    quantity: int | None = None,
    unit_cost_cents: int | None = None,
    installment_count: int = 1,
    idempotency_base: str | None = None,
    ordering=None,
) -> TransactionResult:
    """
    Register a sale (EXPENSE) or restock (INCOME) and its payment rows.

    Args:
        direction: EXPENSE consumes stock, INCOME creates a cost lot
        method: CARD, CASH or TRANSFER
        amount_cents: Transaction total (split across installments for CARD)
        transaction_date: Business date (date or ISO string)
        quantity: Units moved; None or 0 means no stock movement
        unit_cost_cents: INCOME lot cost; defaults to amount / quantity (half-up)

    Raises:
        TransactionError: invalid direction/method/date, unknown card
        InsufficientStockError: EXPENSE asks for more than the lots hold
        StockError / InstallmentError: invalid stock or payment input
    """
    if direction not in VALID_DIRECTIONS:
        raise TransactionError(f"Invalid direction: {direction}. Must be one of {VALID_DIRECTIONS}")
    if method not in VALID_METHODS:
        raise TransactionError(f"Invalid payment method: {method}. Must be one of {VALID_METHODS}")

    try:
        tx_date = parse_iso_date(transaction_date)
    except ValueError:
        raise TransactionError("Invalid transaction date") from None
    if tx_date is None:
        raise TransactionError("Transaction date is required")

    moves_stock = product_id is not None and bool(quantity)
    if moves_stock and direction == DIRECTION_INCOME and unit_cost_cents is None:
        if isinstance(amount_cents, int) and not isinstance(amount_cents, bool) and quantity > 0:
            unit_cost_cents = split_amount_cents(amount_cents, quantity)

    lot_ordering = _resolve_ordering(ordering) if moves_stock and direction == DIRECTION_EXPENSE else None
    base = idempotency_base or new_idempotency_base()

    def _op():
        closing_day = _load_closing_day(method, card_id)

        records = build_installment_records(
            total_amount_cents=amount_cents,
            installment_count=installment_count,
            transaction_date=tx_date,
            method=method,
            idempotency_base=base,
            closing_day=closing_day,
            card_id=card_id,
            description=description,
            product_id=product_id,
        )

        replay = _find_replay(records)
        if replay is not None:
            return TransactionResult(direction=direction, method=method, payments=replay, replayed=True)

        result = TransactionResult(direction=direction, method=method)

        if moves_stock and direction == DIRECTION_EXPENSE:
            result.allocation = _allocate_stock_inner(
                product_id=product_id,
                quantity=quantity,
                ordering=lot_ordering,
            )
        elif moves_stock:
            result.replenishment = _replenish_stock_inner(
                product_id=product_id,
                quantity=quantity,
                unit_cost_cents=unit_cost_cents,
                received_dt=_lot_received_at(tx_date),
            )
            for record in records:
                record.cost_lot_id = result.replenishment.lot.id

        db.session.add_all(records)
        db.session.flush()
        db.session.commit()

        result.payments = records
        current_app.logger.info(
            "Registered %s %s transaction %s: %s payment row(s)",
            direction, method, base, len(records),
        )
        return result

    return run_with_retry(_op)


def register_purchase(
    *,
    product_id: int,
    quantity: int,
    unit_cost_cents: int,
    card_id: int,
    purchase_date=None,
    total_amount_cents: int | None = None,
    installment_count: int = 1,
    description: str | None = None,
    idempotency_base: str | None = None,
) -> TransactionResult:
    """
    Restock paid by card: one new cost lot plus card payments linked to it.

    total_amount_cents defaults to quantity * unit_cost_cents. A zero-cost
    restock creates the lot without payment rows, so it has nothing to key a
    replay on and rejects an idempotency_base.
    """
    if not card_id:
        raise TransactionError("card_id is required for a card purchase")

    try:
        received_dt = parse_received_at(purchase_date)
    except StockError:
        raise TransactionError("Invalid purchase date") from None
    if received_dt > (utcnow() + timedelta(minutes=2)):
        raise TransactionError("Invalid purchase date")

    if total_amount_cents is None:
        if isinstance(quantity, int) and isinstance(unit_cost_cents, int):
            total_amount_cents = quantity * unit_cost_cents
        else:
            total_amount_cents = 0
    if not total_amount_cents and idempotency_base:
        raise TransactionError("idempotency key requires a purchase with a payment amount")

    label = (description or "").strip() or DEFAULT_PURCHASE_DESCRIPTION
    base = idempotency_base or new_idempotency_base()

    def _op():
        closing_day = _load_closing_day(METHOD_CARD, card_id)

        records = []
        if total_amount_cents:
            records = build_installment_records(
                total_amount_cents=total_amount_cents,
                installment_count=installment_count,
                transaction_date=received_dt.date(),
                method=METHOD_CARD,
                idempotency_base=base,
                closing_day=closing_day,
                card_id=card_id,
                description=label,
                product_id=product_id,
            )
            replay = _find_replay(records)
            if replay is not None:
                return TransactionResult(
                    direction=DIRECTION_INCOME, method=METHOD_CARD, payments=replay, replayed=True
                )

        replenishment = _replenish_stock_inner(
            product_id=product_id,
            quantity=quantity,
            unit_cost_cents=unit_cost_cents,
            received_dt=received_dt,
        )
        for record in records:
            record.cost_lot_id = replenishment.lot.id

        db.session.add_all(records)
        db.session.flush()
        db.session.commit()

        current_app.logger.info(
            "Registered purchase of %s units for product %s (lot %s, %s installment(s))",
            quantity, product_id, replenishment.lot.id, len(records),
        )
        return TransactionResult(
            direction=DIRECTION_INCOME,
            method=METHOD_CARD,
            payments=records,
            replenishment=replenishment,
        )

    return run_with_retry(_op)


def get_lot_payment(cost_lot_id: int) -> dict:
    """The most recent payment row linked to a cost lot, with its card alias."""
    payment = (
        db.session.query(Payment)
        .filter(Payment.cost_lot_id == cost_lot_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .first()
    )
    if payment is None:
        raise LotPaymentNotFoundError(f"No payment linked to lot {cost_lot_id}")

    card = db.session.get(Card, payment.card_id) if payment.card_id else None
    data = payment.to_dict()
    data["card_alias"] = card.alias if card else None
    return data
