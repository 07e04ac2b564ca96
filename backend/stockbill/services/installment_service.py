# Overview: Service-layer operations for splitting a payment into dated installments.

"""
Installment Scheduling Service

WHY: A card purchase paid in N installments shows up on N consecutive
statements. Each statement needs its own row so cycle totals are plain sums.

DESIGN PRINCIPLES:
- One economic event -> 1..N Payment rows, created together in one DB
  transaction (all or nothing)
- Per-installment amount is total / N rounded half-up to the cent
- The rounding remainder is NOT pushed into any installment: the plan may sum
  to a few cents more or less than the original total (at most N/2 cents).
  That drift is the accepted behavior of the statement views and is covered
  by tests; do not "fix" it here without changing those views too.
- Installment i is billed on the base cycle shifted by i-1 months
- Descriptions carry a " (Cuota i/N)" suffix, which reporting uses to regroup
  rows that predate parent_transaction_id
- idempotency_key is "<base>" for single payments and "<base>-cuota-<i>" for
  installments; replaying the same base returns the rows already stored
"""

from __future__ import annotations

import uuid

from ..extensions import db
from ..models import Payment
from ..time_utils import parse_iso_date
from .billing_cycle import BillingCycleError, add_months, compute_billing_cycle
from .concurrency import run_with_retry


class InstallmentError(Exception):
    """Raised for installment scheduling errors."""
    pass


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CARD = "CARD"
METHOD_CASH = "CASH"
METHOD_TRANSFER = "TRANSFER"

VALID_METHODS = [
    METHOD_CARD,
    METHOD_CASH,
    METHOD_TRANSFER,
]

DEFAULT_DESCRIPTION = "Pago"


# =============================================================================
# PURE HELPERS
# =============================================================================

def split_amount_cents(total_amount_cents: int, installment_count: int) -> int:
    """Per-installment amount: total / count, nearest cent (half-up)."""
    return (total_amount_cents + (installment_count // 2)) // installment_count


def installment_description(description: str, index: int, count: int) -> str:
    return f"{description} (Cuota {index}/{count})"


def installment_idempotency_key(base: str, index: int, count: int) -> str:
    if count == 1:
        return base
    return f"{base}-cuota-{index}"


def new_idempotency_base() -> str:
    return str(uuid.uuid4())


def build_installment_records(
    *,
    total_amount_cents: int,
    installment_count: int,
    transaction_date,
    method: str,
    idempotency_base: str,
    closing_day: int | None = None,
    card_id: int | None = None,
    description: str | None = None,
    product_id: int | None = None,
    cost_lot_id: int | None = None,
) -> list[Payment]:
    """
    Build (but do not persist) the Payment rows for one economic event.

    Args:
        total_amount_cents: Original transaction total, > 0
        installment_count: N >= 1; N > 1 requires a CARD
        transaction_date: Date the economic event happened (date or ISO string)
        method: CARD, CASH or TRANSFER
        idempotency_base: Shared key; installments append "-cuota-<i>"
        closing_day: Card statement closing day (required for CARD)
        card_id: Card the rows are billed to (required for CARD)

    Returns:
        List of unsaved Payment objects ordered by installment_index

    Raises:
        InstallmentError: On any invalid input
    """
    if method not in VALID_METHODS:
        raise InstallmentError(f"Invalid payment method: {method}. Must be one of {VALID_METHODS}")

    if isinstance(total_amount_cents, bool) or not isinstance(total_amount_cents, int) or total_amount_cents <= 0:
        raise InstallmentError("Total amount must be a positive integer amount of cents")

    if isinstance(installment_count, bool) or not isinstance(installment_count, int) or installment_count < 1:
        raise InstallmentError("Installment count must be an integer >= 1")

    if not idempotency_base:
        raise InstallmentError("Idempotency base key is required")

    try:
        tx_date = parse_iso_date(transaction_date)
    except ValueError:
        raise InstallmentError("Invalid transaction date") from None
    if tx_date is None:
        raise InstallmentError("Transaction date is required")

    if method == METHOD_CARD:
        if not card_id:
            raise InstallmentError("A card is required for CARD payments")
        if closing_day is None:
            raise InstallmentError("Card closing day is required for CARD payments")
        try:
            base_cycle = compute_billing_cycle(closing_day, tx_date)
        except BillingCycleError as exc:
            raise InstallmentError(str(exc)) from exc
    else:
        if installment_count > 1:
            raise InstallmentError("Installments are only available for CARD payments")
        base_cycle = None

    card_ref = card_id if method == METHOD_CARD else None

    if installment_count == 1:
        return [
            Payment(
                product_id=product_id,
                card_id=card_ref,
                cost_lot_id=cost_lot_id,
                method=method,
                amount_cents=total_amount_cents,
                transaction_date=tx_date,
                billing_cycle_date=base_cycle,
                installment_count=1,
                installment_index=1,
                is_installment=False,
                parent_transaction_id=None,
                description=description,
                idempotency_key=idempotency_base,
            )
        ]

    per_installment = split_amount_cents(total_amount_cents, installment_count)
    if per_installment <= 0:
        raise InstallmentError("Amount is too small to split into that many installments")

    label = (description or "").strip() or DEFAULT_DESCRIPTION

    records = []
    for index in range(1, installment_count + 1):
        records.append(
            Payment(
                product_id=product_id,
                card_id=card_ref,
                cost_lot_id=cost_lot_id,
                method=method,
                amount_cents=per_installment,
                transaction_date=tx_date,
                billing_cycle_date=add_months(base_cycle, index - 1),
                installment_count=installment_count,
                installment_index=index,
                is_installment=True,
                parent_transaction_id=idempotency_base,
                description=installment_description(label, index, installment_count),
                idempotency_key=installment_idempotency_key(idempotency_base, index, installment_count),
            )
        )
    return records


# =============================================================================
# PERSISTENCE
# =============================================================================

def _find_replay(records: list[Payment]) -> list[Payment] | None:
    """
    Return previously stored rows for the same keys, or None if none exist.

    Raises InstallmentError when the keys exist but describe a different plan.
    """
    keys = [r.idempotency_key for r in records]
    existing = (
        db.session.query(Payment)
        .filter(Payment.idempotency_key.in_(keys))
        .order_by(Payment.installment_index.asc(), Payment.id.asc())
        .all()
    )
    if not existing:
        return None

    same_plan = len(existing) == len(records) and all(
        old.installment_count == new.installment_count
        and old.installment_index == new.installment_index
        and old.amount_cents == new.amount_cents
        for old, new in zip(existing, records)
    )
    if not same_plan:
        raise InstallmentError("Idempotency key already used for a different payment")
    return existing


def _schedule_installments_inner(**kwargs) -> list[Payment]:
    """Core scheduling without retry or commit (composable into a larger transaction)."""
    records = build_installment_records(**kwargs)

    replay = _find_replay(records)
    if replay is not None:
        return replay

    db.session.add_all(records)
    db.session.flush()
    return records


def schedule_installments(
    *,
    total_amount_cents: int,
    installment_count: int,
    transaction_date,
    method: str,
    description: str | None = None,
    closing_day: int | None = None,
    card_id: int | None = None,
    idempotency_base: str | None = None,
    product_id: int | None = None,
    cost_lot_id: int | None = None,
    commit: bool = True,
) -> list[Payment]:
    """
    Create the Payment rows for one transaction, all in a single DB transaction.

    If the store rejects any row, the session is rolled back and the error
    propagates: no installment of the plan is committed.
    """
    base = idempotency_base or new_idempotency_base()

    def _op():
        records = _schedule_installments_inner(
            total_amount_cents=total_amount_cents,
            installment_count=installment_count,
            transaction_date=transaction_date,
            method=method,
            idempotency_base=base,
            closing_day=closing_day,
            card_id=card_id,
            description=description,
            product_id=product_id,
            cost_lot_id=cost_lot_id,
        )
        if commit:
            db.session.commit()
        return records

    return run_with_retry(_op)
