# Overview: Service-layer operations for payment reporting; read-only queries and totals.

from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Iterable

from ..extensions import db
from ..models import Payment
from ..time_utils import parse_iso_date, today_utc
from .billing_cycle import next_closing_date, next_due_date, current_closing_date
from .card_service import get_card
from .installment_service import METHOD_CARD
from .purchase_grouping import aggregate_purchases, summarize_installment_plans


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


def _parse_range(start, end) -> tuple[date | None, date | None]:
    try:
        start_d = parse_iso_date(start) if start else None
        end_d = parse_iso_date(end) if end else None
    except ValueError:
        raise ReportError("start and end must be ISO-8601 dates") from None
    if start_d and end_d and start_d > end_d:
        raise ReportError("start must be on or before end")
    return start_d, end_d


def list_payments(
    *,
    card_id: int | None = None,
    method: str | None = None,
    start=None,
    end=None,
) -> list[Payment]:
    """Payment rows filtered by card, method and inclusive transaction-date window."""
    start_d, end_d = _parse_range(start, end)

    query = db.session.query(Payment)
    if card_id is not None:
        query = query.filter(Payment.card_id == card_id)
    if method:
        query = query.filter(Payment.method == method)
    if start_d:
        query = query.filter(Payment.transaction_date >= start_d)
    if end_d:
        query = query.filter(Payment.transaction_date <= end_d)

    return query.order_by(
        Payment.transaction_date.desc(),
        Payment.installment_index.asc(),
        Payment.id.asc(),
    ).all()


def purchases_report(*, card_id=None, method=None, start=None, end=None) -> list[dict]:
    records = list_payments(card_id=card_id, method=method, start=start, end=end)
    return [group.to_dict() for group in aggregate_purchases(records)]


def installment_plans_report(*, card_id=None, today: date | None = None) -> list[dict]:
    records = list_payments(card_id=card_id, method=METHOD_CARD)
    return [s.to_dict() for s in summarize_installment_plans(records, today or today_utc())]


def statement_totals(records: Iterable[Payment], next_closing: date, *, include_future: bool = True) -> dict:
    """
    Dashboard totals over a set of payment rows.

    - total_current: every row's amount
    - total_next: card rows billed in the same month as `next_closing`
    - total_future: for card rows, amount * installments still to come after
      this row (an estimate: each later installment is assumed equal)
    """
    total_current = 0
    total_next = 0
    total_future = 0

    for record in records:
        total_current += record.amount_cents

        if record.method != METHOD_CARD:
            continue

        cycle = record.billing_cycle_date
        if cycle is not None and (cycle.year, cycle.month) == (next_closing.year, next_closing.month):
            total_next += record.amount_cents

        remaining = record.installment_count - record.installment_index
        if include_future and remaining > 0:
            total_future += record.amount_cents * remaining

    return {
        "total_current_cents": total_current,
        "total_next_cents": total_next,
        "total_future_cents": total_future,
    }


def monthly_totals(records: Iterable[Payment]) -> list[dict]:
    """Amounts per transaction month, oldest month first."""
    totals: dict[str, int] = defaultdict(int)
    for record in records:
        month = record.transaction_date.strftime("%Y-%m")
        totals[month] += record.amount_cents
    return [{"month": month, "total_cents": totals[month]} for month in sorted(totals)]


def card_statement(card_id: int, *, today: date | None = None, include_future: bool = True) -> dict:
    card = get_card(card_id)
    today = today or today_utc()

    records = list_payments(card_id=card.id)
    upcoming_close = next_closing_date(card.closing_day, today)

    return {
        "card": card.to_dict(),
        "as_of": today.isoformat(),
        "current_closing_date": current_closing_date(card.closing_day, today).isoformat(),
        "next_closing_date": upcoming_close.isoformat(),
        "next_due_date": next_due_date(card.due_day, today).isoformat(),
        "totals": statement_totals(records, upcoming_close, include_future=include_future),
        "monthly": monthly_totals(records),
    }
