# Overview: Statement-cycle date arithmetic for card payment instruments.

"""
Billing cycle rules (authoritative)

- A card closes its statement on `closing_day` of every month.
- Months shorter than `closing_day` close on their last day (31 -> Feb 28/29,
  Apr 30, ...). Dates never overflow into the following month.
- A transaction dated ON the closing day belongs to that day's statement;
  only transactions strictly after it roll to the next month.
- Everything here is pure: no clock reads. Callers that need "today" pass it in.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime


class BillingCycleError(ValueError):
    """Raised for out-of-range cycle days."""


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raise BillingCycleError(f"expected a date, got {type(value).__name__}")


def _check_day(day: int, field: str) -> int:
    if isinstance(day, bool) or not isinstance(day, int):
        raise BillingCycleError(f"{field} must be an integer")
    if day < 1 or day > 31:
        raise BillingCycleError(f"{field} must be between 1 and 31")
    return day


def clamped_date(year: int, month: int, day: int) -> date:
    """Build year/month/day, clamping day to the month's last valid day."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def add_months(value, months: int, *, day: int | None = None) -> date:
    """
    Shift a date by whole months.

    The day of month is kept (or replaced by `day`) and clamped at month end,
    so Jan 31 + 1 month is Feb 28/29 and Jan 31 + 2 months is Mar 31.
    """
    base = _as_date(value)
    month_index = base.year * 12 + (base.month - 1) + months
    year, month_zero = divmod(month_index, 12)
    return clamped_date(year, month_zero + 1, day if day is not None else base.day)


def compute_billing_cycle(closing_day: int, transaction_date) -> date:
    """
    Statement closing date a transaction is attributed to.

    Candidate is `closing_day` in the transaction's own month (clamped). If
    the transaction falls strictly after it, the cycle is next month's
    closing date instead.
    """
    closing_day = _check_day(closing_day, "closing_day")
    tx_date = _as_date(transaction_date)

    candidate = clamped_date(tx_date.year, tx_date.month, closing_day)
    if tx_date > candidate:
        return add_months(candidate, 1, day=closing_day)
    return candidate


def current_closing_date(closing_day: int, today) -> date:
    """
    Closing date of the statement currently open as of `today`.

    If this month's closing date is today or already past, the open
    statement closes next month.
    """
    closing_day = _check_day(closing_day, "closing_day")
    today = _as_date(today)
    candidate = clamped_date(today.year, today.month, closing_day)
    if candidate <= today:
        return add_months(candidate, 1, day=closing_day)
    return candidate


def next_closing_date(closing_day: int, today) -> date:
    """Closing date in the calendar month after `today`'s month."""
    closing_day = _check_day(closing_day, "closing_day")
    today = _as_date(today)
    return add_months(clamped_date(today.year, today.month, 1), 1, day=closing_day)


def next_due_date(due_day: int, today) -> date:
    """Next statement due date: this month's if still ahead, else next month's."""
    due_day = _check_day(due_day, "due_day")
    today = _as_date(today)
    candidate = clamped_date(today.year, today.month, due_day)
    if candidate <= today:
        return add_months(candidate, 1, day=due_day)
    return candidate
