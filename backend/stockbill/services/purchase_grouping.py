# Overview: Rebuilds logical purchases from flat installment payment rows for reporting.

"""
Purchase grouping rules (read-only, side-effect free)

Rows are visited in input order and assigned a group key:

1. parent_transaction_id present      -> key = parent_transaction_id
2. description ends in "(Cuota i/N)"  -> key = "<base>_<N>_<card_id or nocard>"
3. anything else                      -> key = "single_<id>" (one-row group)

Rule 2 exists for rows stored without a parent link. It is a heuristic: a
free-text description that happens to end in "(Cuota 1/2)" is treated as an
installment. The explicit link always wins when present.

Nothing here raises on bad data. Unparseable descriptions, missing amounts
or odd types fall through to the one-row group.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable

INSTALLMENT_LABEL_RE = re.compile(r"^(.+?)\s*\(Cuota\s+(\d+)/(\d+)\)\s*$", re.IGNORECASE)
_INSTALLMENT_SUFFIX_RE = re.compile(r"\s*\(Cuota\s+\d+/\d+\)\s*$", re.IGNORECASE)


@dataclass(frozen=True)
class InstallmentLabel:
    base: str
    index: int
    count: int


def parse_installment_label(description: Any) -> InstallmentLabel | None:
    """Split "<base> (Cuota i/N)" into its parts; None when it does not match."""
    if not isinstance(description, str):
        return None
    match = INSTALLMENT_LABEL_RE.match(description)
    if match is None:
        return None
    base, index, count = match.groups()
    index, count = int(index), int(count)
    if count < 1 or index < 1:
        return None
    return InstallmentLabel(base=base.strip(), index=index, count=count)


def strip_installment_label(description: Any) -> str:
    if description is None:
        return ""
    if not isinstance(description, str):
        return str(description)
    return _INSTALLMENT_SUFFIX_RE.sub("", description).strip()


def _safe_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _safe_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


def _member_sort_key(record: Any) -> tuple:
    return (
        _safe_int(getattr(record, "installment_index", None), 1),
        _safe_date(getattr(record, "billing_cycle_date", None)) or date.min,
        _safe_int(getattr(record, "id", None), 0),
    )


@dataclass
class PurchaseGroup:
    """A logical purchase rebuilt from one or more payment rows."""
    group_key: str
    base_description: str
    installment_count: int
    card_id: Any = None
    first_transaction_date: date | None = None
    linked: bool = False
    members: list = field(default_factory=list)

    @property
    def total_amount_cents(self) -> int:
        return sum(_safe_int(getattr(m, "amount_cents", None), 0) for m in self.members)

    @property
    def member_ids(self) -> list:
        return [getattr(m, "id", None) for m in self.members]

    def to_dict(self) -> dict:
        return {
            "group_key": self.group_key,
            "base_description": self.base_description,
            "installment_count": self.installment_count,
            "card_id": self.card_id,
            "first_transaction_date": self.first_transaction_date.isoformat()
            if self.first_transaction_date else None,
            "total_amount_cents": self.total_amount_cents,
            "linked": self.linked,
            "member_ids": self.member_ids,
            "members": [m.to_dict() if hasattr(m, "to_dict") else m for m in self.members],
        }


def _group_identity(record: Any) -> tuple[str, str, int, bool]:
    """(group_key, base_description, installment_count, linked) for one row."""
    description = getattr(record, "description", None)
    record_count = max(1, _safe_int(getattr(record, "installment_count", None), 1))
    label = parse_installment_label(description)

    parent_id = getattr(record, "parent_transaction_id", None)
    if parent_id:
        base = label.base if label else strip_installment_label(description)
        return str(parent_id), base, record_count, True

    if label is not None:
        card_id = getattr(record, "card_id", None)
        instrument = "nocard" if card_id is None else card_id
        key = f"{label.base}_{label.count}_{instrument}"
        return key, label.base, max(record_count, label.count), False

    base = "" if description is None else str(description)
    return f"single_{getattr(record, 'id', None)}", base, 1, False


def aggregate_purchases(records: Iterable[Any]) -> list[PurchaseGroup]:
    """
    Group payment rows into purchases.

    Accepts Payment models or any objects exposing the same attributes.
    Groups come back newest first (by earliest transaction date), members in
    installment order.
    """
    groups: dict[str, PurchaseGroup] = {}

    for record in records:
        key, base, count, linked = _group_identity(record)
        tx_date = _safe_date(getattr(record, "transaction_date", None))

        group = groups.get(key)
        if group is None:
            group = PurchaseGroup(
                group_key=key,
                base_description=base,
                installment_count=count,
                card_id=getattr(record, "card_id", None),
                first_transaction_date=tx_date,
                linked=linked,
            )
            groups[key] = group
        else:
            group.installment_count = max(group.installment_count, count)
            if tx_date is not None and (
                group.first_transaction_date is None or tx_date < group.first_transaction_date
            ):
                group.first_transaction_date = tx_date

        group.members.append(record)

    for group in groups.values():
        group.members.sort(key=_member_sort_key)

    return sorted(
        groups.values(),
        key=lambda g: g.first_transaction_date or date.min,
        reverse=True,
    )


# =============================================================================
# INSTALLMENT PLAN PROGRESS
# =============================================================================

@dataclass(frozen=True)
class PlanSummary:
    group_key: str
    description: str
    installment_count: int
    installment_amount_cents: int
    paid_installments: int
    next_due_date: date | None
    next_amount_cents: int | None
    remaining_cents: int

    def to_dict(self) -> dict:
        return {
            "group_key": self.group_key,
            "description": self.description,
            "installment_count": self.installment_count,
            "installment_amount_cents": self.installment_amount_cents,
            "paid_installments": self.paid_installments,
            "next_due_date": self.next_due_date.isoformat() if self.next_due_date else None,
            "next_amount_cents": self.next_amount_cents,
            "remaining_cents": self.remaining_cents,
        }


def _billed_on(record: Any) -> date | None:
    return _safe_date(getattr(record, "billing_cycle_date", None)) or _safe_date(
        getattr(record, "transaction_date", None)
    )


def summarize_installment_plan(group: PurchaseGroup, today: date) -> PlanSummary:
    """
    Progress of one plan as of `today`.

    An installment counts as paid once its billing cycle date is today or
    earlier. The next installment is the earliest one billed after today.
    """
    paid = 0
    remaining = 0
    upcoming = None
    for member in group.members:
        billed = _billed_on(member)
        if billed is not None and billed <= today:
            paid += 1
            continue
        remaining += _safe_int(getattr(member, "amount_cents", None), 0)
        if billed is not None and (upcoming is None or billed < _billed_on(upcoming)):
            upcoming = member

    first = group.members[0] if group.members else None
    return PlanSummary(
        group_key=group.group_key,
        description=group.base_description,
        installment_count=group.installment_count,
        installment_amount_cents=_safe_int(getattr(first, "amount_cents", None), 0) if first else 0,
        paid_installments=paid,
        next_due_date=_billed_on(upcoming) if upcoming is not None else None,
        next_amount_cents=_safe_int(getattr(upcoming, "amount_cents", None), 0) if upcoming is not None else None,
        remaining_cents=remaining,
    )


def summarize_installment_plans(records: Iterable[Any], today: date) -> list[PlanSummary]:
    """Summaries for multi-installment purchases, soonest next installment first."""
    summaries = [
        summarize_installment_plan(group, today)
        for group in aggregate_purchases(records)
        if group.installment_count > 1
    ]
    # Plans with nothing pending go last
    return sorted(summaries, key=lambda s: (s.next_due_date is None, s.next_due_date or date.max))
