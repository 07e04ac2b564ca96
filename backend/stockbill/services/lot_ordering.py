# Overview: Pluggable consumption order for cost lots.

"""
A LotOrdering decides which lot the allocator drains next. It is expressed
twice so the same policy can rank rows in SQL (allocator loop) and in Python
(previews, tests):

- order_by(): SQLAlchemy ORDER BY clauses against CostLot
- sort_key(lot): key for sorted(); the first element is drained first

Both forms must agree, including the final `id` tie-break that keeps the
order deterministic when created_at and unit cost are equal.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from flask import current_app

from ..models import CostLot


@dataclass(frozen=True)
class LotOrdering:
    name: str
    order_by: Callable[[], list]
    sort_key: Callable[[CostLot], tuple]

    def rank(self, lots):
        return sorted(lots, key=self.sort_key)


# Most recently received first; among lots received at the same instant the
# most expensive goes first. This is the realized-cost policy used by the
# profit reports, so the cost tie-break is part of the contract.
LIFO_COST_DESC = LotOrdering(
    name="lifo_cost_desc",
    order_by=lambda: [
        CostLot.created_at.desc(),
        CostLot.unit_cost_cents.desc(),
        CostLot.id.desc(),
    ],
    sort_key=lambda lot: (
        -lot.created_at.timestamp(),
        -lot.unit_cost_cents,
        -(lot.id or 0),
    ),
)

FIFO = LotOrdering(
    name="fifo",
    order_by=lambda: [
        CostLot.created_at.asc(),
        CostLot.id.asc(),
    ],
    sort_key=lambda lot: (
        lot.created_at.timestamp(),
        lot.id or 0,
    ),
)

ORDERINGS = {ordering.name: ordering for ordering in (LIFO_COST_DESC, FIFO)}


def get_lot_ordering(name: str | None = None) -> LotOrdering:
    """
    Resolve a policy by name; None means the app's STOCK_LOT_ORDERING setting.
    """
    if name is None:
        name = current_app.config.get("STOCK_LOT_ORDERING", LIFO_COST_DESC.name)
    try:
        return ORDERINGS[name]
    except KeyError:
        raise ValueError(f"unknown lot ordering: {name}") from None
