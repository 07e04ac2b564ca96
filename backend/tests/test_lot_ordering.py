from datetime import datetime

import pytest

from stockbill.models import CostLot
from stockbill.services.lot_ordering import FIFO, LIFO_COST_DESC, get_lot_ordering


def _lot(lot_id, cost, received):
    return CostLot(
        id=lot_id,
        product_id=1,
        unit_cost_cents=cost,
        original_quantity=1,
        remaining_quantity=1,
        created_at=received,
    )


LOTS = [
    _lot(1, 1000, datetime(2026, 1, 10)),
    _lot(2, 1500, datetime(2026, 2, 10)),
    _lot(3, 1200, datetime(2026, 2, 10)),
    _lot(4, 1200, datetime(2026, 2, 10)),
]


def test_lifo_cost_desc_rank():
    # Same instant: most expensive first, then highest id
    assert [lot.id for lot in LIFO_COST_DESC.rank(LOTS)] == [2, 4, 3, 1]


def test_fifo_rank():
    assert [lot.id for lot in FIFO.rank(LOTS)] == [1, 2, 3, 4]


def test_default_comes_from_config(app):
    with app.app_context():
        assert get_lot_ordering() is LIFO_COST_DESC
        app.config["STOCK_LOT_ORDERING"] = "fifo"
        try:
            assert get_lot_ordering() is FIFO
        finally:
            app.config["STOCK_LOT_ORDERING"] = "lifo_cost_desc"


def test_unknown_name(app):
    with app.app_context():
        with pytest.raises(ValueError):
            get_lot_ordering("lowest_cost_first")
