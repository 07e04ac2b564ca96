from datetime import date, datetime, timedelta

import pytest

from stockbill.extensions import db
from stockbill.models import CostLot, Payment, Product
from stockbill.services.inventory_service import InsufficientStockError, allocate_stock, replenish_stock
from stockbill.services.installment_service import InstallmentError
from stockbill.services.transaction_service import (
    LotPaymentNotFoundError,
    TransactionError,
    get_lot_payment,
    register_purchase,
    register_transaction,
)
from stockbill.time_utils import utcnow


def _stock(product_id: int) -> int:
    db.session.expire_all()
    return db.session.get(Product, product_id).stock


class TestRegisterTransaction:
    def test_expense_consumes_lots_and_schedules_installments(self, stocked_product, card):
        product, lots = stocked_product

        result = register_transaction(
            direction="EXPENSE",
            method="CARD",
            amount_cents=30000,
            transaction_date=date(2026, 3, 5),
            description="Venta TV",
            card_id=card.id,
            product_id=product.id,
            quantity=4,
            installment_count=3,
        )

        assert result.replayed is False
        assert [c.lot_id for c in result.allocation.consumed] == [lots["B"], lots["C"]]
        assert [p.amount_cents for p in result.payments] == [10000, 10000, 10000]
        assert all(p.product_id == product.id for p in result.payments)
        assert _stock(product.id) == 8
        assert db.session.query(Payment).count() == 3

    def test_insufficient_stock_persists_no_payment(self, stocked_product, card):
        product, lots = stocked_product

        with pytest.raises(InsufficientStockError):
            register_transaction(
                direction="EXPENSE",
                method="CARD",
                amount_cents=90000,
                transaction_date=date(2026, 3, 5),
                card_id=card.id,
                product_id=product.id,
                quantity=50,
                installment_count=3,
            )

        assert db.session.query(Payment).count() == 0
        assert _stock(product.id) == 12
        assert db.session.get(CostLot, lots["B"]).remaining_quantity == 3

    def test_bad_installment_input_leaves_stock_untouched(self, stocked_product):
        product, _ = stocked_product

        with pytest.raises(InstallmentError):
            register_transaction(
                direction="EXPENSE",
                method="CASH",
                amount_cents=1000,
                transaction_date=date(2026, 3, 5),
                product_id=product.id,
                quantity=2,
                installment_count=2,
            )

        assert _stock(product.id) == 12

    def test_income_creates_lot_with_derived_unit_cost(self, product):
        result = register_transaction(
            direction="INCOME",
            method="TRANSFER",
            amount_cents=1000,
            transaction_date=date(2026, 1, 15),
            product_id=product.id,
            quantity=3,
        )

        lot = result.replenishment.lot
        # 1000 / 3 = 333.33 -> 333
        assert lot.unit_cost_cents == 333
        assert lot.created_at == datetime(2026, 1, 15)
        assert result.payments[0].cost_lot_id == lot.id
        assert result.payments[0].billing_cycle_date is None
        assert _stock(product.id) == 3

    def test_payment_without_stock_movement(self, card):
        result = register_transaction(
            direction="EXPENSE",
            method="CARD",
            amount_cents=4500,
            transaction_date="2026-03-25",
            description="Servicio",
            card_id=card.id,
        )

        assert result.allocation is None and result.replenishment is None
        assert result.payments[0].billing_cycle_date == date(2026, 4, 20)

    def test_replay_does_not_move_stock_twice(self, stocked_product, card):
        product, _ = stocked_product
        kwargs = dict(
            direction="EXPENSE",
            method="CARD",
            amount_cents=20000,
            transaction_date=date(2026, 3, 5),
            card_id=card.id,
            product_id=product.id,
            quantity=2,
            installment_count=2,
            idempotency_base="sale-77",
        )

        first = register_transaction(**kwargs)
        second = register_transaction(**kwargs)

        assert second.replayed is True
        assert [p.id for p in second.payments] == [p.id for p in first.payments]
        assert _stock(product.id) == 10

    def test_unknown_card(self, db_session):
        with pytest.raises(TransactionError):
            register_transaction(
                direction="EXPENSE",
                method="CARD",
                amount_cents=100,
                transaction_date=date(2026, 3, 5),
                card_id=999,
            )

    @pytest.mark.parametrize("field,value", [("direction", "REFUND"), ("method", "CHEQUE")])
    def test_invalid_enums(self, db_session, field, value):
        kwargs = dict(direction="EXPENSE", method="CASH", amount_cents=100, transaction_date=date(2026, 3, 5))
        kwargs[field] = value
        with pytest.raises(TransactionError):
            register_transaction(**kwargs)


class TestRegisterPurchase:
    def test_lot_linked_to_card_installments(self, product, card):
        result = register_purchase(
            product_id=product.id,
            quantity=10,
            unit_cost_cents=2500,
            card_id=card.id,
            purchase_date="2026-02-10T15:00:00Z",
            installment_count=2,
        )

        lot = result.replenishment.lot
        assert lot.created_at == datetime(2026, 2, 10, 15, 0)
        assert [p.amount_cents for p in result.payments] == [12500, 12500]
        assert [p.description for p in result.payments] == [
            "Compra de producto (Cuota 1/2)",
            "Compra de producto (Cuota 2/2)",
        ]
        assert all(p.cost_lot_id == lot.id for p in result.payments)
        assert [p.billing_cycle_date for p in result.payments] == [date(2026, 2, 20), date(2026, 3, 20)]
        assert _stock(product.id) == 10

    def test_explicit_total_and_description(self, product, card):
        result = register_purchase(
            product_id=product.id,
            quantity=2,
            unit_cost_cents=1000,
            card_id=card.id,
            purchase_date=datetime(2026, 2, 1),
            total_amount_cents=1900,
            description="Mayorista",
        )
        assert result.payments[0].amount_cents == 1900
        assert result.payments[0].description == "Mayorista"

    def test_zero_cost_purchase_has_no_payment(self, product, card):
        result = register_purchase(
            product_id=product.id,
            quantity=1,
            unit_cost_cents=0,
            card_id=card.id,
            purchase_date=datetime(2026, 2, 1),
        )
        assert result.payments == []
        assert result.replenishment.lot.remaining_quantity == 1

    def test_card_required(self, product):
        with pytest.raises(TransactionError):
            register_purchase(product_id=product.id, quantity=1, unit_cost_cents=100, card_id=None)

    def test_get_lot_payment(self, product, card):
        result = register_purchase(
            product_id=product.id,
            quantity=3,
            unit_cost_cents=500,
            card_id=card.id,
            purchase_date=datetime(2026, 2, 1),
        )

        payment = get_lot_payment(result.replenishment.lot.id)

        assert payment["amount_cents"] == 1500
        assert payment["card_alias"] == "Visa Galicia"

    def test_get_lot_payment_missing(self, stocked_product):
        _, lots = stocked_product
        with pytest.raises(LotPaymentNotFoundError):
            get_lot_payment(lots["A"])

    def test_future_purchase_date_rejected(self, product, card):
        with pytest.raises(TransactionError):
            register_purchase(
                product_id=product.id,
                quantity=5,
                unit_cost_cents=900,
                card_id=card.id,
                purchase_date=utcnow() + timedelta(days=365),
            )

        assert db.session.query(CostLot).count() == 0
        assert db.session.query(Payment).count() == 0

        replenish_stock(product_id=product.id, quantity=5, unit_cost_cents=100)
        consumed = allocate_stock(product_id=product.id, quantity=1).consumed
        assert consumed[0].unit_cost_cents == 100

    def test_zero_cost_purchase_rejects_idempotency_key(self, product, card):
        with pytest.raises(TransactionError):
            register_purchase(
                product_id=product.id,
                quantity=1,
                unit_cost_cents=0,
                card_id=card.id,
                purchase_date=datetime(2026, 2, 1),
                idempotency_base="gift-1",
            )

        assert db.session.query(CostLot).count() == 0
        assert _stock(product.id) == 0

    def test_replayed_purchase_creates_one_lot(self, product, card):
        kwargs = dict(
            product_id=product.id,
            quantity=2,
            unit_cost_cents=700,
            card_id=card.id,
            purchase_date=datetime(2026, 2, 1),
            idempotency_base="buy-9",
        )

        first = register_purchase(**kwargs)
        second = register_purchase(**kwargs)

        assert second.replayed is True
        assert [p.id for p in second.payments] == [p.id for p in first.payments]
        assert db.session.query(CostLot).count() == 1
        assert _stock(product.id) == 2
