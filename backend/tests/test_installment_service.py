from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from stockbill.extensions import db
from stockbill.models import Payment
from stockbill.services import installment_service
from stockbill.services.installment_service import (
    InstallmentError,
    build_installment_records,
    schedule_installments,
    split_amount_cents,
)


def _card_plan(**overrides):
    kwargs = dict(
        total_amount_cents=30000,
        installment_count=3,
        transaction_date=date(2026, 3, 5),
        method="CARD",
        idempotency_base="tx-1",
        closing_day=20,
        card_id=1,
        description="Heladera",
    )
    kwargs.update(overrides)
    return build_installment_records(**kwargs)


class TestSplitAmount:
    def test_even_split(self):
        assert split_amount_cents(30000, 3) == 10000

    def test_rounds_half_up(self):
        assert split_amount_cents(10000, 3) == 3333
        assert split_amount_cents(200, 3) == 67
        assert split_amount_cents(5, 2) == 3


class TestBuildRecords:
    def test_three_installments(self):
        records = _card_plan()

        assert [r.amount_cents for r in records] == [10000, 10000, 10000]
        assert [r.installment_index for r in records] == [1, 2, 3]
        assert [r.billing_cycle_date for r in records] == [
            date(2026, 3, 20),
            date(2026, 4, 20),
            date(2026, 5, 20),
        ]
        assert [r.description for r in records] == [
            "Heladera (Cuota 1/3)",
            "Heladera (Cuota 2/3)",
            "Heladera (Cuota 3/3)",
        ]
        assert [r.idempotency_key for r in records] == ["tx-1-cuota-1", "tx-1-cuota-2", "tx-1-cuota-3"]
        assert all(r.is_installment for r in records)
        assert all(r.installment_count == 3 for r in records)
        assert all(r.parent_transaction_id == "tx-1" for r in records)
        assert all(r.transaction_date == date(2026, 3, 5) for r in records)

    def test_rounding_drift_is_kept(self):
        records = _card_plan(total_amount_cents=10000)

        assert [r.amount_cents for r in records] == [3333, 3333, 3333]
        # The plan sums to one cent less than the purchase
        assert sum(r.amount_cents for r in records) == 9999

    def test_rounding_drift_upwards(self):
        records = _card_plan(total_amount_cents=200)
        assert sum(r.amount_cents for r in records) == 201

    def test_purchase_after_closing_starts_next_cycle(self):
        records = _card_plan(transaction_date=date(2026, 3, 25), installment_count=2)
        assert [r.billing_cycle_date for r in records] == [date(2026, 4, 20), date(2026, 5, 20)]

    def test_cycles_cross_year(self):
        records = _card_plan(transaction_date=date(2026, 11, 30), installment_count=3)
        assert [r.billing_cycle_date for r in records] == [
            date(2026, 12, 20),
            date(2027, 1, 20),
            date(2027, 2, 20),
        ]

    def test_single_card_payment(self):
        records = _card_plan(installment_count=1)

        assert len(records) == 1
        record = records[0]
        assert record.amount_cents == 30000
        assert record.installment_index == 1
        assert record.installment_count == 1
        assert record.is_installment is False
        assert record.description == "Heladera"
        assert record.idempotency_key == "tx-1"
        assert record.parent_transaction_id is None
        assert record.billing_cycle_date == date(2026, 3, 20)

    def test_cash_payment_has_no_cycle_or_card(self):
        records = build_installment_records(
            total_amount_cents=500,
            installment_count=1,
            transaction_date="2026-03-05",
            method="CASH",
            idempotency_base="cash-1",
            card_id=7,
        )
        assert records[0].billing_cycle_date is None
        assert records[0].card_id is None

    def test_blank_description_gets_default_label(self):
        records = _card_plan(description="   ", installment_count=2)
        assert records[0].description == "Pago (Cuota 1/2)"

    def test_installments_require_card(self):
        with pytest.raises(InstallmentError):
            _card_plan(method="CASH")

    def test_card_requires_card_and_closing_day(self):
        with pytest.raises(InstallmentError):
            _card_plan(card_id=None)
        with pytest.raises(InstallmentError):
            _card_plan(closing_day=None)

    @pytest.mark.parametrize("amount", [0, -100, 10.5, True])
    def test_invalid_amount(self, amount):
        with pytest.raises(InstallmentError):
            _card_plan(total_amount_cents=amount)

    @pytest.mark.parametrize("count", [0, -1, 2.0])
    def test_invalid_count(self, count):
        with pytest.raises(InstallmentError):
            _card_plan(installment_count=count)

    def test_amount_too_small_to_split(self):
        with pytest.raises(InstallmentError):
            _card_plan(total_amount_cents=1, installment_count=3)

    def test_invalid_method(self):
        with pytest.raises(InstallmentError):
            _card_plan(method="CHEQUE")

    def test_invalid_date(self):
        with pytest.raises(InstallmentError):
            _card_plan(transaction_date="05/03/2026")


class TestSchedule:
    def test_persists_all_rows(self, card):
        rows = schedule_installments(
            total_amount_cents=60000,
            installment_count=6,
            transaction_date=date(2026, 3, 5),
            method="CARD",
            closing_day=card.closing_day,
            card_id=card.id,
            description="Notebook",
        )

        assert len(rows) == 6
        stored = db.session.query(Payment).order_by(Payment.installment_index).all()
        assert [p.installment_index for p in stored] == [1, 2, 3, 4, 5, 6]
        assert len({p.parent_transaction_id for p in stored}) == 1

    def test_replay_returns_existing_rows(self, card):
        kwargs = dict(
            total_amount_cents=30000,
            installment_count=3,
            transaction_date=date(2026, 3, 5),
            method="CARD",
            closing_day=card.closing_day,
            card_id=card.id,
            description="Heladera",
            idempotency_base="replay-1",
        )
        first = schedule_installments(**kwargs)
        second = schedule_installments(**kwargs)

        assert [p.id for p in second] == [p.id for p in first]
        assert db.session.query(Payment).count() == 3

    def test_reused_key_for_different_plan(self, card):
        base = dict(
            transaction_date=date(2026, 3, 5),
            method="CARD",
            closing_day=card.closing_day,
            card_id=card.id,
            idempotency_base="reuse-1",
        )
        schedule_installments(total_amount_cents=30000, installment_count=3, **base)

        with pytest.raises(InstallmentError):
            schedule_installments(total_amount_cents=30000, installment_count=2, **base)
        assert db.session.query(Payment).count() == 3

    def test_store_failure_commits_nothing(self, card, monkeypatch):
        real_build = installment_service.build_installment_records

        def clashing_build(**kwargs):
            records = real_build(**kwargs)
            records[-1].idempotency_key = records[0].idempotency_key
            return records

        monkeypatch.setattr(installment_service, "build_installment_records", clashing_build)

        with pytest.raises(IntegrityError):
            schedule_installments(
                total_amount_cents=30000,
                installment_count=3,
                transaction_date=date(2026, 3, 5),
                method="CARD",
                closing_day=card.closing_day,
                card_id=card.id,
                idempotency_base="clash-1",
            )
        assert db.session.query(Payment).count() == 0
