from datetime import date

import pytest

from stockbill.services.card_service import CardNotFoundError
from stockbill.services.installment_service import schedule_installments
from stockbill.services.reporting_service import (
    ReportError,
    card_statement,
    installment_plans_report,
    list_payments,
    monthly_totals,
    purchases_report,
    statement_totals,
)


@pytest.fixture
def ledger(card):
    """A three-installment card plan in March plus a cash payment in March and one in April."""
    plan = schedule_installments(
        total_amount_cents=30000,
        installment_count=3,
        transaction_date=date(2026, 3, 5),
        method="CARD",
        closing_day=card.closing_day,
        card_id=card.id,
        description="TV",
        idempotency_base="tv",
    )
    cash_march = schedule_installments(
        total_amount_cents=500,
        installment_count=1,
        transaction_date=date(2026, 3, 1),
        method="CASH",
        description="Cafe",
    )
    cash_april = schedule_installments(
        total_amount_cents=700,
        installment_count=1,
        transaction_date=date(2026, 4, 2),
        method="CASH",
        description="Almuerzo",
    )
    return card, plan, cash_march[0], cash_april[0]


class TestListPayments:
    def test_filters(self, ledger):
        card, plan, cash_march, cash_april = ledger

        assert len(list_payments()) == 5
        assert len(list_payments(card_id=card.id)) == 3
        assert [p.id for p in list_payments(method="CASH")] == [cash_april.id, cash_march.id]
        assert [p.id for p in list_payments(start="2026-04-01")] == [cash_april.id]
        assert len(list_payments(start="2026-03-01", end="2026-03-31")) == 4

    def test_bad_range(self, db_session):
        with pytest.raises(ReportError):
            list_payments(start="2026-04-01", end="2026-03-01")
        with pytest.raises(ReportError):
            list_payments(start="yesterday")


class TestTotals:
    def test_statement_totals(self, ledger):
        card, *_ = ledger
        records = list_payments(card_id=card.id) + list_payments(method="CASH")

        totals = statement_totals(records, date(2026, 4, 20))

        assert totals == {
            "total_current_cents": 30000 + 500 + 700,
            "total_next_cents": 10000,
            # installment 1 has two to go, installment 2 has one
            "total_future_cents": 10000 * 2 + 10000 * 1,
        }

    def test_future_can_be_excluded(self, ledger):
        card, *_ = ledger
        totals = statement_totals(list_payments(card_id=card.id), date(2026, 4, 20), include_future=False)
        assert totals["total_future_cents"] == 0

    def test_monthly_totals(self, ledger):
        assert monthly_totals(list_payments()) == [
            {"month": "2026-03", "total_cents": 30500},
            {"month": "2026-04", "total_cents": 700},
        ]


class TestReports:
    def test_purchases_report_groups_plan(self, ledger):
        groups = purchases_report()

        keys = [g["group_key"] for g in groups]
        assert "tv" in keys
        tv = next(g for g in groups if g["group_key"] == "tv")
        assert tv["base_description"] == "TV"
        assert tv["total_amount_cents"] == 30000
        assert len(tv["member_ids"]) == 3
        # April cash payment is the newest purchase
        assert groups[0]["base_description"] == "Almuerzo"

    def test_installment_plans_report(self, ledger):
        plans = installment_plans_report(today=date(2026, 4, 1))

        assert len(plans) == 1
        assert plans[0]["paid_installments"] == 1
        assert plans[0]["next_due_date"] == "2026-04-20"

    def test_card_statement(self, ledger):
        card, *_ = ledger

        statement = card_statement(card.id, today=date(2026, 3, 10))

        assert statement["current_closing_date"] == "2026-03-20"
        assert statement["next_closing_date"] == "2026-04-20"
        assert statement["next_due_date"] == "2026-04-05"
        assert statement["totals"]["total_current_cents"] == 30000
        assert statement["totals"]["total_next_cents"] == 10000
        assert statement["monthly"] == [{"month": "2026-03", "total_cents": 30000}]

    def test_card_statement_unknown_card(self, db_session):
        with pytest.raises(CardNotFoundError):
            card_statement(404)
