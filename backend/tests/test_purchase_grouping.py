from datetime import date
from types import SimpleNamespace

import pytest

from stockbill.services.purchase_grouping import (
    aggregate_purchases,
    parse_installment_label,
    strip_installment_label,
    summarize_installment_plan,
    summarize_installment_plans,
)


def _row(row_id, description, amount=5000, *, count=1, index=1, card_id="A",
         tx_date=date(2026, 3, 5), cycle=None, parent=None):
    return SimpleNamespace(
        id=row_id,
        description=description,
        amount_cents=amount,
        installment_count=count,
        installment_index=index,
        card_id=card_id,
        transaction_date=tx_date,
        billing_cycle_date=cycle,
        parent_transaction_id=parent,
    )


class TestLabels:
    def test_parse(self):
        label = parse_installment_label("TV 55 (Cuota 2/12)")
        assert (label.base, label.index, label.count) == ("TV 55", 2, 12)

    def test_parse_case_and_spacing(self):
        label = parse_installment_label("  Heladera(cuota  1/3)  ")
        assert (label.base, label.index, label.count) == ("Heladera", 1, 3)

    @pytest.mark.parametrize("description", [
        None, "", "TV", "TV (Cuota x/2)", "TV (Cuota 1/2) extra", "(Cuota 1/2)", 42, ["TV (Cuota 1/2)"],
    ])
    def test_parse_rejects(self, description):
        assert parse_installment_label(description) is None

    def test_strip(self):
        assert strip_installment_label("TV (Cuota 1/2)") == "TV"
        assert strip_installment_label("TV") == "TV"
        assert strip_installment_label(None) == ""


class TestAggregate:
    def test_label_fallback_groups_two_installments(self):
        rows = [
            _row(1, "TV (Cuota 1/2)", 7500, count=2, index=1),
            _row(2, "TV (Cuota 2/2)", 7500, count=2, index=2),
        ]

        groups = aggregate_purchases(rows)

        assert len(groups) == 1
        group = groups[0]
        assert group.base_description == "TV"
        assert group.group_key == "TV_2_A"
        assert group.member_ids == [1, 2]
        assert group.total_amount_cents == 15000
        assert group.linked is False

    def test_same_label_on_different_cards_stays_apart(self):
        rows = [
            _row(1, "TV (Cuota 1/2)", count=2, index=1, card_id="A"),
            _row(2, "TV (Cuota 1/2)", count=2, index=1, card_id="B"),
        ]
        assert len(aggregate_purchases(rows)) == 2

    def test_label_fallback_without_card(self):
        rows = [
            _row(1, "TV (Cuota 1/2)", count=2, index=1, card_id=None),
            _row(2, "TV (Cuota 2/2)", count=2, index=2, card_id=None),
        ]

        groups = aggregate_purchases(rows)

        assert [g.group_key for g in groups] == ["TV_2_nocard"]
        assert groups[0].member_ids == [1, 2]

    def test_parent_link_wins_over_label(self):
        rows = [
            _row(1, "TV (Cuota 1/2)", count=2, index=1, parent="tx-1"),
            _row(2, "TV (Cuota 2/2)", count=2, index=2, parent="tx-1"),
            _row(3, "TV (Cuota 1/2)", count=2, index=1, parent="tx-2"),
        ]

        groups = aggregate_purchases(rows)

        assert sorted(g.group_key for g in groups) == ["tx-1", "tx-2"]
        linked = next(g for g in groups if g.group_key == "tx-1")
        assert linked.linked is True
        assert linked.base_description == "TV"
        assert linked.member_ids == [1, 2]

    def test_plain_rows_are_singletons(self):
        rows = [_row(1, "Almuerzo"), _row(2, "Almuerzo")]

        groups = aggregate_purchases(rows)

        assert [g.group_key for g in groups] == ["single_1", "single_2"]
        assert all(g.installment_count == 1 and not g.linked for g in groups)

    def test_members_sorted_by_installment_index(self):
        rows = [
            _row(3, "Silla (Cuota 3/3)", count=3, index=3, parent="p"),
            _row(1, "Silla (Cuota 1/3)", count=3, index=1, parent="p"),
            _row(2, "Silla (Cuota 2/3)", count=3, index=2, parent="p"),
        ]
        assert aggregate_purchases(rows)[0].member_ids == [1, 2, 3]

    def test_installment_count_takes_max_and_date_takes_min(self):
        rows = [
            _row(1, "Mesa (Cuota 1/3)", count=1, index=1, tx_date=date(2026, 4, 1)),
            _row(2, "Mesa (Cuota 2/3)", count=3, index=2, tx_date=date(2026, 3, 1)),
        ]

        group = aggregate_purchases(rows)[0]

        assert group.installment_count == 3
        assert group.first_transaction_date == date(2026, 3, 1)

    def test_groups_newest_first_and_stable(self):
        rows = [
            _row(1, "Viejo", tx_date=date(2026, 1, 1)),
            _row(2, "Nuevo", tx_date=date(2026, 3, 1)),
            _row(3, "Empate", tx_date=date(2026, 3, 1)),
        ]
        assert [g.group_key for g in aggregate_purchases(rows)] == ["single_2", "single_3", "single_1"]

    def test_malformed_rows_never_raise(self):
        rows = [
            _row(1, None, amount=None, count="x", index=None, tx_date=None),
            _row(2, 12345, amount="abc", tx_date="not-a-date"),
            _row(3, "Roto (Cuota 0/0)"),
            SimpleNamespace(id=4),
        ]

        groups = aggregate_purchases(rows)

        assert len(groups) == 4
        assert sorted(g.group_key for g in groups) == ["single_1", "single_2", "single_3", "single_4"]
        assert sum(g.total_amount_cents for g in groups) == 5000

    def test_empty_input(self):
        assert aggregate_purchases([]) == []


class TestPlanSummary:
    def _plan(self):
        return [
            _row(1, "TV (Cuota 1/3)", 10000, count=3, index=1, cycle=date(2026, 3, 20), parent="tv"),
            _row(2, "TV (Cuota 2/3)", 10000, count=3, index=2, cycle=date(2026, 4, 20), parent="tv"),
            _row(3, "TV (Cuota 3/3)", 10000, count=3, index=3, cycle=date(2026, 5, 20), parent="tv"),
        ]

    def test_progress_mid_plan(self):
        group = aggregate_purchases(self._plan())[0]

        summary = summarize_installment_plan(group, date(2026, 4, 1))

        assert summary.paid_installments == 1
        assert summary.next_due_date == date(2026, 4, 20)
        assert summary.next_amount_cents == 10000
        assert summary.remaining_cents == 20000
        assert summary.installment_amount_cents == 10000

    def test_cycle_day_counts_as_billed(self):
        group = aggregate_purchases(self._plan())[0]
        assert summarize_installment_plan(group, date(2026, 4, 20)).paid_installments == 2

    def test_finished_plan(self):
        group = aggregate_purchases(self._plan())[0]

        summary = summarize_installment_plan(group, date(2026, 6, 1))

        assert summary.paid_installments == 3
        assert summary.next_due_date is None
        assert summary.next_amount_cents is None
        assert summary.remaining_cents == 0

    def test_plans_skip_single_payments_and_sort(self):
        rows = self._plan() + [
            _row(10, "Silla (Cuota 1/2)", 500, count=2, index=1, cycle=date(2026, 3, 20), parent="silla"),
            _row(11, "Silla (Cuota 2/2)", 500, count=2, index=2, cycle=date(2026, 4, 20), parent="silla"),
            _row(20, "Cafe", 300),
        ]

        summaries = summarize_installment_plans(rows, date(2026, 4, 25))

        assert [s.group_key for s in summaries] == ["tv", "silla"]
        assert summaries[1].next_due_date is None
