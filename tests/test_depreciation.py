"""Tests for depreciation schedules and tax-deductible amounts."""

import pytest
from datetime import date
from decimal import Decimal

from freelance_books.depreciation import (
    InvalidDepreciationInputError,
    apply_deductible_percentage,
    calculate_schedule,
    tax_deductible_amount,
)
from freelance_books.models.audit import AuditEventType
from freelance_books.models.expense import DepreciationSettings, DepreciationType
from freelance_books.services.storage import NotFoundError


class TestCalculateSchedule:
    """Tests for the pure schedule calculation."""

    def test_pro_rata_first_year(self):
        """Test a three-year schedule starting in July."""
        schedule = calculate_schedule(Decimal("1200.00"), 3, date(2024, 7, 1))

        assert [e.year for e in schedule] == [2024, 2025, 2026]
        assert [e.amount for e in schedule] == [
            Decimal("200.00"), Decimal("400.00"), Decimal("600.00"),
        ]
        assert [e.cumulative_amount for e in schedule] == [
            Decimal("200.00"), Decimal("600.00"), Decimal("1200.00"),
        ]
        assert [e.remaining_value for e in schedule] == [
            Decimal("1000.00"), Decimal("600.00"), Decimal("0.00"),
        ]
        assert [e.is_final_year for e in schedule] == [False, False, True]

    def test_rounding_residue_goes_to_final_year(self):
        """Test that thirds of 1000 end in the final year."""
        schedule = calculate_schedule(Decimal("1000.00"), 3, date(2024, 1, 10))
        assert [e.amount for e in schedule] == [
            Decimal("333.33"), Decimal("333.33"), Decimal("333.34"),
        ]

    def test_december_start(self):
        """Test that a December start gets one month in the first year."""
        schedule = calculate_schedule(Decimal("1000.00"), 5, date(2024, 12, 1))
        assert schedule[0].amount == Decimal("16.67")
        assert schedule[1].amount == Decimal("200.00")
        assert schedule[-1].amount == Decimal("383.33")

    @pytest.mark.parametrize("month", range(1, 13))
    def test_single_year_is_full_net_amount(self, month):
        """Test that a one-year life is deducted in full for every start month."""
        schedule = calculate_schedule(Decimal("899.00"), 1, date(2024, month, 1))
        assert len(schedule) == 1
        assert schedule[0].amount == Decimal("899.00")
        assert schedule[0].remaining_value == Decimal("0.00")
        assert schedule[0].is_final_year

    def test_schedule_invariants(self):
        """Test sum, monotonic cumulative amount and single final year."""
        for net, years, start in [
            (Decimal("1234.56"), 7, date(2023, 3, 15)),
            (Decimal("0.10"), 4, date(2024, 11, 1)),
            (Decimal("50000.00"), 13, date(2020, 6, 30)),
            (Decimal("0.00"), 3, date(2024, 1, 1)),
        ]:
            schedule = calculate_schedule(net, years, start)

            assert len(schedule) == years
            assert [e.year for e in schedule] == list(range(start.year, start.year + years))
            assert sum(e.amount for e in schedule) == net
            assert schedule[-1].remaining_value == 0
            assert sum(e.is_final_year for e in schedule) == 1
            cumulative = [e.cumulative_amount for e in schedule]
            assert cumulative == sorted(cumulative)
            for entry in schedule:
                assert entry.amount >= 0
                assert entry.remaining_value == net - entry.cumulative_amount

    def test_missing_years_raises(self):
        """Test that years are required."""
        with pytest.raises(InvalidDepreciationInputError):
            calculate_schedule(Decimal("100"), None, date(2024, 1, 1))

    def test_missing_start_date_raises(self):
        """Test that a start date is required."""
        with pytest.raises(InvalidDepreciationInputError):
            calculate_schedule(Decimal("100"), 3, None)

    def test_zero_years_raises(self):
        """Test that a useful life below one year is rejected."""
        with pytest.raises(InvalidDepreciationInputError):
            calculate_schedule(Decimal("100"), 0, date(2024, 1, 1))

    @pytest.mark.parametrize("start_year, years", [(1999, 10), (2095, 10)])
    def test_years_outside_supported_range_raise(self, start_year, years):
        """Test that schedules must fall within 2000-2100."""
        with pytest.raises(InvalidDepreciationInputError):
            calculate_schedule(Decimal("1000"), years, date(start_year, 1, 1))

    def test_useful_life_above_limit_raises(self):
        """Test that the useful life is capped at 50 years."""
        with pytest.raises(InvalidDepreciationInputError):
            calculate_schedule(Decimal("1000"), 51, date(2024, 1, 1))


class TestTaxDeductibleAmount:
    """Tests for first-year deductible amounts."""

    @pytest.mark.parametrize("dep_type", ["none", "immediate"])
    def test_non_partial_is_net_amount(self, dep_type):
        """Test that immediate and no depreciation deduct everything."""
        settings = DepreciationSettings(type=dep_type)
        assert tax_deductible_amount(settings, Decimal("500.00")) == Decimal("500.00")

    @pytest.mark.parametrize("month", range(1, 13))
    def test_single_year_partial_is_net_amount(self, month):
        """Test one-year partial depreciation for every start month."""
        settings = DepreciationSettings(type="partial", years=1, start_date=date(2024, month, 5))
        assert tax_deductible_amount(settings, Decimal("1299.00")) == Decimal("1299.00")

    def test_multi_year_partial_is_first_year_amount(self, partial_settings):
        """Test that multi-year partial depreciation deducts the pro-rata share."""
        assert tax_deductible_amount(partial_settings, Decimal("1200.00")) == Decimal("200.00")

    def test_partial_without_years_raises(self):
        """Test incomplete partial settings."""
        with pytest.raises(InvalidDepreciationInputError):
            tax_deductible_amount(DepreciationSettings(type="partial"), Decimal("100"))


class TestApplyDeductiblePercentage:
    """Tests for partial tax deductibility."""

    def test_percentage_of_net_amount(self):
        """Test 50% of the net amount."""
        assert apply_deductible_percentage(Decimal("100.00"), Decimal("50")) == Decimal("50.00")

    def test_scheduled_amount_wins_when_positive(self):
        """Test that a positive scheduled amount replaces the net amount."""
        result = apply_deductible_percentage(Decimal("1200.00"), Decimal("50"), Decimal("200.00"))
        assert result == Decimal("100.00")

    def test_zero_scheduled_amount_falls_back_to_net(self):
        """Test that a zero scheduled amount is ignored."""
        result = apply_deductible_percentage(Decimal("80.00"), Decimal("25"), Decimal("0"))
        assert result == Decimal("20.00")

    def test_result_is_rounded_half_up(self):
        """Test cent rounding."""
        assert apply_deductible_percentage(Decimal("0.05"), Decimal("50")) == Decimal("0.03")


class TestDepreciationScheduler:
    """Tests for the store-backed scheduler."""

    def test_replace_schedule_stores_entries(self, scheduler, store, make_expense, owner_id):
        """Test that replace_schedule writes the computed schedule."""
        expense = store.insert_expense(make_expense())

        entries = scheduler.replace_schedule(expense.id, owner_id, 3, date(2024, 7, 1))

        stored = scheduler.get_schedule(expense.id, owner_id)
        assert [e.amount for e in stored] == [e.amount for e in entries]
        assert all(e.expense_id == expense.id for e in stored)

    def test_replace_schedule_replaces_whole_schedule(self, scheduler, store, make_expense, owner_id):
        """Test that a shorter schedule leaves no rows of the longer one."""
        expense = store.insert_expense(make_expense())
        scheduler.replace_schedule(expense.id, owner_id, 5, date(2024, 1, 1))
        scheduler.replace_schedule(expense.id, owner_id, 2, date(2024, 1, 1))

        assert [e.year for e in scheduler.get_schedule(expense.id, owner_id)] == [2024, 2025]

    def test_invalid_replace_keeps_prior_schedule(self, scheduler, store, make_expense, owner_id):
        """Test that a failed replacement leaves the previous schedule."""
        expense = store.insert_expense(make_expense())
        scheduler.replace_schedule(expense.id, owner_id, 3, date(2024, 1, 1))

        with pytest.raises(InvalidDepreciationInputError):
            scheduler.replace_schedule(expense.id, owner_id, 0, date(2024, 1, 1))

        assert len(scheduler.get_schedule(expense.id, owner_id)) == 3

    def test_other_owner_cannot_replace(self, scheduler, store, make_expense, other_owner_id):
        """Test that foreign expenses look missing."""
        expense = store.insert_expense(make_expense())
        with pytest.raises(NotFoundError):
            scheduler.replace_schedule(expense.id, other_owner_id, 3, date(2024, 1, 1))

    def test_amount_for_year_partial(self, scheduler, store, make_expense, owner_id, partial_settings):
        """Test yearly amounts of a capitalized expense."""
        expense = store.insert_expense(make_expense(
            amount=Decimal("1428.00"),
            net_amount=Decimal("1200.00"),
            tax_amount=Decimal("228.00"),
        ))
        scheduler.update_settings(expense.id, owner_id, partial_settings)

        assert scheduler.amount_for_year(expense.id, owner_id, 2024) == Decimal("200.00")
        assert scheduler.amount_for_year(expense.id, owner_id, 2025) == Decimal("400.00")
        assert scheduler.amount_for_year(expense.id, owner_id, 2027) == Decimal("0")

    def test_amount_for_year_immediate(self, scheduler, store, make_expense, owner_id):
        """Test that non-capitalized expenses count in their own year only."""
        expense = store.insert_expense(make_expense())
        assert scheduler.amount_for_year(expense.id, owner_id, 2024) == Decimal("100.00")
        assert scheduler.amount_for_year(expense.id, owner_id, 2025) == Decimal("0")

    def test_amount_for_year_missing_expense(self, scheduler, make_expense, owner_id):
        """Test NotFound for unknown expenses."""
        with pytest.raises(NotFoundError):
            scheduler.amount_for_year(make_expense().id, owner_id, 2024)

    def test_update_settings_partial(self, scheduler, store, make_expense, owner_id, partial_settings):
        """Test switching an expense to partial depreciation."""
        expense = store.insert_expense(make_expense())

        updated = scheduler.update_settings(expense.id, owner_id, partial_settings)

        assert updated.depreciation.type == DepreciationType.PARTIAL
        assert updated.depreciation.tax_deductible_amount == Decimal("16.67")
        assert len(store.get_schedule(expense.id, owner_id)) == 3
        assert store.get_expense(expense.id, owner_id).depreciation.years == 3

    def test_update_settings_to_immediate_clears_schedule(
        self, scheduler, store, make_expense, owner_id, partial_settings
    ):
        """Test that immediate depreciation removes the schedule and life."""
        expense = store.insert_expense(make_expense())
        scheduler.update_settings(expense.id, owner_id, partial_settings)

        updated = scheduler.update_settings(
            expense.id, owner_id, DepreciationSettings(type="immediate", years=3)
        )

        assert store.get_schedule(expense.id, owner_id) == []
        assert updated.depreciation.years is None
        assert updated.depreciation.start_date is None
        assert updated.depreciation.tax_deductible_amount == Decimal("100.00")

    def test_update_settings_partial_requires_years(self, scheduler, store, make_expense, owner_id):
        """Test validation of partial settings."""
        expense = store.insert_expense(make_expense())
        with pytest.raises(InvalidDepreciationInputError):
            scheduler.update_settings(
                expense.id, owner_id, DepreciationSettings(type="partial", start_date=date(2024, 1, 1))
            )
        assert store.get_expense(expense.id, owner_id).depreciation.type == DepreciationType.NONE

    def test_update_settings_propagates_to_children(
        self, scheduler, generator, store, make_template, owner_id, partial_settings
    ):
        """Test that occurrences inherit settings and template-anchored schedules."""
        template = store.insert_expense(make_template())
        generator.backfill(template, today=date(2024, 4, 15))

        scheduler.update_settings(template.id, owner_id, partial_settings)

        children = store.list_children(template.id, owner_id)
        assert len(children) == 2
        for child in children:
            assert child.depreciation.type == DepreciationType.PARTIAL
            assert child.depreciation.start_date == date(2024, 7, 1)
            schedule = store.get_schedule(child.id, owner_id)
            assert [e.year for e in schedule] == [2024, 2025, 2026]
            assert schedule[0].amount == Decimal("16.67")

    def test_update_settings_is_audited(
        self, scheduler, store, make_expense, owner_id, partial_settings, audit_storage
    ):
        """Test the settings audit event."""
        expense = store.insert_expense(make_expense())
        scheduler.update_settings(expense.id, owner_id, partial_settings)

        events = audit_storage.get_events_by_entity("expense", expense.id)
        assert events[-1].event_type == AuditEventType.DEPRECIATION_SETTINGS_UPDATED
        assert events[-1].details["tax_deductible_amount"] == "16.67"

    def test_deductible_total_for_year(
        self, scheduler, store, make_expense, owner_id, other_owner_id
    ):
        """Test the yearly sum across one owner's schedules."""
        first = store.insert_expense(make_expense())
        second = store.insert_expense(make_expense())
        foreign = store.insert_expense(make_expense(owner_id=other_owner_id))
        scheduler.replace_schedule(first.id, owner_id, 2, date(2024, 1, 1))
        scheduler.replace_schedule(second.id, owner_id, 4, date(2024, 1, 1))
        scheduler.replace_schedule(foreign.id, other_owner_id, 2, date(2024, 1, 1))

        assert scheduler.deductible_total_for_year(owner_id, 2024) == Decimal("75.00")
        assert scheduler.deductible_total_for_year(owner_id, 2030) == Decimal("0.00")

    def test_update_settings_outside_year_range_is_audited(
        self, scheduler, store, make_expense, owner_id, audit_storage
    ):
        """Test that an out-of-range schedule is rejected and recorded as an error."""
        expense = store.insert_expense(make_expense())

        with pytest.raises(InvalidDepreciationInputError):
            scheduler.update_settings(
                expense.id,
                owner_id,
                DepreciationSettings(type="partial", years=10, start_date=date(2095, 1, 1)),
            )

        assert audit_storage.get_recent_events(limit=1)[0].event_type == AuditEventType.SYSTEM_ERROR
        assert store.get_schedule(expense.id, owner_id) == []

    def test_deductible_total_applies_percentage(self, scheduler, store, make_expense, owner_id):
        """Test that mixed-use expenses count only their deductible share."""
        expense = store.insert_expense(make_expense(
            depreciation=DepreciationSettings(tax_deductible_percentage=Decimal("50")),
        ))
        scheduler.replace_schedule(expense.id, owner_id, 2, date(2024, 1, 1))

        assert scheduler.amount_for_year(expense.id, owner_id, 2024) == Decimal("50.00")
        assert scheduler.deductible_amount_for_year(expense.id, owner_id, 2024) == Decimal("25.00")
        assert scheduler.deductible_amount_for_year(expense.id, owner_id, 2026) == Decimal("0")
        assert scheduler.deductible_total_for_year(owner_id, 2024) == Decimal("25.00")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
