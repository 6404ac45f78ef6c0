from datetime import datetime
from decimal import Decimal

import pytest

from models import PeriodKind
from periods import PeriodSelectionError
from schemas import BudgetCategory, IncomeSource, MonthlyRecord, Payment
from services import ReportAggregator

WHEN = datetime(2025, 1, 15, 12, 0)


def _income(amount: float, id: str = "inc") -> IncomeSource:
    return IncomeSource(id=id, name="Salary", amount=amount, date_added=WHEN)


def _category(
    id: str, name: str, allocated: float, icon: str = "Home"
) -> BudgetCategory:
    return BudgetCategory(id=id, name=name, allocated_amount=allocated, icon_name=icon)


def _payment(id: str, category_id: str, amount: float) -> Payment:
    return Payment(
        id=id,
        category_id=category_id,
        description="Payment",
        amount=amount,
        date=WHEN,
        is_transferred=False,
    )


def _record(year, month, incomes=(), categories=(), payments=()) -> MonthlyRecord:
    return MonthlyRecord(
        user_id="u1",
        year=year,
        month=month,
        incomes=list(incomes),
        budget_categories=list(categories),
        payments=list(payments),
    )


def _rent_records() -> list[MonthlyRecord]:
    jan = _record(
        2025,
        0,
        incomes=[_income(3000)],
        categories=[_category("rent-jan", "Rent", 1200)],
        payments=[_payment("p1", "rent-jan", 1200)],
    )
    feb = _record(
        2025,
        1,
        incomes=[_income(3200)],
        categories=[_category("rent-feb", "Rent", 1200)],
        payments=[_payment("p2", "rent-feb", 1250)],
    )
    return [jan, feb]


def test_yearly_report_for_rent_scenario() -> None:
    summary = ReportAggregator().generate_report(
        _rent_records(), PeriodKind.yearly, 2025
    )

    assert summary.period_label == "Year 2025"
    assert summary.total_income == Decimal("6200")
    assert summary.total_budgeted == Decimal("2400")
    assert summary.total_spent == Decimal("2450")
    assert summary.remaining_balance == Decimal("3750")
    assert len(summary.category_summaries) == 1
    rent = summary.category_summaries[0]
    assert rent.category_name == "Rent"
    assert rent.icon_name == "Home"
    assert rent.total_allocated == Decimal("2400")
    assert rent.total_spent_in_period == Decimal("2450")
    assert rent.remaining_in_category == Decimal("-50")


def test_monthly_report_without_stored_record_is_all_zero() -> None:
    summary = ReportAggregator().generate_report(
        _rent_records(), PeriodKind.monthly, 2025, 2
    )

    assert summary.period_label == "March 2025"
    assert summary.total_income == 0
    assert summary.total_budgeted == 0
    assert summary.total_spent == 0
    assert summary.remaining_balance == 0
    assert summary.category_summaries == []


def test_monthly_selection_only_takes_matching_month() -> None:
    selected = ReportAggregator.select_period(
        _rent_records(), PeriodKind.monthly, 2025, 1
    )
    assert selected.label == "February 2025"
    assert [(r.year, r.month) for r in selected.records] == [(2025, 1)]

    summary = ReportAggregator.aggregate(selected.records, selected.label)
    assert summary.total_income == Decimal("3200")
    assert summary.total_spent == Decimal("1250")


def test_yearly_selection_ignores_other_years() -> None:
    records = _rent_records() + [_record(2024, 11, incomes=[_income(999)])]
    selected = ReportAggregator.select_period(records, PeriodKind.yearly, 2024)
    assert selected.label == "Year 2024"
    assert len(selected.records) == 1
    assert selected.month is None


def test_allocations_accumulate_across_months_by_name() -> None:
    jan = _record(2025, 0, categories=[_category("g1", "Groceries", 400)])
    feb = _record(2025, 1, categories=[_category("g7", "Groceries", 350)])

    summary = ReportAggregator().generate_report([jan, feb], PeriodKind.yearly, 2025)

    assert [s.category_name for s in summary.category_summaries] == ["Groceries"]
    assert summary.category_summaries[0].total_allocated == Decimal("750")


def test_unresolved_payment_counts_toward_total_only() -> None:
    jan = _record(
        2025,
        0,
        categories=[_category("c1", "Rent", 1000)],
        payments=[_payment("p1", "c1", 900), _payment("p2", "ghost", 40)],
    )
    # "c1" exists in January only; February's payment must not resolve to it
    feb = _record(2025, 1, payments=[_payment("p3", "c1", 60)])

    summary = ReportAggregator().generate_report([jan, feb], PeriodKind.yearly, 2025)

    assert summary.total_spent == Decimal("1000")
    assert len(summary.category_summaries) == 1
    assert summary.category_summaries[0].total_spent_in_period == Decimal("900")


def test_aggregation_is_order_independent() -> None:
    jan = _record(
        2025,
        0,
        incomes=[_income(0.1, "a"), _income(0.2, "b"), _income(0.3, "c")],
        categories=[
            _category("c1", "Fun", 10.1, icon="Film"),
            _category("c2", "Food", 20.2, icon="Utensils"),
        ],
        payments=[_payment("p1", "c1", 3.3), _payment("p2", "c2", 1.1)],
    )
    feb = _record(
        2025,
        1,
        incomes=[_income(1234.56)],
        categories=[_category("x", "Fun", 0.7, icon="Gamepad")],
        payments=[_payment("p3", "x", 0.3), _payment("p4", "nope", 0.01)],
    )
    shuffled_jan = jan.model_copy(
        update={
            "incomes": list(reversed(jan.incomes)),
            "budget_categories": list(reversed(jan.budget_categories)),
            "payments": list(reversed(jan.payments)),
        }
    )

    forward = ReportAggregator.aggregate([jan, feb], "Year 2025")
    backward = ReportAggregator.aggregate([feb, shuffled_jan], "Year 2025")

    assert forward.model_dump() == backward.model_dump()
    assert forward.total_income == Decimal("1235.16")
    fun = next(s for s in forward.category_summaries if s.category_name == "Fun")
    assert fun.icon_name == "Film"


def test_reaggregation_is_identical() -> None:
    records = _rent_records()
    first = ReportAggregator.aggregate(records, "Year 2025")
    second = ReportAggregator.aggregate(records, "Year 2025")
    assert first.model_dump_json() == second.model_dump_json()


def test_remaining_invariants_hold_exactly() -> None:
    records = [
        _record(
            2025,
            month,
            incomes=[_income(1000.33 + month)],
            categories=[
                _category(f"a{month}", "Bills", 99.99),
                _category(f"b{month}", "Coffee", 12.345),
            ],
            payments=[
                _payment(f"p{month}", f"a{month}", 100.015),
                _payment(f"q{month}", f"b{month}", 3.1),
            ],
        )
        for month in range(12)
    ]

    summary = ReportAggregator().generate_report(records, PeriodKind.yearly, 2025)

    assert summary.remaining_balance.is_finite()
    for row in summary.category_summaries:
        assert row.remaining_in_category == (
            row.total_allocated - row.total_spent_in_period
        )
        assert row.total_allocated.as_tuple().exponent == -2


def test_category_summaries_sorted_by_name() -> None:
    jan = _record(
        2025,
        0,
        categories=[
            _category("1", "Utilities", 10),
            _category("2", "Groceries", 10),
            _category("3", "Rent", 10),
        ],
    )
    summary = ReportAggregator.aggregate([jan])
    assert [s.category_name for s in summary.category_summaries] == [
        "Groceries",
        "Rent",
        "Utilities",
    ]


def test_negative_and_non_finite_amounts_pass_through() -> None:
    jan = _record(
        2025,
        0,
        incomes=[_income(-50)],
        categories=[_category("c1", "Rent", 100)],
        payments=[_payment("p1", "c1", float("inf"))],
    )

    summary = ReportAggregator.aggregate([jan])

    assert summary.total_income == Decimal("-50")
    assert summary.total_spent == Decimal("Infinity")
    assert summary.remaining_balance == Decimal("-Infinity")


def test_monthly_period_without_month_fails_fast() -> None:
    with pytest.raises(PeriodSelectionError):
        ReportAggregator.select_period(_rent_records(), PeriodKind.monthly, 2025)

    with pytest.raises(PeriodSelectionError):
        ReportAggregator.select_period(_rent_records(), PeriodKind.monthly, 2025, 12)


def test_large_finite_amounts_keep_exact_cents() -> None:
    jan = _record(
        2025,
        0,
        incomes=[_income(1e300)],
        categories=[_category("c1", "Rent", 1e30)],
        payments=[_payment("p1", "c1", 0.01)],
    )

    summary = ReportAggregator.aggregate([jan], "January 2025")

    assert summary.total_income == Decimal("1e300")
    assert summary.total_budgeted == Decimal("1e30")
    rent = summary.category_summaries[0]
    assert rent.total_allocated.is_finite()
    assert rent.remaining_in_category == Decimal("999999999999999999999999999999.99")
    assert summary.remaining_balance.is_finite()
