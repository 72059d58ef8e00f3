from datetime import date, datetime
from types import SimpleNamespace

import pytest

from calculations import (
    add_months,
    annual_report,
    budget_status,
    budget_tips,
    classify_budget,
    cents_to_rupees,
    crossed_threshold,
    goal_projection,
    income_stats,
    parse_month_key,
    rupees_to_cents,
    spending_insights,
)
from models import BudgetState, ExpenseCategory, IncomeSource


def _txn(category, cents, when):
    return SimpleNamespace(category=category, amount_cents=cents, date=when)


def test_money_conversion_rounds_half_up() -> None:
    assert rupees_to_cents("12.345") == 1235
    assert rupees_to_cents(0.1) == 10
    assert cents_to_rupees(420_000) == 4200.0


def test_parse_month_key() -> None:
    assert parse_month_key("2026-02") == (2026, 2)
    for bad in ("2026-13", "2026", "abc-01"):
        with pytest.raises(ValueError):
            parse_month_key(bad)


def test_add_months_wraps_years() -> None:
    assert add_months(2026, 1, -1) == (2025, 12)
    assert add_months(2026, 12, 1) == (2027, 1)


def test_budget_status_warning_example() -> None:
    limits = [SimpleNamespace(category=ExpenseCategory.food, amount_cents=500_000)]
    txns = [
        _txn(ExpenseCategory.food, 300_000, datetime(2026, 10, 2)),
        _txn(ExpenseCategory.food, 120_000, datetime(2026, 10, 9)),
        _txn(ExpenseCategory.shopping, 99_000, datetime(2026, 10, 9)),
    ]
    rows = budget_status(limits, txns)
    assert [row.as_dict() for row in rows] == [
        {
            "category": "Food",
            "limit": 5000.0,
            "spent": 4200.0,
            "remaining": 800.0,
            "percentUsed": 84.0,
            "status": "warning",
        }
    ]


def test_budget_status_limit_without_spend_and_ordering() -> None:
    limits = [
        SimpleNamespace(category=ExpenseCategory.other, amount_cents=1_000),
        SimpleNamespace(category=ExpenseCategory.transport, amount_cents=2_000),
    ]
    rows = budget_status(limits, [])
    assert [row.category for row in rows] == [
        ExpenseCategory.transport,
        ExpenseCategory.other,
    ]
    assert rows[0].percent_used == 0
    assert rows[0].status == BudgetState.normal


def test_classify_budget_boundaries() -> None:
    assert classify_budget(3_999, 5_000) == BudgetState.normal
    assert classify_budget(4_000, 5_000) == BudgetState.warning
    assert classify_budget(5_000, 5_000) == BudgetState.exceeded
    assert classify_budget(7_500, 5_000) == BudgetState.exceeded


def test_crossed_threshold_only_reports_new_states() -> None:
    assert crossed_threshold(5_000, 3_000, 4_000) == BudgetState.warning
    assert crossed_threshold(5_000, 4_000, 4_500) is None
    assert crossed_threshold(5_000, 3_000, 6_000) == BudgetState.exceeded
    assert crossed_threshold(5_000, 4_500, 5_000) == BudgetState.exceeded
    assert crossed_threshold(5_000, 6_000, 7_000) is None


def test_budget_tips_adds_category_tips() -> None:
    limits = [
        SimpleNamespace(category=ExpenseCategory.food, amount_cents=1_000),
        SimpleNamespace(category=ExpenseCategory.bills, amount_cents=1_000),
    ]
    txns = [
        _txn(ExpenseCategory.food, 1_200, datetime(2026, 10, 1)),
        _txn(ExpenseCategory.bills, 850, datetime(2026, 10, 1)),
    ]
    tips = budget_tips(budget_status(limits, txns))
    titles = [tip["title"] for tip in tips]
    assert len(tips) == 6
    assert "Food Budget Exceeded" in titles
    assert "Bills Budget Nearly Used" in titles
    assert [tip["id"] for tip in tips] == [1, 2, 3, 4, 5, 6]


def test_goal_projection_spreads_remaining_over_months() -> None:
    projection = goal_projection(
        1_000_000, 250_000, date(2027, 4, 15), False, date(2026, 10, 19)
    )
    assert projection.as_dict() == {
        "progressPercentage": 25.0,
        "isPastDue": False,
        "requiredMonthlySavings": 1250.0,
    }


def test_goal_projection_same_month_uses_single_month() -> None:
    projection = goal_projection(100_000, 40_000, date(2026, 10, 31), False, date(2026, 10, 19))
    assert projection.required_monthly_savings_cents == 60_000


def test_goal_projection_past_due_returns_full_remaining() -> None:
    projection = goal_projection(100_000, 40_000, date(2026, 10, 1), False, date(2026, 10, 19))
    assert projection.is_past_due is True
    assert projection.required_monthly_savings_cents == 60_000


def test_goal_projection_completed_goal_never_past_due() -> None:
    projection = goal_projection(100_000, 120_000, date(2026, 1, 1), True, date(2026, 10, 19))
    assert projection.is_past_due is False
    assert projection.progress_percentage == 120.0
    assert projection.required_monthly_savings_cents == 0


def test_goal_projection_due_through_end_of_target_day() -> None:
    on_the_day = goal_projection(100_000, 40_000, date(2026, 10, 19), False, date(2026, 10, 19))
    day_after = goal_projection(100_000, 40_000, date(2026, 10, 19), False, date(2026, 10, 20))
    assert on_the_day.is_past_due is False
    assert on_the_day.required_monthly_savings_cents == 60_000
    assert day_after.is_past_due is True


def test_spending_insights_trends_and_recommendations() -> None:
    txns = [
        _txn(ExpenseCategory.food, 10_000, datetime(2026, 9, 12)),
        _txn(ExpenseCategory.food, 6_000, datetime(2026, 10, 3)),
        _txn(ExpenseCategory.shopping, 6_000, datetime(2026, 10, 4)),
    ]
    result = spending_insights(txns, date(2026, 10, 19))
    trends = result["trends"]
    assert trends["currentMonth"] == "2026-10"
    assert trends["previousMonth"] == "2026-09"
    assert trends["currentMonthTotal"] == 120.0
    assert trends["lastMonthTotal"] == 100.0
    assert trends["monthlyChange"] == pytest.approx(20.0)
    assert trends["highestSpendCategory"] == "Food"
    assert trends["mostFrequentCategory"] == "Food"
    assert trends["mostFrequentCount"] == 2
    assert [rec["id"] for rec in result["recommendations"]] == [1, 2]


def test_spending_insights_frequency_and_spend_can_differ() -> None:
    txns = [
        _txn(ExpenseCategory.transport, 100, datetime(2026, 10, 1)),
        _txn(ExpenseCategory.transport, 100, datetime(2026, 10, 2)),
        _txn(ExpenseCategory.investment, 50_000, datetime(2026, 10, 3)),
    ]
    trends = spending_insights(txns, date(2026, 10, 19))["trends"]
    assert trends["mostFrequentCategory"] == "Transport"
    assert trends["highestSpendCategory"] == "Investment"
    assert trends["monthlyChange"] == 0


def test_spending_insights_empty_falls_back_to_emergency_fund() -> None:
    result = spending_insights([], date(2026, 1, 5))
    assert result["trends"]["previousMonth"] == "2025-12"
    assert result["trends"]["mostFrequentCategory"] is None
    assert [rec["id"] for rec in result["recommendations"]] == [3]


def test_income_stats_groups_trailing_year() -> None:
    incomes = [
        SimpleNamespace(amount_cents=5_000_000, source=IncomeSource.salary, date=datetime(2026, 10, 1)),
        SimpleNamespace(amount_cents=1_000_000, source=IncomeSource.freelance, date=datetime(2026, 9, 10)),
        SimpleNamespace(amount_cents=5_000_000, source=IncomeSource.salary, date=datetime(2026, 9, 1)),
        SimpleNamespace(amount_cents=10_000, source=IncomeSource.gift, date=datetime(2025, 1, 1)),
    ]
    stats = income_stats(incomes, date(2026, 10, 19))
    assert stats["monthlyIncome"] == [
        {"month": "2026-09", "total": 60000.0, "count": 2},
        {"month": "2026-10", "total": 50000.0, "count": 1},
    ]
    assert [row["source"] for row in stats["incomeBySource"]] == ["Salary", "Freelance"]
    assert stats["currentMonth"] == {"total": 50000.0, "count": 1}
    assert stats["currentYear"] == {"total": 110000.0, "count": 3}


def test_annual_report_totals_and_gst() -> None:
    txns = [
        _txn(ExpenseCategory.food, 10_500, datetime(2026, 1, 5)),
        _txn(ExpenseCategory.shopping, 11_800, datetime(2026, 3, 5)),
    ]
    report = annual_report(txns, [5, 18], 2026)
    assert report["year"] == 2026
    assert report["monthlyTotals"] == [
        {"month": "2026-01", "total": 105.0},
        {"month": "2026-03", "total": 118.0},
    ]
    assert report["categoryTotals"] == {"Food": 105.0, "Shopping": 118.0}
    assert report["totalAmount"] == 223.0
    assert report["totalGST"] == 23.0
    assert report["transactionCount"] == 2
