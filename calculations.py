"""Pure aggregation helpers used by the services.

Every function here works on already-fetched, user-scoped records (anything
with the relevant attributes) and never touches the database, so the write
and read paths share one implementation of each derived value.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Protocol, Sequence

from gst import gst_by_category
from models import BudgetState, ExpenseCategory

WARNING_THRESHOLD_PERCENT = 80
EXCEEDED_THRESHOLD_PERCENT = 100
SPENDING_INCREASE_ALERT_PERCENT = 15


class HasSpend(Protocol):
    category: ExpenseCategory
    amount_cents: int
    date: datetime


class HasLimit(Protocol):
    category: ExpenseCategory
    amount_cents: int


def cents_to_rupees(cents: int) -> float:
    return float(
        (Decimal(cents) / Decimal(100)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    )


def rupees_to_cents(amount: float | Decimal | str) -> int:
    value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def month_key(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def parse_month_key(value: str) -> tuple[int, int]:
    try:
        year_str, month_str = value.split("-", 1)
        year, month = int(year_str), int(month_str)
    except ValueError as exc:
        raise ValueError("Month must be formatted as YYYY-MM") from exc
    if not 1 <= month <= 12 or not 1970 <= year <= 3000:
        raise ValueError("Month must be formatted as YYYY-MM")
    return year, month


def add_months(year: int, month: int, count: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + count
    return index // 12, index % 12 + 1


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """Half-open ``[start, end)`` datetime range covering a calendar month."""
    next_year, next_month = add_months(year, month, 1)
    return datetime(year, month, 1), datetime(next_year, next_month, 1)


def spent_by_category(transactions: Iterable[HasSpend]) -> dict[ExpenseCategory, int]:
    totals: dict[ExpenseCategory, int] = {}
    for txn in transactions:
        category = ExpenseCategory(txn.category)
        totals[category] = totals.get(category, 0) + txn.amount_cents
    return totals


def classify_budget(spent_cents: int, limit_cents: int) -> BudgetState:
    # Integer comparison keeps the 80% and 100% boundaries exact.
    if spent_cents * 100 >= limit_cents * EXCEEDED_THRESHOLD_PERCENT:
        return BudgetState.exceeded
    if spent_cents * 100 >= limit_cents * WARNING_THRESHOLD_PERCENT:
        return BudgetState.warning
    return BudgetState.normal


@dataclass(frozen=True)
class BudgetStatusRow:
    category: ExpenseCategory
    limit_cents: int
    spent_cents: int

    @property
    def remaining_cents(self) -> int:
        return self.limit_cents - self.spent_cents

    @property
    def percent_used(self) -> float:
        return self.spent_cents * 100 / self.limit_cents

    @property
    def status(self) -> BudgetState:
        return classify_budget(self.spent_cents, self.limit_cents)

    def as_dict(self) -> dict[str, object]:
        return {
            "category": self.category.value,
            "limit": cents_to_rupees(self.limit_cents),
            "spent": cents_to_rupees(self.spent_cents),
            "remaining": cents_to_rupees(self.remaining_cents),
            "percentUsed": self.percent_used,
            "status": self.status.value,
        }


def budget_status(
    limits: Iterable[HasLimit], month_transactions: Iterable[HasSpend]
) -> list[BudgetStatusRow]:
    """Combine budget limits with one month's transactions.

    Categories without a limit are not reported. Rows follow the category
    enumeration order.
    """
    spent = spent_by_category(month_transactions)
    order = {category: idx for idx, category in enumerate(ExpenseCategory)}
    rows = [
        BudgetStatusRow(
            category=ExpenseCategory(limit.category),
            limit_cents=limit.amount_cents,
            spent_cents=spent.get(ExpenseCategory(limit.category), 0),
        )
        for limit in limits
    ]
    return sorted(rows, key=lambda row: order[row.category])


def crossed_threshold(
    limit_cents: int, spent_before_cents: int, spent_after_cents: int
) -> Optional[BudgetState]:
    """Return the state newly reached by a spend increase, if any."""
    before = classify_budget(spent_before_cents, limit_cents)
    after = classify_budget(spent_after_cents, limit_cents)
    if after == before or after == BudgetState.normal:
        return None
    return after


GENERAL_BUDGET_TIPS: list[dict[str, object]] = [
    {
        "id": 1,
        "title": "Follow the 50/30/20 Rule",
        "content": "Try to allocate 50% of your income to needs, 30% to wants, "
        "and 20% to savings and debt repayment.",
    },
    {
        "id": 2,
        "title": "Track Every Expense",
        "content": "Record all transactions to understand your spending patterns "
        "and identify areas for improvement.",
    },
    {
        "id": 3,
        "title": "Use Cash for Discretionary Spending",
        "content": "Using cash instead of cards for non-essential purchases can "
        "help you be more mindful of your spending.",
    },
    {
        "id": 4,
        "title": "Review Your Budget Regularly",
        "content": "Check your budget at least once a week to stay on track and "
        "make adjustments as needed.",
    },
]


def budget_tips(rows: Sequence[BudgetStatusRow]) -> list[dict[str, object]]:
    tips = [dict(tip) for tip in GENERAL_BUDGET_TIPS]
    next_id = len(tips) + 1
    for row in rows:
        if row.status == BudgetState.exceeded:
            tips.append(
                {
                    "id": next_id,
                    "title": f"{row.category.value} Budget Exceeded",
                    "content": f"You have spent {row.percent_used:.0f}% of your "
                    f"{row.category.value} budget this month. Pause non-essential "
                    f"{row.category.value.lower()} purchases until next month.",
                }
            )
            next_id += 1
        elif row.status == BudgetState.warning:
            tips.append(
                {
                    "id": next_id,
                    "title": f"{row.category.value} Budget Nearly Used",
                    "content": f"Only ₹{cents_to_rupees(row.remaining_cents):,.2f} "
                    f"is left in your {row.category.value} budget this month.",
                }
            )
            next_id += 1
    return tips


@dataclass(frozen=True)
class GoalProjection:
    progress_percentage: float
    is_past_due: bool
    required_monthly_savings_cents: int

    def as_dict(self) -> dict[str, object]:
        return {
            "progressPercentage": self.progress_percentage,
            "isPastDue": self.is_past_due,
            "requiredMonthlySavings": cents_to_rupees(
                self.required_monthly_savings_cents
            ),
        }


def goal_projection(
    target_cents: int,
    current_cents: int,
    target_date: date,
    is_completed: bool,
    today: date,
) -> GoalProjection:
    """A goal stays on time through the whole of its target date in the local timezone."""
    remaining = max(0, target_cents - current_cents)
    if today > target_date:
        monthly = remaining
    else:
        months = (target_date.year - today.year) * 12 + (
            target_date.month - today.month
        )
        divisor = max(months, 1)
        monthly = int(
            (Decimal(remaining) / Decimal(divisor)).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
        )
    return GoalProjection(
        progress_percentage=current_cents * 100 / target_cents,
        is_past_due=(not is_completed) and today > target_date,
        required_monthly_savings_cents=monthly,
    )


def spending_insights(
    transactions: Sequence[HasSpend], today: date
) -> dict[str, object]:
    """Month-over-month trend, top categories and canned recommendations."""
    current_key = month_key(today)
    prev_year, prev_month = add_months(today.year, today.month, -1)
    previous_key = f"{prev_year:04d}-{prev_month:02d}"

    month_totals: dict[str, int] = {}
    category_totals: dict[ExpenseCategory, int] = {}
    category_counts: dict[ExpenseCategory, int] = {}
    for txn in transactions:
        key = month_key(txn.date)
        month_totals[key] = month_totals.get(key, 0) + txn.amount_cents
        category = ExpenseCategory(txn.category)
        category_totals[category] = category_totals.get(category, 0) + txn.amount_cents
        category_counts[category] = category_counts.get(category, 0) + 1

    current_total = month_totals.get(current_key, 0)
    previous_total = month_totals.get(previous_key, 0)
    if previous_total > 0:
        monthly_change = (current_total - previous_total) * 100 / previous_total
    else:
        monthly_change = 0.0

    # Ties keep the first category seen, mirroring a strict "greater than" scan.
    most_frequent: Optional[ExpenseCategory] = None
    for category, count in category_counts.items():
        if most_frequent is None or count > category_counts[most_frequent]:
            most_frequent = category
    highest_spend: Optional[ExpenseCategory] = None
    for category, total in category_totals.items():
        if highest_spend is None or total > category_totals[highest_spend]:
            highest_spend = category

    recommendations: list[dict[str, object]] = []
    if monthly_change > SPENDING_INCREASE_ALERT_PERCENT:
        recommendations.append(
            {
                "id": 1,
                "title": "Spending Increase Alert",
                "content": f"Your spending has increased by {monthly_change:.1f}% "
                "compared to last month. Consider reviewing your expenses to "
                "identify areas for reduction.",
            }
        )
    if highest_spend is not None:
        recommendations.append(
            {
                "id": 2,
                "title": f"High {highest_spend.value} Expenses",
                "content": f"{highest_spend.value} is your highest expense category. "
                "Setting a budget limit for this category could help you control "
                "your spending.",
            }
        )
    if not recommendations:
        recommendations.append(
            {
                "id": 3,
                "title": "Build Your Emergency Fund",
                "content": "Financial experts recommend having 3-6 months of "
                "expenses saved for emergencies. Track your progress in the "
                "Budget section.",
            }
        )

    return {
        "trends": {
            "currentMonth": current_key,
            "previousMonth": previous_key,
            "currentMonthTotal": cents_to_rupees(current_total),
            "lastMonthTotal": cents_to_rupees(previous_total),
            "monthlyChange": monthly_change,
            "mostFrequentCategory": most_frequent.value if most_frequent else None,
            "mostFrequentCount": category_counts.get(most_frequent, 0)
            if most_frequent
            else 0,
            "highestSpendCategory": highest_spend.value if highest_spend else None,
            "highestSpendAmount": cents_to_rupees(category_totals[highest_spend])
            if highest_spend
            else 0.0,
        },
        "recommendations": recommendations,
    }


class HasIncome(Protocol):
    amount_cents: int
    source: object
    date: datetime


def _total_and_count(items: Iterable[HasIncome]) -> dict[str, object]:
    total = 0
    count = 0
    for item in items:
        total += item.amount_cents
        count += 1
    return {"total": cents_to_rupees(total), "count": count}


def income_stats(incomes: Sequence[HasIncome], today: date) -> dict[str, object]:
    """Income grouped by month (trailing year) and by source, plus running totals."""
    try:
        one_year_ago = today.replace(year=today.year - 1)
    except ValueError:  # 29 February
        one_year_ago = today.replace(year=today.year - 1, day=28)
    window_start = datetime.combine(one_year_ago, datetime.min.time())
    recent = [inc for inc in incomes if inc.date >= window_start]

    by_month: dict[str, list[HasIncome]] = {}
    by_source: dict[str, list[HasIncome]] = {}
    for inc in recent:
        by_month.setdefault(month_key(inc.date), []).append(inc)
        source = getattr(inc.source, "value", inc.source)
        by_source.setdefault(str(source), []).append(inc)

    monthly = [
        {"month": key, **_total_and_count(items)}
        for key, items in sorted(by_month.items())
    ]
    sources = [
        {"source": key, **_total_and_count(items)} for key, items in by_source.items()
    ]
    sources.sort(key=lambda row: row["total"], reverse=True)

    current = [
        inc
        for inc in incomes
        if inc.date.year == today.year and inc.date.month == today.month
    ]
    this_year = [inc for inc in incomes if inc.date.year == today.year]
    return {
        "monthlyIncome": monthly,
        "incomeBySource": sources,
        "currentMonth": _total_and_count(current),
        "currentYear": _total_and_count(this_year),
    }


def annual_report(
    transactions: Sequence[HasSpend], gst_rates: Sequence[int], year: int
) -> dict[str, object]:
    """Totals for one calendar year; ``gst_rates`` aligns with ``transactions``."""
    monthly: dict[str, int] = {}
    by_category: dict[ExpenseCategory, int] = {}
    gst_rows: list[tuple[ExpenseCategory, int, int]] = []
    for txn, rate in zip(transactions, gst_rates):
        key = month_key(txn.date)
        monthly[key] = monthly.get(key, 0) + txn.amount_cents
        category = ExpenseCategory(txn.category)
        by_category[category] = by_category.get(category, 0) + txn.amount_cents
        gst_rows.append((category, txn.amount_cents, rate))

    gst_data = gst_by_category(gst_rows)
    total_gst = sum(Decimal(str(row["gstAmount"])) for row in gst_data.values())
    return {
        "year": year,
        "monthlyTotals": [
            {"month": key, "total": cents_to_rupees(cents)}
            for key, cents in sorted(monthly.items())
        ],
        "categoryTotals": {
            category.value: cents_to_rupees(by_category[category])
            for category in ExpenseCategory
            if category in by_category
        },
        "gstData": gst_data,
        "totalAmount": cents_to_rupees(sum(by_category.values())),
        "totalGST": float(total_gst),
        "transactionCount": len(transactions),
    }


def reminder_window(today: date, days: int = 7) -> tuple[date, date]:
    return today, today + timedelta(days=days)
