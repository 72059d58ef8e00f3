from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Union

from models import ExpenseCategory

Number = Union[int, float, Decimal, str]

# Single source of truth for per-category GST; transactions copy the rate at write time.
GST_RATES: dict[ExpenseCategory, int] = {
    ExpenseCategory.food: 5,
    ExpenseCategory.transport: 12,
    ExpenseCategory.shopping: 18,
    ExpenseCategory.bills: 0,
    ExpenseCategory.investment: 0,
    ExpenseCategory.other: 18,
}

_TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class GstBreakdown:
    amount: Decimal  # GST-inclusive
    rate: int
    base: Decimal
    tax: Decimal

    def as_dict(self) -> dict[str, float]:
        return {
            "amount": float(self.amount),
            "gstRate": self.rate,
            "baseAmount": float(self.base),
            "gstAmount": float(self.tax),
        }


def gst_rate_for(category: ExpenseCategory | str) -> int:
    return GST_RATES[ExpenseCategory(category)]


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def split_inclusive(amount: Number, rate: int) -> GstBreakdown:
    """Split a GST-inclusive amount into its pre-tax base and tax portion.

    The base is rounded half-up to paise and the tax is derived from it, so
    ``base + tax`` always equals ``amount`` exactly.
    """
    total = _to_decimal(amount).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    if rate < 0:
        raise ValueError("GST rate cannot be negative")
    base = (total * Decimal(100) / Decimal(100 + rate)).quantize(
        _TWO_PLACES, rounding=ROUND_HALF_UP
    )
    return GstBreakdown(amount=total, rate=rate, base=base, tax=total - base)


def split_cents(amount_cents: int, rate: int) -> GstBreakdown:
    return split_inclusive(Decimal(amount_cents) / Decimal(100), rate)


def gst_by_category(
    rows: Iterable[tuple[ExpenseCategory, int, int]],
) -> dict[str, dict[str, float]]:
    """Aggregate ``(category, amount_cents, gst_rate)`` rows per category.

    Each category's inclusive total is split once using the category's rate,
    which keeps the report consistent with the per-transaction breakdown.
    """
    totals: dict[ExpenseCategory, int] = {}
    rates: dict[ExpenseCategory, int] = {}
    for category, amount_cents, rate in rows:
        category = ExpenseCategory(category)
        totals[category] = totals.get(category, 0) + amount_cents
        rates.setdefault(category, rate)

    summary: dict[str, dict[str, float]] = {}
    for category in ExpenseCategory:
        if category not in totals:
            continue
        breakdown = split_cents(totals[category], rates[category])
        summary[category.value] = {
            "total": float(breakdown.amount),
            "gstRate": breakdown.rate,
            "gstAmount": float(breakdown.tax),
            "baseAmount": float(breakdown.base),
        }
    return summary
