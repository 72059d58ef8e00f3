from datetime import datetime
from decimal import Decimal

import pytest

from csv_utils import (
    CategoryNotFound,
    match_category,
    match_payment_mode,
    parse_amount,
    parse_csv,
    parse_date,
    sanitize_csv_value,
)
from models import ExpenseCategory, PaymentMode


def test_match_category_exact_and_fuzzy() -> None:
    assert match_category("FOOD") == ExpenseCategory.food
    assert match_category(" bills ") == ExpenseCategory.bills
    assert match_category("Bils") == ExpenseCategory.bills
    assert match_category("Transprt") == ExpenseCategory.transport


def test_match_category_rejects_unknown_names() -> None:
    with pytest.raises(CategoryNotFound):
        match_category("Groceries")
    with pytest.raises(CategoryNotFound):
        match_category("")


def test_parse_amount_strips_currency_markers() -> None:
    assert parse_amount("₹1,250.50") == Decimal("1250.50")
    assert parse_amount("Rs. 99") == Decimal("99")
    with pytest.raises(ValueError):
        parse_amount("-5")
    with pytest.raises(ValueError):
        parse_amount("twelve")


def test_parse_date_formats() -> None:
    assert parse_date("2026-10-05") == datetime(2026, 10, 5)
    assert parse_date("05/10/2026") == datetime(2026, 10, 5)
    assert parse_date("2026-10-05 18:30:00") == datetime(2026, 10, 5, 18, 30)
    with pytest.raises(ValueError):
        parse_date("October 5")


def test_payment_mode_is_case_insensitive() -> None:
    assert match_payment_mode("net banking") == PaymentMode.net_banking
    with pytest.raises(ValueError):
        match_payment_mode("Cheque")


def test_parse_csv_collects_row_errors() -> None:
    content = (
        "Date,Amount,Category,PaymentMode,UpiId,Description\n"
        "2026-10-01,120,Food,Cash,,Tea\n"
        "2026-10-01,120,Groceries,Cash,,Veg\n"
        "bad-date,120,Food,Cash,,Snacks\n"
    )
    rows, errors = parse_csv(content)
    assert len(rows) == 1
    assert rows[0].description == "Tea"
    assert errors[0].startswith("Row 2: Unknown category")
    assert errors[1].startswith("Row 3: Invalid date")


def test_sanitize_csv_value_neutralises_formulas() -> None:
    assert sanitize_csv_value("=SUM(A1:A3)") == "\t=SUM(A1:A3)"
    assert sanitize_csv_value("https://evil.example") == "\thttps://evil.example"
    assert sanitize_csv_value("Lunch") == "Lunch"


def test_sanitize_csv_value_handles_commands_and_blanks() -> None:
    assert sanitize_csv_value("cmd /c calc") == "\tcmd /c calc"
    assert sanitize_csv_value("-42") == "\t-42"
    assert sanitize_csv_value("  ") == ""
    assert sanitize_csv_value("dosa@ybl") == "dosa@ybl"
    assert sanitize_csv_value("shopping") == "shopping"


def test_parse_csv_reports_field_limits_per_row() -> None:
    content = (
        "Date,Amount,Category,PaymentMode,UpiId,Description\n"
        f"2026-10-01,120,Food,Cash,,{'x' * 600}\n"
        "2026-10-02,0.004,Food,Cash,,Crumbs\n"
    )
    rows, errors = parse_csv(content)
    assert rows == []
    assert errors[0] == "Row 1: description: String should have at most 500 characters"
    assert errors[1] == "Row 2: Amount must be positive"
