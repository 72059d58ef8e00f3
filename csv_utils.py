import csv
import re
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from io import StringIO
from typing import Optional, Sequence

from pydantic import ValidationError
from rapidfuzz.distance import Levenshtein

from models import ExpenseCategory, PaymentMode, Transaction
from schemas import CSVRow

CSV_HEADER = ["Date", "Amount", "Category", "PaymentMode", "UpiId", "Description", "GstRate"]


class CategoryNotFound(ValueError):
    pass


class CategoryAmbiguous(ValueError):
    pass


# Leading characters spreadsheets treat as the start of a formula or command.
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")
_COMMAND_PREFIX = re.compile(r"^(?:cmd|powershell|bash|sh)\b|^https?://", re.IGNORECASE)


def sanitize_csv_value(value: str) -> str:
    """Neutralise exported text cells that a spreadsheet would evaluate."""
    text = (value or "").strip()
    if text.startswith(_FORMULA_PREFIXES) or _COMMAND_PREFIX.match(text):
        return "\t" + text
    return text


def _row_error(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        return f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return str(exc)


def parse_date(value: str) -> datetime:
    value = value.strip()
    for fmt in ("%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S", "%d/%m/%Y", "%d-%m-%Y"):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    raise ValueError(f"Invalid date '{value}'")


def parse_amount(value: str) -> Decimal:
    clean = (
        value.strip()
        .replace("₹", "")
        .replace("Rs.", "")
        .replace("INR", "")
        .replace(",", "")
        .replace(" ", "")
    )
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite() or amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP) <= 0:
        raise ValueError("Amount must be positive")
    return amount


def match_category(raw: str) -> ExpenseCategory:
    """Resolve a free-text category name to the closed category list.

    Exact (case-insensitive) names win; otherwise a unique name within one
    edit is accepted.
    """
    name = raw.strip()
    if not name:
        raise CategoryNotFound("Category is required")
    lowered = name.lower()
    for category in ExpenseCategory:
        if category.value.lower() == lowered:
            return category

    best_distance: Optional[int] = None
    best: list[ExpenseCategory] = []
    for category in ExpenseCategory:
        dist = int(Levenshtein.distance(lowered, category.value.lower()))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [category]
        elif dist == best_distance:
            best.append(category)

    if best_distance is not None and best_distance <= 1:
        if len(best) > 1:
            options = ", ".join(sorted(c.value for c in best))
            raise CategoryAmbiguous(f"Category '{name}' is ambiguous; matches: {options}")
        return best[0]
    raise CategoryNotFound(f"Unknown category '{name}'")


def match_payment_mode(raw: str) -> PaymentMode:
    lowered = raw.strip().lower()
    for mode in PaymentMode:
        if mode.value.lower() == lowered:
            return mode
    raise ValueError(f"Unknown payment mode '{raw.strip()}'")


def parse_csv(content: str) -> tuple[list[CSVRow], list[str]]:
    reader = csv.DictReader(StringIO(content))
    rows: list[CSVRow] = []
    errors: list[str] = []
    for idx, raw in enumerate(reader, start=1):
        try:
            upi_raw = (raw.get("UpiId") or "").strip()
            description_raw = (raw.get("Description") or "").strip()
            rows.append(
                CSVRow(
                    date=parse_date(raw.get("Date") or ""),
                    amount=parse_amount(raw.get("Amount") or "0"),
                    category=match_category(raw.get("Category") or ""),
                    payment_mode=match_payment_mode(raw.get("PaymentMode") or "Cash"),
                    upi_id=upi_raw or None,
                    description=description_raw or None,
                )
            )
        except Exception as exc:
            errors.append(f"Row {idx}: {_row_error(exc)}")
    return rows, errors


def export_transactions(transactions: Sequence[Transaction]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)
    for txn in transactions:
        writer.writerow(
            [
                txn.date.strftime("%Y-%m-%d %H:%M:%S"),
                f"{txn.amount_cents / 100:.2f}",
                txn.category.value,
                txn.payment_mode.value,
                sanitize_csv_value(txn.upi_id or ""),
                sanitize_csv_value(txn.description or ""),
                str(txn.gst_rate),
            ]
        )
    return output.getvalue()
