import csv
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Sequence

from models import Expense


EXPORT_HEADER = ["Date", "Description", "Category", "Amount"]


def sanitize_csv_value(value: str) -> str:
    """Prefix cells a spreadsheet would read as a formula with a tab."""
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value
    return value


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    """Parse a user supplied money string (``"12.50"``, ``"$1,234.56"``) into cents."""
    clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    cents = int((amount * 100).quantize(Decimal("1")))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def format_amount(cents: int) -> str:
    return f"{cents / 100:.2f}"


def export_expenses(expenses: Sequence[Expense]) -> str:
    output = StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(EXPORT_HEADER)
    for expense in expenses:
        writer.writerow(
            [
                expense.date.isoformat(),
                sanitize_csv_value(expense.description),
                expense.category,
                format_amount(expense.amount_cents),
            ]
        )
    return output.getvalue()
