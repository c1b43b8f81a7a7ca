import csv
import re
from io import StringIO
from typing import Sequence

from models import Transaction


EXPORT_COLUMNS = [
    "Date",
    "Type",
    "Amount",
    "Category",
    "Bank",
    "Description",
    "Notes",
    "Labels",
]


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^\.",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def format_cents(amount_cents: int) -> str:
    sign = "-" if amount_cents < 0 else ""
    whole, cents = divmod(abs(amount_cents), 100)
    return f"{sign}{whole}.{cents:02d}"


def export_transactions(transactions: Sequence[Transaction]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_COLUMNS)
    for txn in transactions:
        writer.writerow(
            [
                txn.transaction_date.isoformat(),
                txn.type.value,
                format_cents(txn.amount_cents),
                sanitize_csv_value(txn.category.name if txn.category else ""),
                sanitize_csv_value(txn.bank.name if txn.bank else ""),
                sanitize_csv_value(txn.description or ""),
                sanitize_csv_value(txn.notes or ""),
                sanitize_csv_value(", ".join(label.name for label in txn.labels)),
            ]
        )
    return output.getvalue()
