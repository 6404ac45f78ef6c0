import csv
import re
from decimal import Decimal
from io import StringIO
from typing import Optional

from config import get_settings
from schemas import ReportPeriodSummary

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£"}
_FORMULA_PREFIXES = ("=", "+", "-", "@")
_COMMAND_PREFIX = re.compile(r"^(?:(?:cmd|powershell|bash|sh)\b|https?://)", re.IGNORECASE)


def sanitize_csv_value(value: Optional[str]) -> str:
    """Make a text cell inert in spreadsheet apps by prefixing a tab.

    Only whole command words count, so a category like "Shopping" is left alone.
    """
    text = (value or "").strip()
    if text.startswith(_FORMULA_PREFIXES) or _COMMAND_PREFIX.match(text):
        return "\t" + text
    return text


def format_currency(amount: Decimal, currency: Optional[str] = None) -> str:
    code = (currency or get_settings().currency).upper()
    symbol = CURRENCY_SYMBOLS.get(code, f"{code} ")
    if not amount.is_finite():
        return f"{symbol}{amount}"
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


def export_report(summary: ReportPeriodSummary, currency: Optional[str] = None) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["Period", sanitize_csv_value(summary.period_label)])
    writer.writerow(["Total Income", format_currency(summary.total_income, currency)])
    writer.writerow(
        ["Total Budgeted", format_currency(summary.total_budgeted, currency)]
    )
    writer.writerow(["Total Spent", format_currency(summary.total_spent, currency)])
    writer.writerow(
        ["Remaining Balance", format_currency(summary.remaining_balance, currency)]
    )
    writer.writerow([])
    writer.writerow(["Category", "Allocated", "Spent", "Remaining"])
    for row in summary.category_summaries:
        writer.writerow(
            [
                sanitize_csv_value(row.category_name),
                format_currency(row.total_allocated, currency),
                format_currency(row.total_spent_in_period, currency),
                format_currency(row.remaining_in_category, currency),
            ]
        )
    return output.getvalue()
