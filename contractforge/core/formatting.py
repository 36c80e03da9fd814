"""Display formatting shared by the merge engine and the grid.

Merge output must not depend on when the merge runs, so every rule here is a
pure function of (column name, value).  The only exception is a date column
whose value is literally ``"now"``; it renders the ``today`` passed in.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Any

_CURRENCY_HINTS = (
    "salary",
    "bonus",
    "amount",
    "compensation",
    "stipend",
    "allowance",
    "conversionfactor",
    "conversion factor",
    "dollar",
    "$",
)
_PERCENT_HINTS = ("percent", "pct", "%")
_DATE_HINTS = ("date",)

_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:[T ].*)?$")
_US_DATE = re.compile(r"^\d{2}/\d{2}/\d{4}$")
_NUMERIC_NOISE = re.compile(r"[^0-9.\-]")

_SMART_CHARS = (
    ("\u201c", "\""),
    ("\u201d", "\""),
    ("\u2018", "'"),
    ("\u2019", "'"),
    ("\u2013", "-"),
    ("\u2014", "--"),
    ("\u2026", "..."),
    ("\u00a0", " "),
    ("\u2022", "-"),
)


class ColumnKind(str, Enum):
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    DATE = "date"
    PLAIN = "plain"


def classify_column(column: str) -> ColumnKind:
    """Infer a display kind from a column name."""
    lowered = column.lower()
    if any(hint in lowered for hint in _PERCENT_HINTS):
        return ColumnKind.PERCENTAGE
    if any(hint in lowered for hint in _CURRENCY_HINTS):
        return ColumnKind.CURRENCY
    if any(hint in lowered for hint in _DATE_HINTS):
        return ColumnKind.DATE
    return ColumnKind.PLAIN


def normalize_smart_quotes(text: str) -> str:
    """Replace typographic quotes, dashes and bullets with ASCII equivalents."""
    for smart, plain in _SMART_CHARS:
        text = text.replace(smart, plain)
    return text


def to_decimal(value: Any) -> Decimal | None:
    """Finite decimal for a numeric value or numeric-looking string, else ``None``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        cleaned = _NUMERIC_NOISE.sub("", value)
        if not cleaned or cleaned in {"-", ".", "-."}:
            return None
        try:
            result = Decimal(cleaned)
        except InvalidOperation:
            return None
    else:
        return None
    # only finite amounts are formatted
    return result if result.is_finite() else None


def format_currency(amount: Decimal) -> str:
    """Whole US dollars with thousands separators: ``$185,000``."""
    whole = amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    sign = "-" if whole < 0 else ""
    return f"{sign}${int(abs(whole)):,}"


def format_percentage(amount: Decimal) -> str:
    """One decimal place: ``12.5%``."""
    return f"{amount.quantize(Decimal('0.1'), rounding=ROUND_HALF_UP)}%"


def format_date(moment: date) -> str:
    """US locale date: ``MM/DD/YYYY``."""
    return moment.strftime("%m/%d/%Y")


def format_number(value: int | float | Decimal) -> str:
    if isinstance(value, int):
        return f"{value:,}"
    number = Decimal(str(value))
    if not number.is_finite():
        return str(value)
    text = f"{number:,.4f}"
    return text.rstrip("0").rstrip(".")


def format_value(column: str, value: Any, *, today: date) -> tuple[str, str | None]:
    """Format one resolved value for merge output.

    Returns ``(text, warning)``.  ``warning`` is set when the value does not
    fit the kind implied by the column name; the raw text is used then.
    """
    kind = classify_column(column)

    if kind is ColumnKind.CURRENCY:
        amount = to_decimal(value)
        if amount is None:
            return str(value), f"Type mismatch: column '{column}' expects a currency amount, got {value!r}"
        return format_currency(amount), None

    if kind is ColumnKind.PERCENTAGE:
        amount = to_decimal(value)
        if amount is None:
            return str(value), f"Type mismatch: column '{column}' expects a percentage, got {value!r}"
        return format_percentage(amount), None

    if kind is ColumnKind.DATE:
        if isinstance(value, datetime):
            return format_date(value.date()), None
        if isinstance(value, date):
            return format_date(value), None
        if isinstance(value, str):
            text = value.strip()
            if text.lower() == "now":
                return format_date(today), None
            match = _ISO_DATE.match(text)
            if match:
                try:
                    return format_date(date.fromisoformat("-".join(match.groups()))), None
                except ValueError:
                    pass
            elif _US_DATE.match(text):
                try:
                    datetime.strptime(text, "%m/%d/%Y")
                except ValueError:
                    pass
                else:
                    return text, None
        return str(value), f"Type mismatch: column '{column}' expects a date, got {value!r}"

    return format_plain(value), None


def format_plain(value: Any) -> str:
    """Text for values whose column carries no formatting hint."""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (int, float, Decimal)):
        return format_number(value)
    if isinstance(value, (list, tuple)):
        return ", ".join(format_plain(item) for item in value)
    if isinstance(value, dict):
        return ", ".join(f"{k}: {format_plain(v)}" for k, v in value.items())
    if isinstance(value, datetime):
        return format_date(value.date())
    if isinstance(value, date):
        return format_date(value)
    return str(value)
