from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

"""String -> Decimal / date coercion for CSV values.

parse_amount accepts "1,234.50", "$1,234.50", "USD 12", "-3", "(3.00)".
parse_date accepts ISO-8601 dates / datetimes plus the configured strptime
formats, and refuses two-digit years instead of guessing the century.
"""

__all__ = [
    "AmbiguousDateError",
    "parse_amount",
    "parse_date",
]

CURRENCY_SYMBOLS = "$€£¥"

_PLAIN_NUMBER = re.compile(r"^(\d+(\.\d+)?|\.\d+)$")
_GROUPED_NUMBER = re.compile(r"^\d{1,3}(,\d{3})+(\.\d+)?$")
_TWO_DIGIT_YEAR = re.compile(r"^\d{1,2}[/.-]\d{1,2}[/.-]\d{2}$")


class AmbiguousDateError(ValueError):
    """Date with a two-digit year."""


def _strip_currency(text: str, currency: str) -> str:
    code = currency.upper()
    upper = text.upper()
    if code and upper.startswith(code):
        text = text[len(code):]
    elif code and upper.endswith(code):
        text = text[: -len(code)]
    return text.strip().strip(CURRENCY_SYMBOLS).strip()


def parse_amount(raw: str, currency: str = "USD") -> Decimal:
    """Parse a monetary / numeric CSV value.

    Raises:
        ValueError: when the text is not a number in any accepted format
    """
    text = raw.strip()
    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1].strip()
    if text.startswith("-"):
        negative = not negative
        text = text[1:].strip()
    text = _strip_currency(text, currency)
    # "$-5.00" style: sign after the symbol
    if text.startswith("-"):
        negative = not negative
        text = text[1:].strip()

    if _GROUPED_NUMBER.match(text):
        text = text.replace(",", "")
    elif not _PLAIN_NUMBER.match(text):
        raise ValueError(f"not a number: {raw!r}")
    try:
        value = Decimal(text)
    except InvalidOperation as e:  # pragma: no cover - regex already guards
        raise ValueError(f"not a number: {raw!r}") from e
    return -value if negative else value


def parse_date(raw: str, formats: Sequence[str] = ("%Y-%m-%d", "%m/%d/%Y")) -> date:
    """Parse a CSV date value.

    Raises:
        AmbiguousDateError: two-digit year (e.g. 01/02/24)
        ValueError: any other unparseable text
    """
    text = raw.strip()
    if _TWO_DIGIT_YEAR.match(text):
        raise AmbiguousDateError(f"two-digit year: {raw!r}")
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in formats:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"not a date: {raw!r}")
