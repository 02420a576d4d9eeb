"""
Lenient value parsing shared by the provider mappers.

Provider JSON is loosely typed: numbers arrive as strings, dates arrive
as a bare year, and any field may be missing. These helpers return None
instead of raising.
"""

import re
from datetime import date, datetime
from typing import Any, Optional

_FULL_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_YEAR_MONTH = re.compile(r"^\d{4}-\d{2}$")
_YEAR = re.compile(r"^\d{4}$")
_EMBEDDED_YEAR = re.compile(r"\b(\d{4})\b")

_TEXT_DATE_FORMATS = ("%B %d, %Y", "%b %d, %Y", "%d %B %Y", "%B %Y", "%b %Y")


def parse_published_date(value: Optional[str]) -> Optional[date]:
    """
    Parse provider publication dates.

    Handles:
    - "2024-06-15" (full date, time suffix ignored)
    - "2024-06" (first of the month)
    - "2024" (January 1st)
    - "June 15, 2024" / "Jun 2024" style text dates
    - any other string containing a 4-digit year (January 1st of it)

    Returns:
        A date, or None if nothing usable is found
    """
    if not value or not str(value).strip():
        return None
    text = str(value).strip()

    try:
        if _FULL_DATE.match(text):
            return datetime.strptime(text[:10], "%Y-%m-%d").date()
        if _YEAR_MONTH.match(text):
            return datetime.strptime(text, "%Y-%m").date()
        if _YEAR.match(text):
            return date(int(text), 1, 1)
    except ValueError:
        return None

    for fmt in _TEXT_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    match = _EMBEDDED_YEAR.search(text)
    if match and int(match.group(1)) >= 1:
        return date(int(match.group(1)), 1, 1)
    return None


def text(value: Any) -> Optional[str]:
    """Stripped string, or None when blank."""
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None


def to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    return None
