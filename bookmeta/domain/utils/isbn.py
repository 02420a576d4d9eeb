"""
ISBN sanitization helpers.

ISBNs arrive with hyphens, spaces and sometimes a lowercase check digit.
They are stored and compared in digits-only form.
"""

import re
from typing import Optional

_NON_ISBN_CHARS = re.compile(r"[^0-9Xx]")

WORK_PREFIX_LENGTH = 11


def sanitize(value: Optional[str]) -> Optional[str]:
    """
    Strip an ISBN down to its digits (and a trailing X check digit).

    Returns None when nothing meaningful is left.

    Example:
        >>> sanitize("978-0-545-01022-1")
        '9780545010221'
    """
    if value is None:
        return None

    cleaned = _NON_ISBN_CHARS.sub("", value).upper()
    if not cleaned:
        return None

    # X is only valid as the final check digit
    body, check = cleaned[:-1].replace("X", ""), cleaned[-1]
    return (body + check) or None


def sanitize_isbn13(value: Optional[str]) -> Optional[str]:
    """Sanitize and keep the value only if it looks like an ISBN-13."""
    cleaned = sanitize(value)
    if cleaned and len(cleaned) == 13 and cleaned.isdigit():
        return cleaned
    return None


def sanitize_isbn10(value: Optional[str]) -> Optional[str]:
    """Sanitize and keep the value only if it looks like an ISBN-10."""
    cleaned = sanitize(value)
    if cleaned and len(cleaned) == 10 and cleaned[:9].isdigit():
        return cleaned
    return None


def work_prefix(isbn13: Optional[str]) -> Optional[str]:
    """
    Edition-cluster key: the first 11 digits of a sanitized ISBN-13.

    Editions from the same publisher block share this prefix.
    """
    cleaned = sanitize_isbn13(isbn13)
    if cleaned is None:
        return None
    return cleaned[:WORK_PREFIX_LENGTH]
