"""
Category validation, normalization and deduplication.

Compound provider categories such as "Fiction / Science Fiction" are split
into their parts. Parts are deduplicated by their database slug, keeping
the display casing of the first occurrence. Library classification codes
(Dewey numbers, MARC fragments) are dropped.
"""

import re
import zlib
from typing import Iterable, List, Optional

_SPLIT = re.compile(r"\s*/\s*")
_WHITESPACE = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[\W_]+", re.UNICODE)

# "823.7", ".001", "3248"
_GARBAGE_NUMERIC = re.compile(r"^[.\d][\d.\-\s]*[a-z]?$", re.IGNORECASE)
# "700=aacr2", "04b044sinebk"
_GARBAGE_MARC = re.compile(r"^\d+[=a-z]\S*$", re.IGNORECASE)
# "89.70 international relations"
_GARBAGE_CLASSIFICATION = re.compile(r"^\d+\.\d+\s+\S.*$")
_LATIN_LETTER = re.compile(r"[A-Za-z]")

MIN_LATIN_LETTERS = 3
MIN_DISPLAY_LENGTH = 2
MAX_DISPLAY_LENGTH = 255


def normalize_for_database(display_name: Optional[str]) -> str:
    """
    Lowercase, hyphen separated key used for the unique constraint.

    Example:
        >>> normalize_for_database("Science Fiction & Fantasy")
        'science-fiction-fantasy'
    """
    if not display_name or not display_name.strip():
        return ""

    normalized = _NON_ALNUM.sub("-", display_name.lower()).strip("-")
    if normalized:
        return normalized
    return f"category-{zlib.crc32(display_name.encode('utf-8')):x}"


def is_valid(category: Optional[str]) -> bool:
    """True if the category reads as a human subject rather than a code."""
    if not category or not category.strip():
        return False

    trimmed = category.strip()
    if not MIN_DISPLAY_LENGTH <= len(trimmed) <= MAX_DISPLAY_LENGTH:
        return False

    if _GARBAGE_NUMERIC.match(trimmed):
        return False
    if _GARBAGE_MARC.match(trimmed):
        return False
    if _GARBAGE_CLASSIFICATION.match(trimmed):
        return False

    return len(_LATIN_LETTER.findall(trimmed)) >= MIN_LATIN_LETTERS


def normalize_and_deduplicate(categories: Optional[Iterable[Optional[str]]]) -> List[str]:
    """
    Split, clean and deduplicate a raw category list.

    Example:
        >>> normalize_and_deduplicate(["Fiction / Science Fiction", "fiction", "823.7"])
        ['Fiction', 'Science Fiction']
    """
    if not categories:
        return []

    slug_to_display: dict[str, str] = {}
    for category in categories:
        if not category or not category.strip():
            continue

        for part in _SPLIT.split(category):
            trimmed = _WHITESPACE.sub(" ", part.strip())
            if not trimmed or not is_valid(trimmed):
                continue
            slug_to_display.setdefault(normalize_for_database(trimmed), trimmed)

    return list(slug_to_display.values())
