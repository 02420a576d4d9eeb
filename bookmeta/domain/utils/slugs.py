"""
URL slug generation for canonical books.

Slugs are generated once, when a book is first created, and never change
afterwards so that public URLs stay stable.
"""

import re
import unicodedata
from typing import Optional, Sequence

MAX_SLUG_LENGTH = 100
MAX_TITLE_LENGTH = 60
MAX_AUTHOR_LENGTH = 30

_NON_WORD = re.compile(r"[^\w\s-]")
_WHITESPACE = re.compile(r"[\s_]+")
_MULTIPLE_DASHES = re.compile(r"-{2,}")
_VALID_SLUG = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")


def slugify(text: Optional[str]) -> str:
    """
    Convert arbitrary text to a lowercase, hyphen separated slug.

    Accents are folded to their base letter and "&" becomes "and".

    Example:
        >>> slugify("Harry Potter & the Philosopher's Stone")
        'harry-potter-and-the-philosophers-stone'
    """
    if not text:
        return ""

    slug = unicodedata.normalize("NFKD", text.lower().strip())
    slug = "".join(ch for ch in slug if not unicodedata.combining(ch))
    slug = slug.replace("&", "and")
    for quote in ("'", "’", "“", "”"):
        slug = slug.replace(quote, "")

    slug = _NON_WORD.sub("", slug)
    slug = _WHITESPACE.sub("-", slug)
    slug = _MULTIPLE_DASHES.sub("-", slug)
    return slug.strip("-")


def _truncate_at_word_boundary(slug: str, max_length: int) -> str:
    if len(slug) <= max_length:
        return slug

    last_dash = slug.rfind("-", 0, max_length + 1)
    if last_dash <= 0 or last_dash < max_length // 2:
        return slug[:max_length].rstrip("-")

    return slug[:last_dash]


def generate_book_slug(title: Optional[str], authors: Optional[Sequence[str]] = None) -> Optional[str]:
    """
    Build a slug from the title and the first author.

    Returns None when the title produces no slug characters at all.
    """
    title_slug = _truncate_at_word_boundary(slugify(title), MAX_TITLE_LENGTH)
    if not title_slug:
        return None

    slug = title_slug
    if authors:
        author_slug = _truncate_at_word_boundary(slugify(authors[0]), MAX_AUTHOR_LENGTH)
        if author_slug:
            slug = f"{slug}-{author_slug}"

    return _truncate_at_word_boundary(slug, MAX_SLUG_LENGTH)


def make_unique(base_slug: str, counter: int) -> str:
    """Append a numeric suffix, e.g. ``harry-potter-2``."""
    if not base_slug:
        return str(counter)
    return f"{base_slug}-{counter}"


def is_valid_slug(slug: Optional[str]) -> bool:
    return bool(slug) and _VALID_SLUG.match(slug) is not None
