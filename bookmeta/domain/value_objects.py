"""
Value objects for the domain layer.

Value objects are immutable objects that represent descriptive aspects
of the domain with no conceptual identity.
"""

import hashlib
import re
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple
from uuid import UUID

from .errors import ValidationError
from .utils import isbn as isbn_utils
from .utils.slugs import generate_book_slug

SOURCE_GOOGLE_BOOKS = "GOOGLE_BOOKS"
SOURCE_OPEN_LIBRARY = "OPEN_LIBRARY"
SOURCE_NYT = "NEW_YORK_TIMES"


@dataclass(frozen=True)
class ExternalIdentifiers:
    """
    Provider-specific identity and metadata carried by one payload.

    Only ``source`` and ``external_id`` take part in identity resolution;
    everything else is merged onto the external identifier record.
    """

    source: str
    """Provider name (e.g., 'GOOGLE_BOOKS')"""

    external_id: str
    """Id of the volume/work in the provider's system"""

    provider_isbn10: Optional[str] = None
    provider_isbn13: Optional[str] = None

    info_link: Optional[str] = None
    preview_link: Optional[str] = None
    web_reader_link: Optional[str] = None
    purchase_link: Optional[str] = None
    canonical_volume_link: Optional[str] = None

    average_rating: Optional[float] = None
    ratings_count: Optional[int] = None
    review_count: Optional[int] = None

    is_ebook: Optional[bool] = None
    pdf_available: Optional[bool] = None
    epub_available: Optional[bool] = None
    embeddable: Optional[bool] = None
    public_domain: Optional[bool] = None

    list_price: Optional[float] = None
    retail_price: Optional[float] = None
    currency_code: Optional[str] = None

    canonical_id: Optional[str] = None
    """Provider-side work/canonical id shared by editions of one work"""

    image_links: Mapping[str, str] = field(default_factory=dict, hash=False)
    """Cover URLs keyed by size name ('thumbnail', 'large', ...)"""

    def __post_init__(self) -> None:
        if not self.source or not self.source.strip():
            raise ValidationError("ExternalIdentifiers.source cannot be empty")
        if not self.external_id or not str(self.external_id).strip():
            raise ValidationError("ExternalIdentifiers.external_id cannot be empty")
        if self.average_rating is not None and not 0 <= self.average_rating <= 5:
            raise ValidationError(
                f"average_rating must be between 0 and 5, got {self.average_rating}"
            )
        object.__setattr__(self, "image_links", MappingProxyType(dict(self.image_links or {})))

    @property
    def source_key(self) -> str:
        return f"{self.source}:{self.external_id}"


@dataclass(frozen=True)
class Dimensions:
    """Physical dimensions as reported by the provider (free text)."""

    height: Optional[str] = None
    width: Optional[str] = None
    thickness: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(
            value and value.strip() for value in (self.height, self.width, self.thickness)
        )


@dataclass(frozen=True)
class NormalizedAggregate:
    """
    Provider-agnostic book payload, produced by a provider mapper.

    ISBNs are sanitized to digits-only form on construction, so every
    consumer compares identical strings regardless of how the provider
    formatted them.
    """

    title: str
    subtitle: Optional[str] = None
    description: Optional[str] = None
    isbn10: Optional[str] = None
    isbn13: Optional[str] = None
    language: Optional[str] = None
    publisher: Optional[str] = None
    page_count: Optional[int] = None
    published_date: Optional[date] = None
    authors: Tuple[str, ...] = ()
    categories: Tuple[str, ...] = ()
    dimensions: Optional[Dimensions] = None
    identifiers: Optional[ExternalIdentifiers] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "isbn10", isbn_utils.sanitize(self.isbn10))
        object.__setattr__(self, "isbn13", isbn_utils.sanitize(self.isbn13))
        object.__setattr__(
            self,
            "authors",
            tuple(a.strip() for a in (self.authors or ()) if a and a.strip()),
        )
        object.__setattr__(
            self,
            "categories",
            tuple(c for c in (self.categories or ()) if c and c.strip()),
        )
        if self.page_count is not None and self.page_count < 0:
            raise ValidationError(f"page_count cannot be negative, got {self.page_count}")

    def validate(self) -> None:
        """
        Check the fields required for a write.

        Kept separate from construction so mappers can build partial
        aggregates and the upsert path decides what is acceptable.

        Raises:
            ValidationError: If the title is missing or blank
        """
        if not self.title or not self.title.strip():
            raise ValidationError("Book title cannot be empty")

    @property
    def source(self) -> Optional[str]:
        return self.identifiers.source if self.identifiers else None

    @property
    def external_id(self) -> Optional[str]:
        return self.identifiers.external_id if self.identifiers else None

    def has_strong_identifier(self) -> bool:
        return bool(self.isbn13 or self.isbn10 or self.identifiers)

    def slug_base(self) -> Optional[str]:
        return generate_book_slug(self.title, self.authors)

    def describe(self) -> str:
        """Short identity summary used in log lines."""
        return (
            f"source={self.source} externalId={self.external_id} "
            f"isbn13={self.isbn13} isbn10={self.isbn10} title={self.title!r}"
        )


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of a single upsert."""

    book_id: UUID
    slug: Optional[str]
    is_new: bool


@dataclass(frozen=True)
class BookChangeEvent:
    """
    Notification emitted after every committed upsert.

    Consumed by real-time delivery and cover upload pipelines.
    """

    book_id: UUID
    slug: Optional[str]
    title: str
    is_new: bool
    source: Optional[str] = None
    context: str = "UPSERT"
    canonical_image_url: Optional[str] = None
    image_links: Mapping[str, str] = field(default_factory=dict, hash=False)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "bookId": str(self.book_id),
            "slug": self.slug,
            "title": self.title,
            "isNew": self.is_new,
            "source": self.source,
            "context": self.context,
        }
        if self.canonical_image_url:
            payload["canonicalImageUrl"] = self.canonical_image_url
        if self.image_links:
            payload["imageLinks"] = dict(self.image_links)
        return payload


@dataclass(frozen=True)
class BackfillTask:
    """
    A pending re-fetch of one provider record.

    Lower priority numbers are more urgent: 1-3 high, 4-6 medium, 7-10 low.
    """

    source: str
    source_id: str
    priority: int = 5
    attempts: int = 0

    def __post_init__(self) -> None:
        if not self.source or not self.source.strip():
            raise ValidationError("BackfillTask.source cannot be empty")
        if not self.source_id or not self.source_id.strip():
            raise ValidationError("BackfillTask.source_id cannot be empty")
        if not 1 <= self.priority <= 10:
            raise ValidationError(f"priority must be between 1 and 10, got {self.priority}")
        if self.attempts < 0:
            raise ValidationError(f"attempts cannot be negative, got {self.attempts}")

    @property
    def dedupe_key(self) -> str:
        return f"{self.source}|{self.source_id}"

    def with_incremented_attempts(self) -> "BackfillTask":
        return BackfillTask(
            source=self.source,
            source_id=self.source_id,
            priority=self.priority,
            attempts=self.attempts + 1,
        )


class SearchStatus(str, Enum):
    STARTING = "STARTING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"


_WHITESPACE = re.compile(r"\s+")

# Words that never make a book relevant on their own
QUERY_STOPWORDS = frozenset(
    {"a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "in", "is",
     "it", "of", "on", "or", "the", "to", "with"}
)


def normalize_query(query: str) -> str:
    return _WHITESPACE.sub(" ", (query or "").strip().lower())


def query_hash(query: str) -> str:
    """Stable key subscribers use to match events to their search."""
    return hashlib.sha256(normalize_query(query).encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class SearchProgress:
    query: str
    status: SearchStatus
    message: str = ""
    source: Optional[str] = None

    @property
    def query_hash(self) -> str:
        return query_hash(self.query)


@dataclass(frozen=True)
class SearchResultsBatch:
    """A coalesced group of results streamed to subscribers."""

    query: str
    results: Tuple[Any, ...]
    source: str
    running_total: int
    is_final: bool = False

    @property
    def query_hash(self) -> str:
        return query_hash(self.query)


@dataclass(frozen=True)
class IngestionSummary:
    """
    Summary of a bestseller ingestion run.

    Every fetched entry ends up inserted, updated, failed, or left
    unprocessed because the batch was aborted.
    """

    n_fetched: int
    """Number of entries fetched from the provider"""

    n_inserted: int
    """Number of entries that created a new canonical book"""

    n_updated: int
    """Number of entries merged into an existing canonical book"""

    n_errors: int
    """Number of entries that failed validation or persistence"""

    source: str
    """Provider the entries came from"""

    list_name: Optional[str] = None
    """Bestseller list code (e.g., 'hardcover-fiction')"""

    n_unprocessed: int = 0
    """Entries never attempted because the batch was aborted"""

    aborted: bool = False
    """True when a systemic store failure stopped the batch"""

    errors: list[str] = field(default_factory=list)
    """Error messages (for debugging and manual reconciliation)"""

    def __post_init__(self) -> None:
        """Validate summary constraints."""
        for name in ("n_fetched", "n_inserted", "n_updated", "n_errors", "n_unprocessed"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} cannot be negative, got {value}")

        accounted = self.n_inserted + self.n_updated + self.n_errors + self.n_unprocessed
        if accounted != self.n_fetched:
            raise ValueError(
                f"Invariant violated: n_fetched ({self.n_fetched}) != "
                f"n_inserted + n_updated + n_errors + n_unprocessed ({accounted})"
            )

    @property
    def n_persisted(self) -> int:
        return self.n_inserted + self.n_updated
