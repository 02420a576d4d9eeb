"""
Domain entities for the book metadata consolidation service.

Entities are objects with a unique identity that runs through time and
different representations. CanonicalBook is the authoritative record for
one published edition; work clusters group editions of the same work.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, UTC
from typing import Optional, List, Dict
from uuid import UUID

from .errors import ValidationError


@dataclass
class CanonicalBook:
    """
    The authoritative record for one published edition.

    Written exclusively by the upsert engine. Read-side projections also
    carry the joined authors, categories, preferred cover and the
    provider ids this book is known under.
    """

    id: UUID
    """Time-ordered unique identifier (UUIDv7)"""

    title: str
    """Book title"""

    slug: Optional[str] = None
    """Stable, human-readable URL key; never regenerated once assigned"""

    subtitle: Optional[str] = None

    description: Optional[str] = None

    isbn13: Optional[str] = None
    """Sanitized ISBN-13 (digits only); unique when present"""

    isbn10: Optional[str] = None
    """Sanitized ISBN-10; unique when present"""

    language: Optional[str] = None

    publisher: Optional[str] = None

    page_count: Optional[int] = None

    published_date: Optional[date] = None

    authors: List[str] = field(default_factory=list)
    """Author names in display order"""

    categories: List[str] = field(default_factory=list)

    cover_url: Optional[str] = None
    """Best known cover image URL"""

    external_ids: Dict[str, str] = field(default_factory=dict)
    """Provider source name -> provider id"""

    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    updated_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    persisted: bool = True
    """False for projections of external results that could not be stored"""

    def __post_init__(self) -> None:
        """Validate book data."""
        if not self.title or not self.title.strip():
            raise ValidationError("Book title cannot be empty")

    def __eq__(self, other: object) -> bool:
        """Two books are equal if they have the same ID."""
        if not isinstance(other, CanonicalBook):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        """Hash based on book ID."""
        return hash(self.id)

    def is_thin(self) -> bool:
        """
        Check whether the record is missing enrichment data.

        Thin records surfaced by a search are candidates for backfill.
        """
        return not (self.description and self.description.strip()) or self.cover_url is None

    def get_searchable_text(self) -> str:
        """Title, subtitle, authors, description and categories in one string."""
        parts = [self.title]
        if self.subtitle:
            parts.append(self.subtitle)
        if self.authors:
            parts.append(" ".join(self.authors))
        if self.description:
            parts.append(self.description)
        if self.categories:
            parts.append(" ".join(self.categories))
        return " ".join(parts)

    def dedupe_key(self) -> str:
        """Identity key used to drop duplicates across search tiers."""
        if self.persisted:
            return f"id:{self.id}"
        if self.isbn13:
            return f"isbn13:{self.isbn13}"
        if self.isbn10:
            return f"isbn10:{self.isbn10}"
        for source, external_id in sorted(self.external_ids.items()):
            return f"{source}:{external_id}"
        return f"id:{self.id}"


@dataclass
class WorkClusterMember:
    """One edition inside a work cluster."""

    book_id: UUID
    is_primary: bool = False
    confidence: float = 1.0
    join_reason: str = "ISBN_PREFIX"


@dataclass
class WorkCluster:
    """
    A group of canonical books representing editions of the same work.

    Exactly one member is primary; reads resolve through it.
    """

    cluster_key: str
    """The ISBN-13 prefix or provider canonical id shared by all members"""

    cluster_method: str
    """'ISBN_PREFIX' or 'CANONICAL_ID'"""

    canonical_title: str

    members: List[WorkClusterMember] = field(default_factory=list)

    id: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.cluster_key:
            raise ValidationError("cluster_key cannot be empty")

    @property
    def member_count(self) -> int:
        return len(self.members)

    def primary(self) -> Optional[WorkClusterMember]:
        for member in self.members:
            if member.is_primary:
                return member
        return None
