"""
Port interfaces (protocols) for the domain layer.

Ports define the contracts between the domain and infrastructure layers.
They are implemented by adapters in the infrastructure layer, allowing
the domain to remain independent of technical details.

Following Hexagonal Architecture principles, the domain layer depends only
on these abstract protocols, never on concrete implementations.
"""

from contextlib import AbstractContextManager
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence
from uuid import UUID

from .entities import CanonicalBook, WorkCluster
from .utils.covers import CoverQualitySnapshot
from .utils.dimensions import ParsedDimensions
from .value_objects import (
    BookChangeEvent,
    ExternalIdentifiers,
    NormalizedAggregate,
    SearchProgress,
    SearchResultsBatch,
)


class CatalogSession(Protocol):
    """
    One open unit of work against the canonical store.

    All reads and writes of a single upsert go through the same session
    and are committed or rolled back together.
    """

    lock_acquired: bool
    """Whether the advisory lock requested for this unit of work is held"""

    # -- identity lookups -------------------------------------------------

    def find_book_id_by_external_id(self, source: str, external_id: str) -> Optional[UUID]:
        ...

    def find_book_id_by_isbn13(self, isbn13: str) -> Optional[UUID]:
        ...

    def find_book_id_by_isbn10(self, isbn10: str) -> Optional[UUID]:
        ...

    def find_primary_book_id_by_isbn_prefix(self, prefix: str) -> Optional[UUID]:
        """
        Primary member of the ISBN_PREFIX work cluster keyed by ``prefix``.

        Returns None when no such cluster exists.
        """
        ...

    # -- canonical row ----------------------------------------------------

    def savepoint(self, name: str) -> AbstractContextManager[None]:
        """
        Nested scope whose writes are undone on error without aborting
        the surrounding unit of work.
        """
        ...

    def get_book_slug(self, book_id: UUID) -> Optional[str]:
        ...

    def assign_slug(self, book_id: UUID, slug: str) -> None:
        """Set the slug only if the book has none yet."""
        ...

    def slug_exists(self, slug: str) -> bool:
        ...

    def insert_book(self, book_id: UUID, slug: Optional[str], aggregate: NormalizedAggregate) -> None:
        ...

    def merge_book(self, book_id: UUID, aggregate: NormalizedAggregate) -> None:
        """
        Update the canonical row, keeping existing values where the
        incoming value is null or blank.
        """
        ...

    # -- related attributes -----------------------------------------------

    def link_authors(self, book_id: UUID, authors: Sequence[str]) -> None:
        ...

    def upsert_external_identifiers(self, book_id: UUID, identifiers: ExternalIdentifiers) -> None:
        ...

    def get_cover_quality(self, book_id: UUID) -> Optional[CoverQualitySnapshot]:
        ...

    def upsert_image_links(self, book_id: UUID, source: str, image_links: Mapping[str, str]) -> None:
        ...

    def link_categories(self, book_id: UUID, categories: Sequence[str]) -> None:
        ...

    def upsert_dimensions(self, book_id: UUID, dimensions: ParsedDimensions) -> None:
        ...

    def delete_dimensions(self, book_id: UUID) -> None:
        ...

    # -- clustering -------------------------------------------------------

    def get_book_isbn13(self, book_id: UUID) -> Optional[str]:
        ...

    def find_edition_candidates_by_isbn_prefix(self, prefix: str) -> List[Dict[str, Any]]:
        """
        Rows describing every book whose ISBN-13 starts with ``prefix``.

        Each row carries ``book_id``, ``title``, ``published_date``,
        ``has_high_res`` and ``cover_area`` for primary selection.
        """
        ...

    def get_canonical_ids(self, book_id: UUID) -> List[str]:
        ...

    def find_edition_candidates_by_canonical_id(self, canonical_id: str) -> List[Dict[str, Any]]:
        ...

    def save_work_cluster(self, cluster: WorkCluster) -> int:
        """Insert or update the cluster and replace its member list."""
        ...


class CatalogStore(Protocol):
    """
    Port for the canonical record store.

    Implementations must provide transactions, uniqueness constraints and
    an advisory lock keyed by an arbitrary integer.
    """

    def unit_of_work(self, lock_key: Optional[int] = None) -> AbstractContextManager[CatalogSession]:
        """
        Open a transaction, holding the advisory lock for ``lock_key``
        (when given) for exactly the lifetime of the transaction.

        Commits on normal exit and rolls back if the block raises.
        """
        ...

    def get_by_id(self, book_id: UUID) -> Optional[CanonicalBook]:
        ...

    def get_by_slug(self, slug: str) -> Optional[CanonicalBook]:
        ...

    def find_candidates(self, query: str, limit: int = 200, language: Optional[str] = None) -> List[CanonicalBook]:
        """
        Books whose title, author, ISBN or description match any query
        term. Not ranked; callers order the candidates by relevance.
        """
        ...

    def get_work_cluster(self, book_id: UUID) -> Optional[WorkCluster]:
        ...

    def count(self) -> int:
        ...


class RelevanceRanker(Protocol):
    """Orders local candidates by relevance to a query."""

    def rank(self, query: str, books: Sequence[CanonicalBook], limit: int) -> List[CanonicalBook]:
        ...


class PayloadMapper(Protocol):
    """Maps one provider's raw JSON into the normalized aggregate."""

    def map(self, raw: Mapping[str, Any]) -> Optional[NormalizedAggregate]:
        """Return None when the payload lacks what a book needs."""
        ...


class VolumeProvider(Protocol):
    """
    Port for the quota-limited volumes API.

    Supports both authenticated (API key) and unauthenticated calls; the
    two modes are tracked on separate circuit rails.
    """

    def has_api_key(self) -> bool:
        ...

    def search_volumes(
        self,
        query: str,
        max_results: int = 10,
        authenticated: bool = True,
        language: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Raises:
            RateLimitFailure: On HTTP 429
            TransientProviderFailure: On network errors, 5xx or timeouts
        """
        ...

    def fetch_volume(self, volume_id: str, authenticated: bool = True) -> Optional[Dict[str, Any]]:
        ...


class OpenCatalogProvider(Protocol):
    """Port for the secondary, free open-catalog API."""

    def search(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        ...


class BestsellerProvider(Protocol):
    """Port for the bestseller-list API."""

    def fetch_list(self, list_name: str, published_date: Optional[date] = None) -> List[Dict[str, Any]]:
        ...


class ChangeNotifier(Protocol):
    """Sink for book change events emitted after each committed write."""

    def publish(self, event: BookChangeEvent) -> None:
        ...


class SearchEventPublisher(Protocol):
    """Sink for incremental search progress and result batches."""

    def publish_progress(self, progress: SearchProgress) -> None:
        ...

    def publish_batch(self, batch: SearchResultsBatch) -> None:
        ...
