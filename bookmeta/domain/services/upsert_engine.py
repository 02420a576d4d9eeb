"""
The single write path for canonical books.

Every provider payload, whether it comes from a search, a bestseller
list or a backfill task, is persisted through UpsertEngine.upsert().
"""

import logging
from typing import Dict, Optional, Tuple
from uuid import UUID

from bookmeta.domain.errors import PersistenceFailure, StoreFailure, ValidationError
from bookmeta.domain.ports import CatalogSession, CatalogStore, ChangeNotifier
from bookmeta.domain.services.clustering import EditionClusterer
from bookmeta.domain.services.identity import IdentityResolver
from bookmeta.domain.utils import categories as category_utils
from bookmeta.domain.utils import covers
from bookmeta.domain.utils import dimensions as dimension_utils
from bookmeta.domain.utils import slugs
from bookmeta.domain.utils.urls import normalize_to_https
from bookmeta.domain.utils.uuid7 import uuid7
from bookmeta.domain.value_objects import BookChangeEvent, NormalizedAggregate, UpsertResult

logger = logging.getLogger(__name__)

MAX_SLUG_SUFFIX = 1000


class UpsertEngine:
    """
    Resolves identity and merges a NormalizedAggregate into the store.

    One upsert is one unit of work: the advisory lock for the payload's
    strongest identifier is taken first, then identity is resolved, then
    every related attribute is written, then the transaction commits and
    the lock is released. A change event is published after the commit.

    Title-only payloads carry no identifier to lock on and run unlocked;
    two concurrent title-only upserts of the same book can both insert.
    """

    def __init__(
        self,
        store: CatalogStore,
        notifier: Optional[ChangeNotifier] = None,
        resolver: Optional[IdentityResolver] = None,
        clusterer: Optional[EditionClusterer] = None,
    ) -> None:
        """
        Args:
            store: Canonical store offering units of work
            notifier: Optional sink for change events
            resolver: Identity resolution strategy (default order)
            clusterer: Edition clustering run after new inserts
        """
        self._store = store
        self._notifier = notifier
        self._resolver = resolver or IdentityResolver()
        self._clusterer = clusterer or EditionClusterer()

    def upsert(self, aggregate: NormalizedAggregate) -> UpsertResult:
        """
        Create or merge the canonical book described by ``aggregate``.

        Returns:
            UpsertResult with the canonical id, slug and whether it was created

        Raises:
            ValidationError: If the title is missing (nothing is written)
            SystemicStoreFailure: If the store is unavailable
            PersistenceFailure: If the write failed; nothing was persisted
        """
        aggregate.validate()

        lock_key = self._resolver.lock_key(aggregate)
        if lock_key is None:
            logger.debug("No identifier on %s; upserting without advisory lock", aggregate.describe())

        try:
            with self._store.unit_of_work(lock_key) as session:
                result, image_links, canonical_image_url = self._write(session, aggregate)
        except (ValidationError, StoreFailure) as e:
            logger.error("Upsert failed for %s: %s", aggregate.describe(), e)
            raise
        except Exception as e:
            logger.error("Upsert failed for %s: %s", aggregate.describe(), e)
            raise PersistenceFailure(f"Upsert failed for {aggregate.describe()}: {e}") from e

        logger.info(
            "%s book %s (slug=%s) from %s",
            "Created" if result.is_new else "Updated",
            result.book_id,
            result.slug,
            aggregate.source or "unknown source",
        )

        self._notify(
            BookChangeEvent(
                book_id=result.book_id,
                slug=result.slug,
                title=aggregate.title.strip(),
                is_new=result.is_new,
                source=aggregate.source,
                canonical_image_url=canonical_image_url,
                image_links=image_links,
            )
        )
        return result

    # =========================================================================
    # Private helpers
    # =========================================================================

    def _write(
        self, session: CatalogSession, aggregate: NormalizedAggregate
    ) -> Tuple[UpsertResult, Dict[str, str], Optional[str]]:
        book_id = self._resolver.resolve(session, aggregate)
        is_new = book_id is None

        if is_new:
            book_id = uuid7()
            slug = self._unique_slug(session, aggregate.slug_base())
            session.insert_book(book_id, slug, aggregate)
        else:
            slug = session.get_book_slug(book_id)
            if slug is None:
                slug = self._unique_slug(session, aggregate.slug_base())
                if slug is not None:
                    session.assign_slug(book_id, slug)
            session.merge_book(book_id, aggregate)

        session.link_authors(book_id, aggregate.authors)

        image_links: Dict[str, str] = {}
        canonical_image_url = None
        identifiers = aggregate.identifiers
        if identifiers is not None:
            session.upsert_external_identifiers(book_id, identifiers)
            image_links = self._normalized_image_links(identifiers.image_links)
            if image_links:
                self._write_image_links(session, book_id, identifiers.source, image_links)
                canonical_image_url = covers.select_preferred_image_url(image_links)

        categories = category_utils.normalize_and_deduplicate(aggregate.categories)
        if categories:
            session.link_categories(book_id, categories)

        self._write_dimensions(session, book_id, aggregate)

        if is_new:
            self._cluster(session, book_id)

        return UpsertResult(book_id=book_id, slug=slug, is_new=is_new), image_links, canonical_image_url

    def _unique_slug(self, session: CatalogSession, base: Optional[str]) -> Optional[str]:
        if not base:
            return None

        candidate = base
        counter = 2
        while session.slug_exists(candidate):
            if counter > MAX_SLUG_SUFFIX:
                return f"{base}-{uuid7().hex[-8:]}"
            candidate = slugs.make_unique(base, counter)
            counter += 1
        return candidate

    @staticmethod
    def _normalized_image_links(raw_links) -> Dict[str, str]:
        links = {}
        for size_name, url in (raw_links or {}).items():
            normalized = normalize_to_https(url)
            if size_name and covers.is_renderable(normalized):
                links[size_name] = normalized
        return links

    def _write_image_links(
        self, session: CatalogSession, book_id: UUID, source: str, image_links: Dict[str, str]
    ) -> None:
        incoming = covers.incoming_quality(image_links)
        if incoming is None:
            return

        existing = session.get_cover_quality(book_id)
        if existing is not None and existing.is_strictly_better_than(incoming):
            logger.debug(
                "Existing cover for %s (score=%d, pixels=%d) outranks incoming "
                "(score=%d, pixels=%d); keeping it",
                book_id,
                existing.score,
                existing.pixel_area,
                incoming.score,
                incoming.pixel_area,
            )
            return

        session.upsert_image_links(book_id, source, image_links)

    def _write_dimensions(self, session: CatalogSession, book_id: UUID, aggregate: NormalizedAggregate) -> None:
        dimensions = aggregate.dimensions
        if dimensions is None or dimensions.is_empty():
            return

        parsed = dimension_utils.parse_all(dimensions.height, dimensions.width, dimensions.thickness)
        if parsed.has_any_dimension():
            session.upsert_dimensions(book_id, parsed)
        else:
            # Nothing parseable; whatever is stored is stale
            session.delete_dimensions(book_id)

    def _cluster(self, session: CatalogSession, book_id: UUID) -> None:
        try:
            with session.savepoint("cluster_isbn_prefix"):
                self._clusterer.cluster_by_isbn_prefix(session, book_id)
        except Exception as e:
            logger.warning("ISBN-prefix clustering failed for book %s: %s", book_id, e)

        try:
            with session.savepoint("cluster_canonical_id"):
                self._clusterer.cluster_by_canonical_id(session, book_id)
        except Exception as e:
            logger.warning("Canonical-id clustering failed for book %s: %s", book_id, e)

    def _notify(self, event: BookChangeEvent) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.publish(event)
        except Exception as e:
            logger.warning("Change notification failed for book %s: %s", event.book_id, e)
