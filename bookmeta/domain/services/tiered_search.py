"""
Local-first search with external supplementation.

The local catalog is always read and emitted first. Only when it cannot
satisfy the requested count does the orchestrator reach out to the
volumes API (authenticated rail, then unauthenticated rail on failure)
and finally the open catalog provider. External hits are persisted
through the upsert engine so the next search finds them locally.
"""

import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Set

from bookmeta.domain.entities import CanonicalBook
from bookmeta.domain.errors import ProviderFailure, RateLimitFailure
from bookmeta.domain.ports import (
    CatalogStore,
    OpenCatalogProvider,
    PayloadMapper,
    RelevanceRanker,
    SearchEventPublisher,
    VolumeProvider,
)
from bookmeta.domain.services.circuit_breaker import CircuitBreaker, Rail
from bookmeta.domain.services.upsert_engine import UpsertEngine
from bookmeta.domain.utils import covers
from bookmeta.domain.utils.uuid7 import uuid7
from bookmeta.domain.value_objects import (
    SOURCE_GOOGLE_BOOKS,
    SOURCE_OPEN_LIBRARY,
    NormalizedAggregate,
    SearchProgress,
    SearchResultsBatch,
    SearchStatus,
)

logger = logging.getLogger(__name__)

SOURCE_LOCAL = "LOCAL"
LOCAL_CANDIDATE_LIMIT = 200
BACKFILL_PRIORITY = 3
BATCH_MAX_ITEMS = 5
BATCH_WINDOW_SECONDS = 0.4

BackfillSink = Callable[[str, str, int], bool]


class _BatchCoalescer:
    """Groups streamed results into batches of a few items or a short window."""

    def __init__(
        self,
        query: str,
        emit: Callable[[SearchResultsBatch], None],
        max_items: int,
        window_seconds: float,
        clock: Callable[[], float],
        running_total: int,
    ) -> None:
        self._query = query
        self._emit = emit
        self._max_items = max_items
        self._window = window_seconds
        self._clock = clock
        self._pending: List[CanonicalBook] = []
        self._source = ""
        self._opened_at = 0.0
        self.running_total = running_total

    def add(self, book: CanonicalBook, source: str) -> None:
        if self._pending and source != self._source:
            self.flush()
        if not self._pending:
            self._opened_at = self._clock()
            self._source = source
        self._pending.append(book)
        self.running_total += 1
        if len(self._pending) >= self._max_items or self._clock() - self._opened_at >= self._window:
            self.flush()

    def flush(self, is_final: bool = False) -> None:
        if not self._pending and not is_final:
            return
        batch = SearchResultsBatch(
            query=self._query,
            results=tuple(self._pending),
            source=self._source or SOURCE_LOCAL,
            running_total=self.running_total,
            is_final=is_final,
        )
        self._pending = []
        self._emit(batch)


class TieredSearchOrchestrator:
    """
    Streams search results: local catalog first, then external tiers.

    Local results always precede external ones in the stream. External
    calls each run on a bounded worker pool with a timeout; a timeout or
    provider failure degrades to fewer results, never to an exception
    for the consumer.
    """

    def __init__(
        self,
        store: CatalogStore,
        ranker: Optional[RelevanceRanker] = None,
        volume_provider: Optional[VolumeProvider] = None,
        volume_mapper: Optional[PayloadMapper] = None,
        open_catalog: Optional[OpenCatalogProvider] = None,
        open_catalog_mapper: Optional[PayloadMapper] = None,
        upsert_engine: Optional[UpsertEngine] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        publisher: Optional[SearchEventPublisher] = None,
        backfill: Optional[BackfillSink] = None,
        external_enabled: bool = True,
        timeout_seconds: float = 3.0,
        executor: Optional[Executor] = None,
        batch_max_items: int = BATCH_MAX_ITEMS,
        batch_window_seconds: float = BATCH_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            store: Local catalog
            ranker: Relevance ranking over local candidates (store order if None)
            volume_provider: Quota-limited volumes API client
            volume_mapper: Maps volumes API payloads
            open_catalog: Secondary open catalog client
            open_catalog_mapper: Maps open catalog payloads
            upsert_engine: Persists external hits; None keeps them unpersisted
            circuit_breaker: Gates the two volumes API rails
            publisher: Receives progress events and result batches
            backfill: Called as backfill(source, source_id, priority) for thin local hits
            external_enabled: Master switch for external supplementation
            timeout_seconds: Per external call timeout
            executor: Worker pool for external calls
        """
        self._store = store
        self._ranker = ranker
        self._volume_provider = volume_provider
        self._volume_mapper = volume_mapper
        self._open_catalog = open_catalog
        self._open_catalog_mapper = open_catalog_mapper
        self._upsert_engine = upsert_engine
        self._breaker = circuit_breaker or CircuitBreaker()
        self._publisher = publisher
        self._backfill = backfill
        self._external_enabled = external_enabled
        self._timeout = timeout_seconds
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="search-external")
        self._batch_max_items = batch_max_items
        self._batch_window = batch_window_seconds
        self._clock = clock

    def shutdown(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def search(
        self,
        query: str,
        desired_count: int = 20,
        language: Optional[str] = None,
        bypass_external: bool = False,
    ) -> Iterator[CanonicalBook]:
        """
        Search for books, yielding results as they become available.

        Args:
            query: Free text query (title, author, ISBN, ...)
            desired_count: Number of results the caller wants
            language: Optional language filter
            bypass_external: Never call external providers

        Yields:
            Local results in relevance order, then supplemented results
        """
        if not query or not query.strip() or desired_count <= 0:
            return

        self._publish_progress(query, SearchStatus.STARTING, "Searching local catalog")

        local, local_failed = self._search_local(query, desired_count, language)
        seen: Set[str] = set()
        for book in local:
            seen.update(_identity_keys(book))
            yield book

        self._seed_backfill(local)

        satisfied = len(local) >= desired_count
        external_allowed = self._external_enabled and not bypass_external
        external_possible = external_allowed and self._has_external_tier()

        finished = satisfied or not external_possible
        self._publish_batch(
            SearchResultsBatch(
                query=query,
                results=tuple(local),
                source=SOURCE_LOCAL,
                running_total=len(local),
                is_final=finished,
            )
        )

        if finished:
            if local_failed:
                self._publish_progress(query, SearchStatus.ERROR, "Local catalog unavailable")
            else:
                self._publish_progress(query, SearchStatus.COMPLETE, f"Found {len(local)} results")
            return

        missing = desired_count - len(local)
        coalescer = _BatchCoalescer(
            query,
            self._publish_batch,
            self._batch_max_items,
            self._batch_window,
            self._clock,
            running_total=len(local),
        )
        outcome = _ChainOutcome()

        for book, source in self._supplement(query, missing, language, seen, outcome):
            coalescer.add(book, source)
            yield book

        coalescer.flush(is_final=True)

        if outcome.failed:
            self._publish_progress(query, SearchStatus.ERROR, "External providers unavailable")
        else:
            self._publish_progress(
                query, SearchStatus.COMPLETE, f"Found {coalescer.running_total} results"
            )

    # =========================================================================
    # Local tier
    # =========================================================================

    def _search_local(self, query: str, desired_count: int, language: Optional[str]):
        try:
            candidates = self._store.find_candidates(query, limit=LOCAL_CANDIDATE_LIMIT, language=language)
        except Exception as e:
            logger.error("Local search failed for '%s': %s", query, e)
            return [], True

        if self._ranker is None:
            return list(candidates[:desired_count]), False
        return self._ranker.rank(query, candidates, desired_count), False

    def _seed_backfill(self, books: Sequence[CanonicalBook]) -> None:
        if self._backfill is None:
            return
        for book in books:
            volume_id = book.external_ids.get(SOURCE_GOOGLE_BOOKS)
            if volume_id and book.is_thin():
                try:
                    self._backfill(SOURCE_GOOGLE_BOOKS, volume_id, BACKFILL_PRIORITY)
                except Exception as e:
                    logger.warning("Could not enqueue backfill for %s: %s", volume_id, e)

    # =========================================================================
    # External tiers
    # =========================================================================

    def _has_external_tier(self) -> bool:
        volumes = self._volume_provider is not None and self._volume_mapper is not None
        open_catalog = self._open_catalog is not None and self._open_catalog_mapper is not None
        return volumes or open_catalog

    def _supplement(
        self,
        query: str,
        missing: int,
        language: Optional[str],
        seen: Set[str],
        outcome: "_ChainOutcome",
    ) -> Iterator[tuple]:
        emitted = 0

        raw_volumes = self._fetch_volumes(query, missing, language, outcome)
        if raw_volumes:
            for book in self._materialize(raw_volumes, self._volume_mapper, seen):
                yield book, SOURCE_GOOGLE_BOOKS
                emitted += 1
                if emitted >= missing:
                    return

        if emitted >= missing:
            return

        raw_docs = self._fetch_open_catalog(query, missing - emitted, outcome)
        if raw_docs:
            for book in self._materialize(raw_docs, self._open_catalog_mapper, seen):
                yield book, SOURCE_OPEN_LIBRARY
                emitted += 1
                if emitted >= missing:
                    return

    def _fetch_volumes(
        self, query: str, missing: int, language: Optional[str], outcome: "_ChainOutcome"
    ) -> Optional[List[Dict[str, Any]]]:
        provider = self._volume_provider
        if provider is None or self._volume_mapper is None:
            return None

        if provider.has_api_key():
            if self._breaker.allowed(Rail.AUTHENTICATED):
                items = self._call_rail(
                    Rail.AUTHENTICATED,
                    lambda: provider.search_volumes(query, missing, authenticated=True, language=language),
                    outcome,
                )
                if items is not None:
                    return items
            else:
                logger.debug("Authenticated rail open; skipping authenticated tier")

        if self._breaker.allowed(Rail.UNAUTHENTICATED):
            return self._call_rail(
                Rail.UNAUTHENTICATED,
                lambda: provider.search_volumes(query, missing, authenticated=False, language=language),
                outcome,
            )

        logger.debug("Unauthenticated rail open; skipping unauthenticated tier")
        return None

    def _call_rail(self, rail: Rail, call: Callable[[], List[Dict[str, Any]]], outcome: "_ChainOutcome"):
        try:
            items = self._with_timeout(call)
        except RateLimitFailure as e:
            self._breaker.record_failure(rail, is_rate_limit=True)
            logger.warning("%s tier rate limited: %s", rail.value, e)
            outcome.record_failure()
            return None
        except (ProviderFailure, TimeoutError) as e:
            self._breaker.record_failure(rail, is_rate_limit=False)
            logger.warning("%s tier failed: %s", rail.value, e)
            outcome.record_failure()
            return None

        self._breaker.record_success(rail)
        outcome.record_success()
        return items

    def _fetch_open_catalog(
        self, query: str, limit: int, outcome: "_ChainOutcome"
    ) -> Optional[List[Dict[str, Any]]]:
        provider = self._open_catalog
        if provider is None or self._open_catalog_mapper is None:
            return None
        try:
            docs = self._with_timeout(lambda: provider.search(query, limit))
        except (ProviderFailure, TimeoutError) as e:
            logger.warning("Open catalog tier failed: %s", e)
            outcome.record_failure()
            return None
        outcome.record_success()
        return docs

    def _with_timeout(self, call: Callable[[], Any]) -> Any:
        # An abandoned future keeps running; its result is discarded
        future = self._executor.submit(call)
        return future.result(timeout=self._timeout)

    def _materialize(
        self,
        raw_items: Sequence[Mapping[str, Any]],
        mapper: Optional[PayloadMapper],
        seen: Set[str],
    ) -> Iterator[CanonicalBook]:
        if mapper is None:
            return
        for raw in raw_items:
            try:
                aggregate = mapper.map(raw)
            except Exception as e:
                logger.warning("Skipping unmappable payload: %s", e)
                continue
            if aggregate is None:
                continue

            book = self._persist(aggregate)
            keys = _identity_keys(book)
            if keys & seen:
                continue
            seen.update(keys)
            yield book

    def _persist(self, aggregate: NormalizedAggregate) -> CanonicalBook:
        if self._upsert_engine is not None:
            try:
                result = self._upsert_engine.upsert(aggregate)
                book = self._store.get_by_id(result.book_id)
                if book is not None:
                    return book
            except Exception as e:
                logger.warning("Could not persist %s; returning projection: %s", aggregate.describe(), e)
        return _projection(aggregate)

    # =========================================================================
    # Events
    # =========================================================================

    def _publish_progress(self, query: str, status: SearchStatus, message: str) -> None:
        if self._publisher is None:
            return
        try:
            self._publisher.publish_progress(SearchProgress(query=query, status=status, message=message))
        except Exception as e:
            logger.warning("Search progress publish failed: %s", e)

    def _publish_batch(self, batch: SearchResultsBatch) -> None:
        if self._publisher is None:
            return
        try:
            self._publisher.publish_batch(batch)
        except Exception as e:
            logger.warning("Search batch publish failed: %s", e)


class _ChainOutcome:
    """Tracks whether every attempted external tier failed."""

    def __init__(self) -> None:
        self.attempts = 0
        self.successes = 0

    def record_failure(self) -> None:
        self.attempts += 1

    def record_success(self) -> None:
        self.attempts += 1
        self.successes += 1

    @property
    def failed(self) -> bool:
        return self.attempts > 0 and self.successes == 0


def _identity_keys(book: CanonicalBook) -> Set[str]:
    keys = {book.dedupe_key()}
    if book.isbn13:
        keys.add(f"isbn13:{book.isbn13}")
    if book.isbn10:
        keys.add(f"isbn10:{book.isbn10}")
    for source, external_id in book.external_ids.items():
        keys.add(f"{source}:{external_id}")
    return keys


def _projection(aggregate: NormalizedAggregate) -> CanonicalBook:
    identifiers = aggregate.identifiers
    external_ids = {}
    cover_url = None
    if identifiers is not None:
        external_ids[identifiers.source] = identifiers.external_id
        cover_url = covers.select_preferred_image_url(identifiers.image_links)

    return CanonicalBook(
        id=uuid7(),
        title=aggregate.title.strip(),
        subtitle=aggregate.subtitle,
        description=aggregate.description,
        isbn13=aggregate.isbn13,
        isbn10=aggregate.isbn10,
        language=aggregate.language,
        publisher=aggregate.publisher,
        page_count=aggregate.page_count,
        published_date=aggregate.published_date,
        authors=list(aggregate.authors),
        categories=list(aggregate.categories),
        cover_url=cover_url,
        external_ids=external_ids,
        persisted=False,
    )
