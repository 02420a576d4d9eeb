"""
FastAPI dependencies for dependency injection.

This module provides singleton instances of the store, providers and
services for use with FastAPI's Depends() system.

Note: We use module-level singletons instead of @lru_cache with Depends()
parameters, which is an antipattern that can cause unexpected behavior.
"""

from typing import Optional

from bookmeta.backfill.coordinator import BackfillCoordinator, volume_fetcher
from bookmeta.backfill.guards import Bulkhead, RateLimiter
from bookmeta.backfill.queue import BackfillQueue
from bookmeta.config import Settings
from bookmeta.domain.ports import CatalogStore
from bookmeta.domain.services import (
    BestsellerIngestionService,
    CircuitBreaker,
    TieredSearchOrchestrator,
    UpsertEngine,
)
from bookmeta.domain.value_objects import SOURCE_GOOGLE_BOOKS
from bookmeta.infrastructure.db.sqlite_catalog_repository import SqliteCatalogRepository
from bookmeta.infrastructure.events.in_memory_bus import InMemoryChangeNotifier, InMemorySearchEventBus
from bookmeta.infrastructure.external.google_books_client import GoogleBooksClient
from bookmeta.infrastructure.external.google_books_mapper import GoogleBooksMapper
from bookmeta.infrastructure.external.nyt_bestsellers_client import NytBestsellerClient, NytBestsellerMapper
from bookmeta.infrastructure.external.open_library_client import OpenLibraryClient, OpenLibraryMapper
from bookmeta.infrastructure.search.bm25_relevance_ranker import BM25RelevanceRanker

# Module-level singletons (initialized lazily)
_settings: Optional[Settings] = None
_catalog_store: Optional[CatalogStore] = None
_change_notifier: Optional[InMemoryChangeNotifier] = None
_search_event_bus: Optional[InMemorySearchEventBus] = None
_circuit_breaker: Optional[CircuitBreaker] = None
_google_books_client: Optional[GoogleBooksClient] = None
_upsert_engine: Optional[UpsertEngine] = None
_backfill_coordinator: Optional[BackfillCoordinator] = None
_search_orchestrator: Optional[TieredSearchOrchestrator] = None
_bestseller_service: Optional[BestsellerIngestionService] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def get_catalog_store() -> CatalogStore:
    """Provide a singleton instance of the catalog store."""
    global _catalog_store
    if _catalog_store is None:
        _catalog_store = SqliteCatalogRepository(get_settings().db_path)
    return _catalog_store


def get_change_notifier() -> InMemoryChangeNotifier:
    global _change_notifier
    if _change_notifier is None:
        _change_notifier = InMemoryChangeNotifier()
    return _change_notifier


def get_search_event_bus() -> InMemorySearchEventBus:
    global _search_event_bus
    if _search_event_bus is None:
        _search_event_bus = InMemorySearchEventBus()
    return _search_event_bus


def get_circuit_breaker() -> CircuitBreaker:
    """Provide the process-wide circuit breaker."""
    global _circuit_breaker
    if _circuit_breaker is None:
        _circuit_breaker = CircuitBreaker()
    return _circuit_breaker


def get_google_books_client() -> GoogleBooksClient:
    global _google_books_client
    if _google_books_client is None:
        settings = get_settings()
        _google_books_client = GoogleBooksClient(
            api_key=settings.google_books_api_key,
            timeout=settings.external_timeout_seconds,
        )
    return _google_books_client


def get_upsert_engine() -> UpsertEngine:
    """Provide the single write path."""
    global _upsert_engine
    if _upsert_engine is None:
        _upsert_engine = UpsertEngine(get_catalog_store(), notifier=get_change_notifier())
    return _upsert_engine


def get_backfill_coordinator() -> BackfillCoordinator:
    """Provide the backfill coordinator (its worker is started by the app lifespan)."""
    global _backfill_coordinator
    if _backfill_coordinator is None:
        settings = get_settings()
        _backfill_coordinator = BackfillCoordinator(
            queue=BackfillQueue(),
            fetchers={SOURCE_GOOGLE_BOOKS: volume_fetcher(get_google_books_client(), get_circuit_breaker())},
            mappers={SOURCE_GOOGLE_BOOKS: GoogleBooksMapper()},
            upsert_engine=get_upsert_engine(),
            rate_limiter=RateLimiter(settings.backfill_rate_per_second),
            bulkhead=Bulkhead(settings.backfill_max_concurrent),
        )
    return _backfill_coordinator


def get_search_orchestrator() -> TieredSearchOrchestrator:
    """Provide the tiered search orchestrator with all dependencies wired."""
    global _search_orchestrator
    if _search_orchestrator is None:
        settings = get_settings()
        _search_orchestrator = TieredSearchOrchestrator(
            store=get_catalog_store(),
            ranker=BM25RelevanceRanker(),
            volume_provider=get_google_books_client(),
            volume_mapper=GoogleBooksMapper(),
            open_catalog=OpenLibraryClient(timeout=settings.external_timeout_seconds),
            open_catalog_mapper=OpenLibraryMapper(),
            upsert_engine=get_upsert_engine(),
            circuit_breaker=get_circuit_breaker(),
            publisher=get_search_event_bus(),
            backfill=get_backfill_coordinator().enqueue,
            external_enabled=settings.external_fallback_enabled,
            timeout_seconds=settings.external_timeout_seconds,
        )
    return _search_orchestrator


def get_bestseller_service() -> BestsellerIngestionService:
    global _bestseller_service
    if _bestseller_service is None:
        _bestseller_service = BestsellerIngestionService(
            provider=NytBestsellerClient(api_key=get_settings().nyt_api_key),
            mapper=NytBestsellerMapper(),
            upsert_engine=get_upsert_engine(),
        )
    return _bestseller_service


def reset_dependencies() -> None:
    """
    Reset all singletons. Useful for testing.

    This allows tests to inject mock dependencies by resetting
    the module state between test cases.
    """
    global _settings, _catalog_store, _change_notifier, _search_event_bus
    global _circuit_breaker, _google_books_client, _upsert_engine
    global _backfill_coordinator, _search_orchestrator, _bestseller_service

    if _backfill_coordinator is not None:
        _backfill_coordinator.stop()
    if _search_orchestrator is not None:
        _search_orchestrator.shutdown()

    _settings = None
    _catalog_store = None
    _change_notifier = None
    _search_event_bus = None
    _circuit_breaker = None
    _google_books_client = None
    _upsert_engine = None
    _backfill_coordinator = None
    _search_orchestrator = None
    _bestseller_service = None
