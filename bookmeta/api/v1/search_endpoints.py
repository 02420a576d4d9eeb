"""
API endpoints for book search and lookup.

This module defines the FastAPI routes for searching books and retrieving
book details. It handles HTTP concerns and delegates to domain services.
Read paths never surface provider or store failures as 500s: they degrade
to partial or empty results.
"""

import logging
from itertools import islice
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from bookmeta.api.v1 import schemas as api
from bookmeta.api.v1.converters import domain_book_to_api
from bookmeta.api.v1.dependencies import get_catalog_store, get_search_orchestrator
from bookmeta.domain.ports import CatalogStore
from bookmeta.domain.services import TieredSearchOrchestrator
from bookmeta.domain.value_objects import query_hash

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/search", response_model=api.SearchResponse)
def search_books(
    q: str = Query(min_length=1, description="Search query"),
    limit: int = Query(default=20, ge=1, le=100, description="Desired number of results"),
    lang: str | None = Query(default=None, description="ISO 639-1 language filter"),
    local_only: bool = Query(default=False, description="Skip external providers"),
    orchestrator: TieredSearchOrchestrator = Depends(get_search_orchestrator),
) -> api.SearchResponse:
    """
    Search the local catalog, supplemented from external providers.

    Local results always come first in the response.
    """
    try:
        books = list(
            islice(
                orchestrator.search(q, desired_count=limit, language=lang, bypass_external=local_only),
                limit,
            )
        )
    except Exception as e:
        logger.error("Search failed for '%s': %s", q, e)
        books = []

    return api.SearchResponse(
        query=q,
        query_hash=query_hash(q),
        total=len(books),
        results=[domain_book_to_api(book) for book in books],
    )


@router.get("/books/{id_or_slug}", response_model=api.Book)
def get_book(
    id_or_slug: str,
    store: CatalogStore = Depends(get_catalog_store),
) -> api.Book:
    """
    Get a book by its canonical id or its slug.

    Raises:
        404: Book not found (or the store is unavailable)
    """
    book = None
    try:
        try:
            book = store.get_by_id(UUID(id_or_slug))
        except ValueError:
            book = store.get_by_slug(id_or_slug)
    except Exception as e:
        logger.error("Lookup failed for '%s': %s", id_or_slug, e)

    if book is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Book '{id_or_slug}' not found",
        )
    return domain_book_to_api(book)


@router.get("/health")
def health_check(store: CatalogStore = Depends(get_catalog_store)) -> dict:
    """
    Report store availability and catalog size.
    """
    try:
        book_count = store.count()
    except Exception as e:
        logger.warning("Health check could not reach the catalog store: %s", e)
        return {"status": "degraded", "components": {"catalog_store": False}, "books": None}

    return {"status": "ok", "components": {"catalog_store": True}, "books": book_count}
