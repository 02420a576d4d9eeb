"""
API request and response models.
"""

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class Book(BaseModel):
    """
    API representation of a CanonicalBook.
    """

    id: UUID = Field(description="Canonical identifier (UUIDv7)")
    slug: str | None = Field(default=None, description="Stable URL key")
    title: str = Field(description="Book title")
    subtitle: str | None = None
    description: str | None = Field(default=None, description="Book description/summary")
    authors: list[str] = Field(default_factory=list, description="Author names in display order")
    categories: list[str] = Field(default_factory=list, description="Normalized categories")
    isbn13: str | None = None
    isbn10: str | None = None
    language: str | None = Field(default=None, description="ISO 639-1 language code (e.g., 'es', 'en')")
    publisher: str | None = None
    page_count: int | None = None
    published_date: date | None = None
    cover_url: str | None = Field(default=None, description="Preferred cover image URL")
    external_ids: dict[str, str] = Field(
        default_factory=dict, description="Provider source -> provider id"
    )
    persisted: bool = Field(
        default=True, description="False when an external hit could not be stored"
    )
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SearchResponse(BaseModel):
    """
    Collected output of one tiered search.
    """

    query: str
    query_hash: str = Field(description="Key used by search progress events")
    total: int = Field(ge=0)
    results: list[Book]


class CircuitRailState(BaseModel):
    state: Literal["CLOSED", "OPEN"]
    failure_count: int = Field(ge=0)
    last_failure_at: str | None = None
    opened_on: str | None = None


class CircuitStatusResponse(BaseModel):
    rails: dict[str, CircuitRailState]


class BackfillRequest(BaseModel):
    """
    Request body for POST /admin/backfill.
    """

    source: str = Field(default="GOOGLE_BOOKS", min_length=1)
    source_id: str = Field(min_length=1, description="Provider id to re-fetch")
    priority: int = Field(default=5, ge=1, le=10, description="1 = most urgent")


class BackfillEnqueueResponse(BaseModel):
    enqueued: bool = Field(description="False if the task was already pending")


class BackfillStats(BaseModel):
    queue_size: int = Field(ge=0)
    in_flight: int = Field(ge=0)
    running: bool
    max_retries: int


class IngestionResponse(BaseModel):
    """
    Outcome of a bestseller list ingestion.
    """

    source: str
    list_name: str | None = None
    n_fetched: int
    n_inserted: int
    n_updated: int
    n_errors: int
    n_unprocessed: int = 0
    aborted: bool = False
    errors: list[str] = Field(default_factory=list)
