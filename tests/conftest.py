"""
Shared fixtures for the bookmeta test suite.
"""

from typing import Any, Dict, Optional

import pytest

from bookmeta.domain.services.upsert_engine import UpsertEngine
from bookmeta.domain.value_objects import (
    SOURCE_GOOGLE_BOOKS,
    Dimensions,
    ExternalIdentifiers,
    NormalizedAggregate,
)
from bookmeta.infrastructure.db.sqlite_catalog_repository import SqliteCatalogRepository
from bookmeta.infrastructure.events.in_memory_bus import InMemoryChangeNotifier


# =============================================================================
# Builders
# =============================================================================


def make_aggregate(
    title: str = "Dune",
    authors=("Frank Herbert",),
    isbn13: Optional[str] = None,
    isbn10: Optional[str] = None,
    source: Optional[str] = SOURCE_GOOGLE_BOOKS,
    external_id: Optional[str] = None,
    image_links: Optional[Dict[str, str]] = None,
    canonical_id: Optional[str] = None,
    dimensions: Optional[Dimensions] = None,
    **fields: Any,
) -> NormalizedAggregate:
    """
    Build a NormalizedAggregate with sensible defaults.

    Identifiers are attached only when ``external_id`` is given.
    """
    identifiers = None
    if source and external_id:
        identifiers = ExternalIdentifiers(
            source=source,
            external_id=external_id,
            canonical_id=canonical_id,
            image_links=image_links or {},
        )
    return NormalizedAggregate(
        title=title,
        authors=tuple(authors or ()),
        isbn13=isbn13,
        isbn10=isbn10,
        dimensions=dimensions,
        identifiers=identifiers,
        **fields,
    )


def make_volume(
    volume_id: str = "vol123",
    title: Optional[str] = "Test Book",
    isbn13: Optional[str] = None,
    isbn10: Optional[str] = None,
    **volume_info: Any,
) -> Dict[str, Any]:
    """Google Books volume JSON with optional industry identifiers."""
    info: Dict[str, Any] = dict(volume_info)
    if title is not None:
        info["title"] = title
    identifiers = []
    if isbn13:
        identifiers.append({"type": "ISBN_13", "identifier": isbn13})
    if isbn10:
        identifiers.append({"type": "ISBN_10", "identifier": isbn10})
    if identifiers:
        info["industryIdentifiers"] = identifiers
    return {"id": volume_id, "volumeInfo": info}


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def repository(tmp_path):
    """A fresh SQLite catalog per test."""
    return SqliteCatalogRepository(tmp_path / "catalog.db")


@pytest.fixture
def notifier():
    return InMemoryChangeNotifier()


@pytest.fixture
def engine(repository, notifier):
    return UpsertEngine(repository, notifier=notifier)
