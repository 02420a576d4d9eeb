"""
Tests for BestsellerIngestionService.

End-to-end pipeline tests using:
- SQLite (real repository and upsert engine)
- Fake bestseller provider
- The real NYT entry mapper

Verifies the flow: fetch -> map -> upsert -> summary.
"""

from datetime import date
from typing import Any, Dict, List, Optional
from unittest.mock import Mock
from uuid import uuid4

import pytest

from bookmeta.domain.errors import PersistenceFailure, SystemicStoreFailure, TransientProviderFailure
from bookmeta.domain.services.bestseller_ingestion import BestsellerIngestionService
from bookmeta.domain.value_objects import UpsertResult
from bookmeta.infrastructure.external.nyt_bestsellers_client import LIST_CONTEXT_KEY, NytBestsellerMapper


# =============================================================================
# Fake implementations for testing
# =============================================================================


class FakeBestsellerProvider:
    """Returns predefined entries, or raises the configured error."""

    def __init__(self, entries: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None):
        self._entries = entries or []
        self._error = error
        self.calls: List[tuple] = []

    def fetch_list(self, list_name: str, published_date: Optional[date] = None) -> List[Dict[str, Any]]:
        self.calls.append((list_name, published_date))
        if self._error:
            raise self._error
        return list(self._entries)


def _entry(title: str, isbn13: Optional[str] = None, author: str = "Kristin Hannah") -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "title": title,
        "author": author,
        LIST_CONTEXT_KEY: {"display_name": "Hardcover Fiction"},
    }
    if isbn13:
        entry["primary_isbn13"] = isbn13
    return entry


ENTRIES = [
    _entry("THE WOMEN", "9781250178633"),
    _entry("FUNNY STORY", "9780593441282", author="Emily Henry"),
    _entry("THE HOUSEMAID", "9781538742570", author="Freida McFadden"),
]


@pytest.fixture
def service_for(engine):
    def _build(provider, upsert_engine=None):
        return BestsellerIngestionService(provider, NytBestsellerMapper(), upsert_engine or engine)

    return _build


# =============================================================================
# Tests
# =============================================================================


class TestBestsellerIngestion:
    def test_first_run_inserts_every_entry(self, service_for, repository):
        provider = FakeBestsellerProvider(ENTRIES)

        summary = service_for(provider).ingest_list("hardcover-fiction", date(2024, 6, 16))

        assert provider.calls == [("hardcover-fiction", date(2024, 6, 16))]
        assert summary.n_fetched == 3
        assert summary.n_inserted == 3
        assert summary.n_updated == 0
        assert summary.n_errors == 0
        assert summary.source == "NYT"
        assert summary.list_name == "hardcover-fiction"
        assert repository.count() == 3

        book = repository.get_by_slug("the-women-kristin-hannah")
        assert book.categories == ["NYT Hardcover Fiction"]
        assert book.external_ids == {"NYT": "9781250178633"}

    def test_second_run_updates(self, service_for, repository):
        service = service_for(FakeBestsellerProvider(ENTRIES))
        service.ingest_list("hardcover-fiction")

        summary = service.ingest_list("hardcover-fiction")

        assert summary.n_inserted == 0
        assert summary.n_updated == 3
        assert repository.count() == 3

    def test_unmappable_entries_are_counted_as_errors(self, service_for):
        entries = ENTRIES[:2] + [{"primary_isbn13": "9780000000002"}]

        summary = service_for(FakeBestsellerProvider(entries)).ingest_list("hardcover-fiction")

        assert summary.n_inserted == 2
        assert summary.n_errors == 1
        assert len(summary.errors) == 1
        assert summary.aborted is False

    def test_malformed_entry_is_skipped(self, service_for, repository):
        entries = [ENTRIES[0], "not an entry", ENTRIES[2]]

        summary = service_for(FakeBestsellerProvider(entries)).ingest_list("hardcover-fiction")

        assert (summary.n_inserted, summary.n_errors) == (2, 1)
        assert summary.aborted is False
        assert "Failed to map entry 1" in summary.errors[0]
        assert repository.count() == 2

    def test_isbn_list_of_strings_does_not_break_batch(self, service_for):
        odd = dict(_entry("DUNE", author="Frank Herbert"), isbns=["9780441172720"])
        entries = [ENTRIES[0], odd, ENTRIES[2]]

        summary = service_for(FakeBestsellerProvider(entries)).ingest_list("hardcover-fiction")

        assert summary.n_inserted == 3
        assert summary.n_errors == 0

    def test_unexpected_mapper_error_counted(self):
        mapper = Mock()
        mapper.map.side_effect = [KeyError("title"), NytBestsellerMapper().map(ENTRIES[1])]
        engine = Mock()
        engine.upsert.return_value = UpsertResult(book_id=uuid4(), slug="funny-story", is_new=True)
        service = BestsellerIngestionService(FakeBestsellerProvider(ENTRIES[:2]), mapper, engine)

        summary = service.ingest_list("hardcover-fiction")

        assert (summary.n_inserted, summary.n_errors) == (1, 1)
        engine.upsert.assert_called_once()

    def test_persistence_failures_do_not_stop_batch(self, service_for):
        engine = Mock()
        engine.upsert.side_effect = [
            PersistenceFailure("constraint"),
            UpsertResult(book_id=uuid4(), slug="b", is_new=True),
            UpsertResult(book_id=uuid4(), slug="c", is_new=False),
        ]

        summary = service_for(FakeBestsellerProvider(ENTRIES), engine).ingest_list("hardcover-fiction")

        assert (summary.n_inserted, summary.n_updated, summary.n_errors) == (1, 1, 1)
        assert summary.n_persisted == 2

    def test_systemic_failure_aborts_remaining_entries(self, service_for):
        engine = Mock()
        engine.upsert.side_effect = [
            UpsertResult(book_id=uuid4(), slug="a", is_new=True),
            SystemicStoreFailure("unable to open database file"),
        ]

        summary = service_for(FakeBestsellerProvider(ENTRIES), engine).ingest_list("hardcover-fiction")

        assert summary.aborted is True
        assert summary.n_inserted == 1
        assert summary.n_unprocessed == 2
        assert engine.upsert.call_count == 2
        assert "Aborted at entry 1" in summary.errors[0]

    def test_empty_list(self, service_for):
        summary = service_for(FakeBestsellerProvider([])).ingest_list("hardcover-fiction")

        assert summary.n_fetched == 0
        assert summary.n_persisted == 0

    def test_fetch_failure_raises_runtime_error(self, service_for):
        provider = FakeBestsellerProvider(error=TransientProviderFailure("503"))

        with pytest.raises(RuntimeError, match="Failed to fetch bestseller list"):
            service_for(provider).ingest_list("hardcover-fiction")

    def test_blank_list_name_raises_value_error(self, service_for):
        provider = FakeBestsellerProvider(ENTRIES)

        with pytest.raises(ValueError):
            service_for(provider).ingest_list("  ")
        assert provider.calls == []
