"""
Tests for domain value objects and entities.

Covers construction-time normalization, validation rules and the small
behaviours the services rely on (dedupe keys, thinness, summaries).
"""

from uuid import UUID

import pytest

from bookmeta.domain.entities import CanonicalBook, WorkCluster, WorkClusterMember
from bookmeta.domain.errors import ValidationError
from bookmeta.domain.utils.uuid7 import uuid7
from bookmeta.domain.value_objects import (
    BackfillTask,
    BookChangeEvent,
    Dimensions,
    ExternalIdentifiers,
    IngestionSummary,
    NormalizedAggregate,
    SearchProgress,
    SearchStatus,
    normalize_query,
    query_hash,
)


# =============================================================================
# NormalizedAggregate
# =============================================================================


class TestNormalizedAggregate:
    """Tests for the provider-agnostic payload."""

    def test_isbns_sanitized_on_construction(self):
        aggregate = NormalizedAggregate(title="Dune", isbn13="978-0-441-17271-9", isbn10="0-441-17271-7")

        assert aggregate.isbn13 == "9780441172719"
        assert aggregate.isbn10 == "0441172717"

    def test_blank_authors_and_categories_dropped(self):
        aggregate = NormalizedAggregate(
            title="Dune", authors=(" Frank Herbert ", "", "  "), categories=("Fiction", " ")
        )

        assert aggregate.authors == ("Frank Herbert",)
        assert aggregate.categories == ("Fiction",)

    def test_negative_page_count_rejected(self):
        with pytest.raises(ValidationError, match="page_count"):
            NormalizedAggregate(title="Dune", page_count=-1)

    def test_validate_rejects_blank_title(self):
        """Blank titles construct but cannot be written."""
        aggregate = NormalizedAggregate(title="   ")

        with pytest.raises(ValidationError, match="title"):
            aggregate.validate()

    def test_strong_identifier(self):
        assert NormalizedAggregate(title="Dune", isbn10="0441172717").has_strong_identifier()
        assert not NormalizedAggregate(title="Dune").has_strong_identifier()

    def test_slug_base_uses_first_author(self):
        aggregate = NormalizedAggregate(title="Dune", authors=("Frank Herbert",))
        assert aggregate.slug_base() == "dune-frank-herbert"


class TestExternalIdentifiers:
    def test_requires_source_and_external_id(self):
        with pytest.raises(ValidationError):
            ExternalIdentifiers(source="", external_id="abc")
        with pytest.raises(ValidationError):
            ExternalIdentifiers(source="GOOGLE_BOOKS", external_id="  ")

    def test_rating_range_enforced(self):
        with pytest.raises(ValidationError, match="average_rating"):
            ExternalIdentifiers(source="GOOGLE_BOOKS", external_id="abc", average_rating=7.5)

    def test_image_links_are_read_only(self):
        identifiers = ExternalIdentifiers(
            source="GOOGLE_BOOKS", external_id="abc", image_links={"thumbnail": "https://x.test/t.jpg"}
        )

        with pytest.raises(TypeError):
            identifiers.image_links["large"] = "https://x.test/l.jpg"
        assert identifiers.source_key == "GOOGLE_BOOKS:abc"


def test_dimensions_is_empty():
    assert Dimensions().is_empty()
    assert Dimensions(height=" ").is_empty()
    assert not Dimensions(width="13 cm").is_empty()


# =============================================================================
# BackfillTask
# =============================================================================


class TestBackfillTask:
    def test_priority_bounds(self):
        with pytest.raises(ValidationError):
            BackfillTask(source="GOOGLE_BOOKS", source_id="abc", priority=0)
        with pytest.raises(ValidationError):
            BackfillTask(source="GOOGLE_BOOKS", source_id="abc", priority=11)

    def test_incremented_attempts_keeps_identity(self):
        task = BackfillTask(source="GOOGLE_BOOKS", source_id="abc", priority=3)
        retried = task.with_incremented_attempts()

        assert retried.attempts == 1
        assert retried.priority == 3
        assert retried.dedupe_key == task.dedupe_key == "GOOGLE_BOOKS|abc"


# =============================================================================
# Events and search keys
# =============================================================================


class TestSearchKeys:
    def test_query_hash_ignores_case_and_whitespace(self):
        assert normalize_query("  Dune   HERBERT ") == "dune herbert"
        assert query_hash("Dune Herbert") == query_hash("  dune   herbert")
        assert len(query_hash("dune")) == 16

    def test_progress_carries_query_hash(self):
        progress = SearchProgress(query="Dune", status=SearchStatus.STARTING)
        assert progress.query_hash == query_hash("dune")


def test_change_event_payload_omits_empty_image_fields():
    book_id = uuid7()
    event = BookChangeEvent(book_id=book_id, slug="dune-frank-herbert", title="Dune", is_new=True)

    payload = event.to_dict()

    assert payload["bookId"] == str(book_id)
    assert payload["isNew"] is True
    assert payload["context"] == "UPSERT"
    assert "imageLinks" not in payload
    assert "canonicalImageUrl" not in payload


class TestIngestionSummary:
    def test_counts_must_add_up(self):
        with pytest.raises(ValueError, match="Invariant violated"):
            IngestionSummary(n_fetched=3, n_inserted=1, n_updated=1, n_errors=0, source="NEW_YORK_TIMES")

    def test_unprocessed_entries_are_accounted(self):
        summary = IngestionSummary(
            n_fetched=5,
            n_inserted=1,
            n_updated=1,
            n_errors=0,
            source="NEW_YORK_TIMES",
            n_unprocessed=3,
            aborted=True,
        )
        assert summary.n_persisted == 2

    def test_negative_counts_rejected(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            IngestionSummary(n_fetched=0, n_inserted=-1, n_updated=1, n_errors=0, source="X")


# =============================================================================
# Entities
# =============================================================================


class TestCanonicalBook:
    def test_blank_title_rejected(self):
        with pytest.raises(ValidationError):
            CanonicalBook(id=uuid7(), title="  ")

    def test_equality_by_id(self):
        book_id = uuid7()
        assert CanonicalBook(id=book_id, title="A") == CanonicalBook(id=book_id, title="B")
        assert len({CanonicalBook(id=book_id, title="A"), CanonicalBook(id=book_id, title="B")}) == 1

    def test_thin_without_description_or_cover(self):
        assert CanonicalBook(id=uuid7(), title="Dune").is_thin()
        assert CanonicalBook(id=uuid7(), title="Dune", description="Spice", cover_url=None).is_thin()
        assert not CanonicalBook(
            id=uuid7(), title="Dune", description="Spice", cover_url="https://x.test/c.jpg"
        ).is_thin()

    def test_dedupe_key_for_unpersisted_projection(self):
        projection = CanonicalBook(
            id=uuid7(), title="Dune", external_ids={"OPEN_LIBRARY": "OL1M"}, persisted=False
        )
        with_isbn = CanonicalBook(id=uuid7(), title="Dune", isbn13="9780441172719", persisted=False)

        assert projection.dedupe_key() == "OPEN_LIBRARY:OL1M"
        assert with_isbn.dedupe_key() == "isbn13:9780441172719"

    def test_searchable_text_joins_fields(self):
        book = CanonicalBook(
            id=uuid7(), title="Dune", authors=["Frank Herbert"], categories=["Science Fiction"]
        )
        assert book.get_searchable_text() == "Dune Frank Herbert Science Fiction"


def test_work_cluster_primary():
    primary = WorkClusterMember(book_id=UUID(int=1), is_primary=True)
    cluster = WorkCluster(
        cluster_key="97804411727",
        cluster_method="ISBN_PREFIX",
        canonical_title="Dune",
        members=[primary, WorkClusterMember(book_id=UUID(int=2))],
    )

    assert cluster.primary() is primary
    assert cluster.member_count == 2
    with pytest.raises(ValidationError):
        WorkCluster(cluster_key="", cluster_method="ISBN_PREFIX", canonical_title="Dune")
