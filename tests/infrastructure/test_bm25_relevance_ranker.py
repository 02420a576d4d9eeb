"""
Integration tests for BM25RelevanceRanker.

Real rank-bm25 scoring over small candidate lists, no mocks.
"""

from uuid import uuid4

import pytest

from bookmeta.domain.entities import CanonicalBook
from bookmeta.infrastructure.search.bm25_relevance_ranker import BM25RelevanceRanker


def _book(title, description=None, isbn13=None, isbn10=None, authors=None):
    return CanonicalBook(
        id=uuid4(),
        title=title,
        description=description,
        isbn13=isbn13,
        isbn10=isbn10,
        authors=authors or [],
    )


@pytest.fixture
def ranker():
    return BM25RelevanceRanker()


@pytest.fixture
def candidates():
    return [
        _book("Foundation", "Psychohistory and the fall of an empire", authors=["Isaac Asimov"]),
        _book("Dune", "A desert planet, spice and a desert planet ecology", isbn13="9780441172719"),
        _book("Desert Planet Field Guide", "Survival notes"),
        _book("Hyperion", "Pilgrims on the world of Hyperion", isbn10="0553283685"),
        _book("Neuromancer", "Cyberspace cowboys", authors=["William Gibson"]),
        _book("Snow Crash", "Pizza delivery in the metaverse", authors=["Neal Stephenson"]),
    ]


class TestBM25RelevanceRanker:
    def test_title_phrase_hit_ranks_above_description_hit(self, ranker, candidates):
        ranked = ranker.rank("desert planet", candidates, limit=6)

        assert [book.title for book in ranked[:2]] == ["Desert Planet Field Guide", "Dune"]

    def test_exact_isbn_ranks_first(self, ranker, candidates):
        ranked = ranker.rank("978-0-441-17271-9", candidates, limit=6)
        assert ranked[0].title == "Dune"

        ranked = ranker.rank("0553283685", candidates, limit=6)
        assert ranked[0].title == "Hyperion"

    def test_bm25_orders_remaining_candidates(self, ranker, candidates):
        ranked = ranker.rank("asimov empire", candidates, limit=6)
        assert ranked[0].title == "Foundation"

    def test_limit_applied(self, ranker, candidates):
        assert len(ranker.rank("desert", candidates, limit=1)) == 1

    def test_no_match_returns_nothing(self, ranker, candidates):
        assert ranker.rank("zzzz", candidates, limit=6) == []

    def test_books_sharing_only_stopwords_are_dropped(self, ranker, candidates):
        ranked = ranker.rank("the art of war", candidates, limit=6)
        assert ranked == []

    def test_unrelated_candidates_dropped(self, ranker, candidates):
        ranked = ranker.rank("desert", candidates, limit=6)
        assert [book.title for book in ranked] == ["Desert Planet Field Guide", "Dune"]

    def test_punctuation_only_query_keeps_store_order(self, ranker, candidates):
        assert ranker.rank("?!", candidates, limit=2) == candidates[:2]

    def test_empty_input(self, ranker, candidates):
        assert ranker.rank("dune", [], limit=5) == []
        assert ranker.rank("dune", candidates, limit=0) == []
