"""
Tests for OpenLibraryClient and OpenLibraryMapper.
"""

from datetime import date
from typing import Any, Dict, List, Optional

import pytest
import requests

from bookmeta.domain.errors import ProviderFailure, RateLimitFailure, TransientProviderFailure
from bookmeta.infrastructure.external.open_library_client import OpenLibraryClient, OpenLibraryMapper


class FakeResponse:
    def __init__(self, json_data: Optional[Dict[str, Any]] = None, status_code: int = 200, raise_on_json: bool = False):
        self._json_data = json_data or {}
        self.status_code = status_code
        self._raise_on_json = raise_on_json

    def json(self) -> Dict[str, Any]:
        if self._raise_on_json:
            raise ValueError("Invalid JSON")
        return self._json_data


class FakeSession:
    def __init__(self, response):
        self._response = response
        self.requests: List[Dict[str, Any]] = []

    def get(self, url: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None):
        self.requests.append({"url": url, "params": params, "timeout": timeout})
        if isinstance(self._response, Exception):
            raise self._response
        return self._response


DUNE_DOC = {
    "key": "/works/OL893415W",
    "title": "Dune",
    "author_name": ["Frank Herbert"],
    "isbn": ["0441172717", "9780441172719"],
    "publisher": ["Ace Books", "Chilton"],
    "language": ["eng"],
    "first_publish_year": 1965,
    "number_of_pages_median": 604,
    "subject": ["Science fiction", "Fiction, general"],
    "cover_i": 11481354,
    "cover_edition_key": "OL26242482M",
    "edition_key": ["OL1M", "OL26242482M"],
    "ratings_average": 4.2,
    "ratings_count": 500,
}


# =============================================================================
# Tests: OpenLibraryClient
# =============================================================================


class TestOpenLibraryClient:
    def test_search_sends_query_and_limit(self):
        session = FakeSession(FakeResponse({"docs": [DUNE_DOC, DUNE_DOC, DUNE_DOC]}))
        client = OpenLibraryClient(session=session, timeout=2.0)

        docs = client.search("  dune ", limit=2)

        assert len(docs) == 2
        request = session.requests[0]
        assert request["url"] == OpenLibraryClient.SEARCH_URL
        assert request["params"]["q"] == "dune"
        assert request["params"]["limit"] == 2
        assert request["timeout"] == 2.0

    def test_no_docs(self):
        client = OpenLibraryClient(session=FakeSession(FakeResponse({"numFound": 0})))
        assert client.search("nothing") == []

    def test_blank_query_raises_value_error(self):
        with pytest.raises(ValueError):
            OpenLibraryClient(session=FakeSession(FakeResponse())).search(" ")

    @pytest.mark.parametrize(
        "status, error",
        [(429, RateLimitFailure), (502, TransientProviderFailure), (404, ProviderFailure)],
    )
    def test_http_errors(self, status, error):
        client = OpenLibraryClient(session=FakeSession(FakeResponse(status_code=status)))

        with pytest.raises(error):
            client.search("dune")

    def test_network_error_is_transient(self):
        client = OpenLibraryClient(session=FakeSession(requests.exceptions.ConnectionError("down")))

        with pytest.raises(TransientProviderFailure):
            client.search("dune")

    def test_invalid_json_is_transient(self):
        client = OpenLibraryClient(session=FakeSession(FakeResponse(raise_on_json=True)))

        with pytest.raises(TransientProviderFailure):
            client.search("dune")


# =============================================================================
# Tests: OpenLibraryMapper
# =============================================================================


class TestOpenLibraryMapper:
    def test_maps_search_doc(self):
        aggregate = OpenLibraryMapper().map(DUNE_DOC)

        assert aggregate.title == "Dune"
        assert aggregate.authors == ("Frank Herbert",)
        assert aggregate.isbn13 == "9780441172719"
        assert aggregate.isbn10 == "0441172717"
        assert aggregate.language == "en"
        assert aggregate.publisher == "Ace Books"
        assert aggregate.page_count == 604
        assert aggregate.published_date == date(1965, 1, 1)

        identifiers = aggregate.identifiers
        assert identifiers.source == "OPEN_LIBRARY"
        assert identifiers.external_id == "OL26242482M"
        assert identifiers.canonical_id == "OL893415W"
        assert identifiers.info_link == "https://openlibrary.org/books/OL26242482M"
        assert identifiers.average_rating == 4.2
        assert identifiers.image_links["large"] == "https://covers.openlibrary.org/b/id/11481354-L.jpg"

    def test_falls_back_to_first_edition_then_work_key(self):
        mapper = OpenLibraryMapper()

        edition_only = mapper.map({"key": "/works/OL1W", "title": "X", "edition_key": ["OL7M"]})
        work_only = mapper.map({"key": "/works/OL1W", "title": "X"})

        assert edition_only.external_id == "OL7M"
        assert work_only.external_id == "OL1W"
        assert work_only.identifiers.info_link is None

    def test_rejects_doc_without_title_or_key(self):
        mapper = OpenLibraryMapper()

        assert mapper.map({"key": "/works/OL1W"}) is None
        assert mapper.map({"title": "Untracked"}) is None

    def test_unknown_language_and_missing_cover(self):
        aggregate = OpenLibraryMapper().map({"key": "/works/OL1W", "title": "X", "language": ["xxx"], "cover_i": -1})

        assert aggregate.language is None
        assert dict(aggregate.identifiers.image_links) == {}
