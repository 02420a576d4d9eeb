"""
Tests for NytBestsellerClient and NytBestsellerMapper.
"""

from datetime import date
from typing import Any, Dict, List, Optional

import pytest

from bookmeta.domain.errors import ProviderFailure, RateLimitFailure, TransientProviderFailure
from bookmeta.infrastructure.external.nyt_bestsellers_client import (
    LIST_CONTEXT_KEY,
    NytBestsellerClient,
    NytBestsellerMapper,
)


class FakeResponse:
    def __init__(self, json_data: Optional[Dict[str, Any]] = None, status_code: int = 200):
        self._json_data = json_data or {}
        self.status_code = status_code

    def json(self) -> Dict[str, Any]:
        return self._json_data


class FakeSession:
    def __init__(self, response: FakeResponse):
        self._response = response
        self.requests: List[Dict[str, Any]] = []

    def get(self, url: str, params: Optional[Dict[str, Any]] = None, timeout: Optional[float] = None):
        self.requests.append({"url": url, "params": params})
        return self._response


LIST_RESPONSE = {
    "results": {
        "list_name": "Hardcover Fiction",
        "list_name_encoded": "hardcover-fiction",
        "display_name": "Hardcover Fiction",
        "published_date": "2024-06-16",
        "books": [
            {"rank": 1, "title": "THE WOMEN", "author": "Kristin Hannah", "primary_isbn13": "9781250178633"},
            {"rank": 2, "title": "FUNNY STORY", "author": "Emily Henry", "primary_isbn13": "9780593441282"},
        ],
    }
}


# =============================================================================
# Tests: NytBestsellerClient
# =============================================================================


class TestNytBestsellerClient:
    def test_fetches_current_list(self):
        session = FakeSession(FakeResponse(LIST_RESPONSE))
        client = NytBestsellerClient(api_key="nyt-key", session=session)

        entries = client.fetch_list("hardcover-fiction")

        assert session.requests[0]["url"] == f"{NytBestsellerClient.BASE_URL}/current/hardcover-fiction.json"
        assert session.requests[0]["params"] == {"api-key": "nyt-key"}
        assert [entry["rank"] for entry in entries] == [1, 2]
        assert entries[0][LIST_CONTEXT_KEY]["display_name"] == "Hardcover Fiction"

    def test_fetches_dated_edition(self):
        session = FakeSession(FakeResponse(LIST_RESPONSE))
        client = NytBestsellerClient(api_key="nyt-key", session=session)

        client.fetch_list("hardcover-fiction", date(2024, 6, 16))

        assert "/2024-06-16/hardcover-fiction.json" in session.requests[0]["url"]

    def test_requires_key_and_list_name(self):
        with pytest.raises(ValueError, match="API key"):
            NytBestsellerClient(session=FakeSession(FakeResponse())).fetch_list("hardcover-fiction")
        with pytest.raises(ValueError, match="list_name"):
            NytBestsellerClient(api_key="k", session=FakeSession(FakeResponse())).fetch_list(" ")

    @pytest.mark.parametrize(
        "status, error",
        [(429, RateLimitFailure), (500, TransientProviderFailure), (401, ProviderFailure)],
    )
    def test_http_errors(self, status, error):
        client = NytBestsellerClient(api_key="k", session=FakeSession(FakeResponse(status_code=status)))

        with pytest.raises(error):
            client.fetch_list("hardcover-fiction")

    def test_empty_results(self):
        client = NytBestsellerClient(api_key="k", session=FakeSession(FakeResponse({"results": {}})))
        assert client.fetch_list("hardcover-fiction") == []


# =============================================================================
# Tests: NytBestsellerMapper
# =============================================================================


class TestNytBestsellerMapper:
    def test_maps_entry(self):
        entry = {
            "title": "DUNE MESSIAH",
            "author": "Frank Herbert and Brian Herbert",
            "contributor": "by Frank Herbert",
            "description": "The sequel.",
            "publisher": "Ace",
            "primary_isbn13": "978-0-593-09824-0",
            "primary_isbn10": "0593098242",
            "book_image": "http://storage.googleapis.com/du-prd/books/images/9780593098240.jpg",
            "amazon_product_url": "https://www.amazon.com/dp/0593098242",
            LIST_CONTEXT_KEY: {"display_name": "Paperback Trade Fiction"},
        }

        aggregate = NytBestsellerMapper().map(entry)

        assert aggregate.title == "Dune Messiah"
        assert aggregate.authors == ("Frank Herbert", "Brian Herbert")
        assert aggregate.isbn13 == "9780593098240"
        assert aggregate.categories == ("NYT Paperback Trade Fiction",)
        assert aggregate.identifiers.source == "NYT"
        assert aggregate.identifiers.external_id == "9780593098240"
        assert aggregate.identifiers.purchase_link == "https://www.amazon.com/dp/0593098242"
        assert aggregate.identifiers.image_links["thumbnail"].startswith("https://storage.googleapis.com/")

    def test_isbn_from_isbns_list(self):
        entry = {"title": "Book", "isbns": [{"isbn10": "", "isbn13": "9781250178633"}]}

        aggregate = NytBestsellerMapper().map(entry)

        assert aggregate.isbn13 == "9781250178633"
        assert aggregate.categories == ("NYT Unknown",)

    def test_malformed_isbns_and_context_ignored(self):
        entry = {"title": "Book", "isbns": ["9780441172720", None], LIST_CONTEXT_KEY: "hardcover-fiction"}

        aggregate = NytBestsellerMapper().map(entry)

        assert aggregate.isbn13 is None
        assert aggregate.isbn10 is None
        assert aggregate.categories == ("NYT Unknown",)

    def test_list_code_used_as_label_fallback(self):
        entry = {"title": "Book", LIST_CONTEXT_KEY: {"list_code": "young-adult-hardcover"}}
        assert NytBestsellerMapper().map(entry).categories == ("NYT young adult hardcover",)

    def test_entry_without_isbn_has_no_identifiers(self):
        aggregate = NytBestsellerMapper().map({"title": "Mixed Case Title"})

        assert aggregate.title == "Mixed Case Title"
        assert aggregate.identifiers is None

    def test_entry_without_title_rejected(self):
        assert NytBestsellerMapper().map({"primary_isbn13": "9781250178633"}) is None
