"""
New York Times Books API client and bestseller entry mapper.
"""

import logging
import re
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

import requests

from bookmeta.domain.errors import ProviderFailure, RateLimitFailure, TransientProviderFailure
from bookmeta.domain.ports import BestsellerProvider, PayloadMapper
from bookmeta.domain.utils import isbn as isbn_utils
from bookmeta.domain.utils.urls import normalize_to_https
from bookmeta.domain.value_objects import SOURCE_NYT, ExternalIdentifiers, NormalizedAggregate
from bookmeta.infrastructure.external.parsing import parse_published_date, text

logger = logging.getLogger(__name__)

LIST_CONTEXT_KEY = "list_context"

_AUTHOR_AND = re.compile(r"\band\b", re.IGNORECASE)
_AUTHOR_DELIMITERS = re.compile(r"[,;&]")
_CONTRIBUTOR_PREFIX = re.compile(r"^\s*by\s+", re.IGNORECASE)


class NytBestsellerClient(BestsellerProvider):
    """
    Fetches one bestseller list.

    Each returned entry is the raw book object with the list's identity
    attached under ``list_context`` so the mapper can label it.
    """

    BASE_URL = "https://api.nytimes.com/svc/books/v3/lists"

    def __init__(self, api_key: Optional[str] = None, session: Optional[Any] = None, timeout: float = 10.0) -> None:
        self._api_key = api_key
        self._session = session if session is not None else requests.Session()
        self._timeout = timeout

    def fetch_list(self, list_name: str, published_date: Optional[date] = None) -> List[Dict[str, Any]]:
        """
        Fetch a list edition.

        Args:
            list_name: List code (e.g., 'hardcover-fiction')
            published_date: Edition date; 'current' if None

        Returns:
            Raw book entries, in rank order

        Raises:
            ValueError: If list_name is blank or no API key is configured
            RateLimitFailure: On HTTP 429
            TransientProviderFailure: On network errors, timeouts or 5xx
            ProviderFailure: On any other HTTP error
        """
        if not list_name or not list_name.strip():
            raise ValueError("list_name cannot be empty")
        if not self._api_key:
            raise ValueError("NYT API key is not configured")

        edition = published_date.isoformat() if published_date else "current"
        url = f"{self.BASE_URL}/{edition}/{list_name.strip()}.json"

        try:
            response = self._session.get(url, params={"api-key": self._api_key}, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            raise TransientProviderFailure(f"NYT Books API request failed: {e}", SOURCE_NYT) from e

        if response.status_code == 429:
            raise RateLimitFailure("NYT Books API rate limit exceeded (HTTP 429)", SOURCE_NYT)
        if response.status_code >= 500:
            raise TransientProviderFailure(f"NYT Books API returned HTTP {response.status_code}", SOURCE_NYT)
        if response.status_code >= 400:
            raise ProviderFailure(f"NYT Books API returned HTTP {response.status_code}", SOURCE_NYT)

        try:
            results = (response.json() or {}).get("results") or {}
        except ValueError as e:
            raise TransientProviderFailure(f"NYT Books API returned invalid JSON: {e}", SOURCE_NYT) from e

        context = {
            "list_code": results.get("list_name_encoded") or list_name,
            "list_name": results.get("list_name"),
            "display_name": results.get("display_name"),
            "published_date": results.get("published_date"),
        }
        books = results.get("books") or []
        logger.info(f"Fetched {len(books)} entries from NYT list '{list_name}' ({edition})")
        return [dict(book, **{LIST_CONTEXT_KEY: context}) for book in books]


class NytBestsellerMapper(PayloadMapper):
    """Map one bestseller entry. The ISBN-13 (else ISBN-10) is the external id."""

    def map(self, raw: Mapping[str, Any]) -> Optional[NormalizedAggregate]:
        title = self._first_text(raw, "book_title", "title")
        if title is None:
            return None

        isbn13 = self._isbn13(raw)
        isbn10 = self._isbn10(raw)
        context = raw.get(LIST_CONTEXT_KEY)
        if not isinstance(context, Mapping):
            context = {}

        return NormalizedAggregate(
            title=self._normalize_title(title),
            description=self._first_text(raw, "description", "summary"),
            publisher=self._first_text(raw, "publisher"),
            isbn13=isbn13,
            isbn10=isbn10,
            published_date=parse_published_date(
                self._first_text(raw, "published_date", "publication_dt", "created_date")
            ),
            authors=tuple(self._authors(raw)),
            categories=(f"NYT {self._list_label(context)}",),
            identifiers=self._identifiers(raw, isbn13, isbn10),
        )

    # =========================================================================
    # Private helpers
    # =========================================================================

    @staticmethod
    def _first_text(node: Mapping[str, Any], *fields: str) -> Optional[str]:
        for field_name in fields:
            value = text(node.get(field_name))
            if value:
                return value
        return None

    def _isbn13(self, raw: Mapping[str, Any]) -> Optional[str]:
        primary = isbn_utils.sanitize_isbn13(self._first_text(raw, "primary_isbn13"))
        if primary:
            return primary
        for entry in self._isbn_entries(raw):
            candidate = isbn_utils.sanitize_isbn13(text(entry.get("isbn13")))
            if candidate:
                return candidate
        return None

    def _isbn10(self, raw: Mapping[str, Any]) -> Optional[str]:
        primary = isbn_utils.sanitize_isbn10(self._first_text(raw, "primary_isbn10"))
        if primary:
            return primary
        for entry in self._isbn_entries(raw):
            candidate = isbn_utils.sanitize_isbn10(text(entry.get("isbn10")))
            if candidate:
                return candidate
        return None

    @staticmethod
    def _isbn_entries(raw: Mapping[str, Any]) -> List[Mapping[str, Any]]:
        entries = raw.get("isbns")
        if not isinstance(entries, list):
            return []
        return [entry for entry in entries if isinstance(entry, Mapping)]

    @staticmethod
    def _normalize_title(title: str) -> str:
        # The list API shouts titles in upper case
        if title.isupper():
            return title.title()
        return title

    def _authors(self, raw: Mapping[str, Any]) -> List[str]:
        authors: List[str] = []
        for field_name in ("author", "contributor"):
            value = self._first_text(raw, field_name)
            if not value:
                continue
            value = _CONTRIBUTOR_PREFIX.sub("", value)
            for part in _AUTHOR_DELIMITERS.split(_AUTHOR_AND.sub(",", value)):
                name = " ".join(part.split())
                if name and name not in authors:
                    authors.append(name)
        return authors

    @staticmethod
    def _list_label(context: Mapping[str, Any]) -> str:
        for key in ("display_name", "list_name"):
            value = text(context.get(key))
            if value:
                return value
        code = text(context.get("list_code"))
        return code.replace("-", " ") if code else "Unknown"

    def _identifiers(
        self, raw: Mapping[str, Any], isbn13: Optional[str], isbn10: Optional[str]
    ) -> Optional[ExternalIdentifiers]:
        external_id = isbn13 or isbn10
        if external_id is None:
            return None

        image_url = normalize_to_https(self._first_text(raw, "book_image", "book_image_url"))
        return ExternalIdentifiers(
            source=SOURCE_NYT,
            external_id=external_id,
            provider_isbn13=isbn13,
            provider_isbn10=isbn10,
            purchase_link=self._first_text(raw, "amazon_product_url"),
            info_link=self._first_text(raw, "book_review_link", "sunday_review_link", "article_chapter_link"),
            preview_link=self._first_text(raw, "first_chapter_link"),
            web_reader_link=self._first_text(raw, "article_chapter_link"),
            canonical_volume_link=self._first_text(raw, "book_uri"),
            image_links={"thumbnail": image_url} if image_url else {},
        )
