"""
Open Library search client and mapper.

Open Library is the free secondary catalog consulted when the volumes API
is unavailable or returns too few results.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

import requests

from bookmeta.domain.errors import ProviderFailure, RateLimitFailure, TransientProviderFailure
from bookmeta.domain.ports import OpenCatalogProvider, PayloadMapper
from bookmeta.domain.utils import categories as category_utils
from bookmeta.domain.utils import isbn as isbn_utils
from bookmeta.domain.value_objects import SOURCE_OPEN_LIBRARY, ExternalIdentifiers, NormalizedAggregate
from bookmeta.infrastructure.external.parsing import parse_published_date, text, to_float, to_int

logger = logging.getLogger(__name__)

SEARCH_FIELDS = (
    "key,title,subtitle,author_name,isbn,publisher,language,first_publish_year,"
    "publish_date,number_of_pages_median,subject,cover_i,cover_edition_key,edition_key,"
    "ratings_average,ratings_count"
)

# Three-letter MARC codes Open Library uses, for the languages seen most
_LANGUAGE_CODES = {
    "eng": "en",
    "spa": "es",
    "fre": "fr",
    "ger": "de",
    "ita": "it",
    "por": "pt",
    "dut": "nl",
    "jpn": "ja",
    "chi": "zh",
    "rus": "ru",
}

MAX_SUBJECTS = 10


class OpenLibraryClient(OpenCatalogProvider):
    """
    Open Library search.json client.

    Usage:
        client = OpenLibraryClient()
        docs = client.search("the left hand of darkness", limit=5)
    """

    SEARCH_URL = "https://openlibrary.org/search.json"

    def __init__(self, session: Optional[Any] = None, timeout: float = 3.0) -> None:
        self._session = session if session is not None else requests.Session()
        self._timeout = timeout

    def search(self, query: str, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Search works.

        Returns:
            Raw search documents

        Raises:
            ValueError: If query is blank
            TransientProviderFailure: On network errors, timeouts or 5xx
            ProviderFailure: On any other HTTP error
        """
        if not query or not query.strip():
            raise ValueError("query cannot be empty")

        params = {"q": query.strip(), "limit": max(1, limit), "fields": SEARCH_FIELDS}
        try:
            response = self._session.get(self.SEARCH_URL, params=params, timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            raise TransientProviderFailure(f"Open Library request failed: {e}", SOURCE_OPEN_LIBRARY) from e

        if response.status_code == 429:
            raise RateLimitFailure("Open Library rate limit exceeded (HTTP 429)", SOURCE_OPEN_LIBRARY)
        if response.status_code >= 500:
            raise TransientProviderFailure(
                f"Open Library returned HTTP {response.status_code}", SOURCE_OPEN_LIBRARY
            )
        if response.status_code >= 400:
            raise ProviderFailure(f"Open Library returned HTTP {response.status_code}", SOURCE_OPEN_LIBRARY)

        try:
            data = response.json()
        except ValueError as e:
            raise TransientProviderFailure(f"Open Library returned invalid JSON: {e}", SOURCE_OPEN_LIBRARY) from e

        docs = data.get("docs") or []
        logger.debug("Open Library returned %d docs for '%s'", len(docs), query)
        return docs[:limit]


class OpenLibraryMapper(PayloadMapper):
    """
    Map one search document.

    The edition key is the external id; the work key becomes the canonical
    id so editions of one work cluster together.
    """

    COVER_URL = "https://covers.openlibrary.org/b/id/{cover_id}-{size}.jpg"

    def map(self, raw: Mapping[str, Any]) -> Optional[NormalizedAggregate]:
        title = text(raw.get("title"))
        if title is None:
            return None

        work_id = self._olid(raw.get("key"))
        edition_keys = raw.get("edition_key") or []
        edition_id = text(raw.get("cover_edition_key")) or (text(edition_keys[0]) if edition_keys else None)
        external_id = edition_id or work_id
        if external_id is None:
            logger.debug("Open Library doc '%s' has no key; skipping", title)
            return None

        isbns = raw.get("isbn") or []
        isbn13 = next((v for v in map(isbn_utils.sanitize_isbn13, isbns) if v), None)
        isbn10 = next((v for v in map(isbn_utils.sanitize_isbn10, isbns) if v), None)

        published = parse_published_date(text(raw.get("first_publish_year")))
        publishers = raw.get("publisher") or []
        page_count = to_int(raw.get("number_of_pages_median"))
        rating = to_float(raw.get("ratings_average"))

        return NormalizedAggregate(
            title=title,
            subtitle=text(raw.get("subtitle")),
            isbn13=isbn13,
            isbn10=isbn10,
            language=self._language(raw.get("language")),
            publisher=text(publishers[0]) if publishers else None,
            page_count=page_count if page_count and page_count > 0 else None,
            published_date=published,
            authors=tuple(text(a) for a in raw.get("author_name") or [] if text(a)),
            categories=tuple(category_utils.normalize_and_deduplicate((raw.get("subject") or [])[:MAX_SUBJECTS])),
            identifiers=ExternalIdentifiers(
                source=SOURCE_OPEN_LIBRARY,
                external_id=external_id,
                provider_isbn10=isbn10,
                provider_isbn13=isbn13,
                info_link=f"https://openlibrary.org/books/{edition_id}" if edition_id else None,
                average_rating=rating if rating is not None and 0 <= rating <= 5 else None,
                ratings_count=to_int(raw.get("ratings_count")),
                canonical_id=work_id,
                image_links=self._image_links(raw.get("cover_i")),
            ),
        )

    @staticmethod
    def _olid(key: Any) -> Optional[str]:
        """'/works/OL45804W' -> 'OL45804W'"""
        value = text(key)
        if value is None:
            return None
        return value.rstrip("/").rsplit("/", 1)[-1] or None

    @staticmethod
    def _language(codes: Any) -> Optional[str]:
        for code in codes or []:
            mapped = _LANGUAGE_CODES.get(str(code).lower())
            if mapped:
                return mapped
        return None

    def _image_links(self, cover_id: Any) -> Dict[str, str]:
        cover_id = to_int(cover_id)
        if cover_id is None or cover_id <= 0:
            return {}
        return {
            "smallThumbnail": self.COVER_URL.format(cover_id=cover_id, size="S"),
            "thumbnail": self.COVER_URL.format(cover_id=cover_id, size="M"),
            "large": self.COVER_URL.format(cover_id=cover_id, size="L"),
        }
