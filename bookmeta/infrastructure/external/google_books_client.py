"""
Google Books API client implementing the VolumeProvider port.

This adapter only speaks HTTP: it returns raw volume JSON and translates
transport failures into the provider failure taxonomy. Turning volumes
into NormalizedAggregate payloads is GoogleBooksMapper's job.

The constructor accepts an optional ``session`` so tests can inject a
fake session that returns canned responses.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from bookmeta.domain.errors import ProviderFailure, RateLimitFailure, TransientProviderFailure
from bookmeta.domain.ports import VolumeProvider
from bookmeta.domain.value_objects import SOURCE_GOOGLE_BOOKS

logger = logging.getLogger(__name__)


class GoogleBooksClient(VolumeProvider):
    """
    Google Books volumes API client.

    Supports authenticated (API key) and unauthenticated calls; the caller
    decides per call which quota to spend.

    Usage:
        # Production
        client = GoogleBooksClient(api_key="your-api-key")
        volumes = client.search_volumes("dune herbert", max_results=10)

        # Testing (with fake session)
        client = GoogleBooksClient(session=fake_session)
        volumes = client.search_volumes("test query", authenticated=False)
    """

    BASE_URL = "https://www.googleapis.com/books/v1/volumes"
    PAGE_SIZE = 40  # API limit per request

    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[Any] = None,
        timeout: float = 3.0,
    ) -> None:
        """
        Args:
            api_key: Google API key; without it only unauthenticated calls work
            session: Optional HTTP session; a new requests.Session() if None
            timeout: Seconds before a single HTTP request is abandoned
        """
        self._api_key = api_key
        self._session = session if session is not None else requests.Session()
        self._timeout = timeout

    def has_api_key(self) -> bool:
        return bool(self._api_key)

    def search_volumes(
        self,
        query: str,
        max_results: int = 10,
        authenticated: bool = True,
        language: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Search volumes, following pagination until max_results are collected.

        Args:
            query: Search query (e.g., "intitle:dune")
            max_results: Maximum number of volumes to return
            authenticated: Send the API key with the request
            language: Optional language restriction (ISO 639-1 code)

        Returns:
            Raw volume JSON objects

        Raises:
            ValueError: If query is blank, or authenticated without an API key
            RateLimitFailure: On HTTP 429
            TransientProviderFailure: On network errors, timeouts or 5xx
            ProviderFailure: On any other HTTP error
        """
        if not query or not query.strip():
            raise ValueError("query cannot be empty")
        if authenticated and not self._api_key:
            raise ValueError("authenticated search requires an API key")

        volumes: List[Dict[str, Any]] = []
        start_index = 0
        while len(volumes) < max_results:
            page_size = min(self.PAGE_SIZE, max_results - len(volumes))
            params: Dict[str, Any] = {
                "q": query.strip(),
                "startIndex": start_index,
                "maxResults": page_size,
            }
            if language:
                params["langRestrict"] = language

            data = self._get(self.BASE_URL, params, authenticated) or {}
            items = data.get("items") or []
            volumes.extend(items)

            total_items = data.get("totalItems") or 0
            start_index += len(items)
            if len(items) < page_size or start_index >= total_items:
                break

        logger.debug(
            "Google Books returned %d volumes for '%s' (authenticated=%s)",
            len(volumes),
            query,
            authenticated,
        )
        return volumes[:max_results]

    def fetch_volume(self, volume_id: str, authenticated: bool = True) -> Optional[Dict[str, Any]]:
        """
        Fetch one volume by its Google volume id.

        Returns:
            Raw volume JSON, or None if the volume does not exist
        """
        if not volume_id or not volume_id.strip():
            return None
        authenticated = authenticated and self.has_api_key()
        return self._get(f"{self.BASE_URL}/{volume_id.strip()}", {}, authenticated)

    # =========================================================================
    # Private helper methods
    # =========================================================================

    def _get(self, url: str, params: Dict[str, Any], authenticated: bool) -> Optional[Dict[str, Any]]:
        if authenticated:
            params = dict(params, key=self._api_key)

        try:
            response = self._session.get(url, params=params, timeout=self._timeout)
        except requests.exceptions.Timeout as e:
            raise TransientProviderFailure(
                f"Google Books API timed out after {self._timeout}s", SOURCE_GOOGLE_BOOKS
            ) from e
        except requests.exceptions.RequestException as e:
            raise TransientProviderFailure(
                f"Google Books API request failed: {e}", SOURCE_GOOGLE_BOOKS
            ) from e

        status = response.status_code
        if status == 404:
            return None
        if status == 429:
            raise RateLimitFailure("Google Books API rate limit exceeded (HTTP 429)", SOURCE_GOOGLE_BOOKS)
        if status >= 500:
            raise TransientProviderFailure(f"Google Books API returned HTTP {status}", SOURCE_GOOGLE_BOOKS)
        if status >= 400:
            raise ProviderFailure(f"Google Books API returned HTTP {status}", SOURCE_GOOGLE_BOOKS)

        try:
            return response.json()
        except ValueError as e:
            raise TransientProviderFailure(
                f"Google Books API returned invalid JSON: {e}", SOURCE_GOOGLE_BOOKS
            ) from e
