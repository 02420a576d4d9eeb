"""
Maps Google Books volume JSON onto NormalizedAggregate.

Reference: https://developers.google.com/books/docs/v1/reference/volumes
"""

import logging
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import parse_qs, urlparse

from bookmeta.domain.ports import PayloadMapper
from bookmeta.domain.utils import categories as category_utils
from bookmeta.domain.utils import isbn as isbn_utils
from bookmeta.domain.utils.urls import normalize_to_https
from bookmeta.domain.value_objects import (
    SOURCE_GOOGLE_BOOKS,
    Dimensions,
    ExternalIdentifiers,
    NormalizedAggregate,
)
from bookmeta.infrastructure.external.parsing import parse_published_date, text, to_bool, to_float, to_int

logger = logging.getLogger(__name__)

IMAGE_SIZE_KEYS = ("smallThumbnail", "thumbnail", "small", "medium", "large", "extraLarge")


class GoogleBooksMapper(PayloadMapper):
    """
    Translate one volume into a provider-agnostic payload.

    Volumes without an id or title are rejected (None). Everything else is
    optional and mapped when present.
    """

    def map(self, raw: Mapping[str, Any]) -> Optional[NormalizedAggregate]:
        if not raw or not isinstance(raw.get("volumeInfo"), Mapping):
            logger.warning("Invalid Google Books JSON: missing volumeInfo")
            return None

        volume_id = text(raw.get("id"))
        if volume_id is None:
            logger.warning("Google Books volume missing 'id' field")
            return None

        volume_info = raw["volumeInfo"]
        title = text(volume_info.get("title"))
        if title is None:
            logger.warning("Google Books volume %s missing title", volume_id)
            return None

        isbn13 = isbn_utils.sanitize_isbn13(self._isbn(volume_info, "ISBN_13"))
        isbn10 = isbn_utils.sanitize_isbn10(self._isbn(volume_info, "ISBN_10"))

        return NormalizedAggregate(
            title=title,
            subtitle=text(volume_info.get("subtitle")),
            description=text(volume_info.get("description")),
            isbn13=isbn13,
            isbn10=isbn10,
            language=text(volume_info.get("language")),
            publisher=text(volume_info.get("publisher")),
            page_count=self._page_count(volume_info),
            published_date=parse_published_date(volume_info.get("publishedDate")),
            authors=tuple(self._authors(volume_info)),
            categories=tuple(self._categories(volume_info)),
            dimensions=self._dimensions(volume_info),
            identifiers=self._identifiers(volume_id, raw, isbn10, isbn13),
        )

    # =========================================================================
    # Private helpers
    # =========================================================================

    @staticmethod
    def _isbn(volume_info: Mapping[str, Any], id_type: str) -> Optional[str]:
        for identifier in volume_info.get("industryIdentifiers") or []:
            if identifier.get("type") == id_type:
                value = text(identifier.get("identifier"))
                if value:
                    return value
        return None

    @staticmethod
    def _page_count(volume_info: Mapping[str, Any]) -> Optional[int]:
        page_count = to_int(volume_info.get("pageCount"))
        if page_count is None or page_count <= 0:
            return None
        return page_count

    @staticmethod
    def _authors(volume_info: Mapping[str, Any]) -> List[str]:
        authors = []
        for author in volume_info.get("authors") or []:
            name = text(author)
            if name:
                authors.append(" ".join(name.split()))
        return authors

    @staticmethod
    def _categories(volume_info: Mapping[str, Any]) -> List[str]:
        raw = [text(category) for category in volume_info.get("categories") or []]
        return category_utils.normalize_and_deduplicate([c for c in raw if c])

    @staticmethod
    def _dimensions(volume_info: Mapping[str, Any]) -> Optional[Dimensions]:
        node = volume_info.get("dimensions")
        if not isinstance(node, Mapping):
            return None
        dimensions = Dimensions(
            height=text(node.get("height")),
            width=text(node.get("width")),
            thickness=text(node.get("thickness")),
        )
        return None if dimensions.is_empty() else dimensions

    def _identifiers(
        self,
        volume_id: str,
        raw: Mapping[str, Any],
        isbn10: Optional[str],
        isbn13: Optional[str],
    ) -> ExternalIdentifiers:
        volume_info = raw["volumeInfo"]
        sale_info = raw.get("saleInfo") or {}
        access_info = raw.get("accessInfo") or {}

        rating = to_float(volume_info.get("averageRating"))
        if rating is not None and not 0 <= rating <= 5:
            rating = None

        list_price = sale_info.get("listPrice") or {}
        retail_price = sale_info.get("retailPrice") or {}

        return ExternalIdentifiers(
            source=SOURCE_GOOGLE_BOOKS,
            external_id=volume_id,
            provider_isbn10=isbn10,
            provider_isbn13=isbn13,
            info_link=text(volume_info.get("infoLink")),
            preview_link=text(volume_info.get("previewLink")),
            web_reader_link=text(access_info.get("webReaderLink")),
            purchase_link=text(sale_info.get("buyLink")),
            canonical_volume_link=text(volume_info.get("canonicalVolumeLink")),
            average_rating=rating,
            ratings_count=to_int(volume_info.get("ratingsCount")),
            is_ebook=to_bool(sale_info.get("isEbook")),
            pdf_available=to_bool((access_info.get("pdf") or {}).get("isAvailable")),
            epub_available=to_bool((access_info.get("epub") or {}).get("isAvailable")),
            embeddable=to_bool(access_info.get("embeddable")),
            public_domain=to_bool(access_info.get("publicDomain")),
            list_price=to_float(list_price.get("amount")),
            retail_price=to_float(retail_price.get("amount")),
            currency_code=text(list_price.get("currencyCode") or retail_price.get("currencyCode")),
            canonical_id=self._canonical_id(volume_info.get("canonicalVolumeLink")),
            image_links=self._image_links(volume_info),
        )

    @staticmethod
    def _canonical_id(link: Optional[str]) -> Optional[str]:
        """The ``id`` query parameter of canonicalVolumeLink."""
        if not link:
            return None
        values = parse_qs(urlparse(link).query).get("id")
        return values[0] if values else None

    @staticmethod
    def _image_links(volume_info: Mapping[str, Any]) -> Dict[str, str]:
        node = volume_info.get("imageLinks")
        if not isinstance(node, Mapping):
            return {}

        links = {}
        for key in IMAGE_SIZE_KEYS:
            url = normalize_to_https(text(node.get(key)))
            if url:
                # Page-curl overlay is decoration added by the API
                links[key] = url.replace("&edge=curl", "")
        return links
