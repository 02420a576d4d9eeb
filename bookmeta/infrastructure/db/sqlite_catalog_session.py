"""
SQLite implementation of the CatalogSession port.

A session wraps one connection with an open transaction. Every column
merge follows "keep the existing value unless the incoming one is
present": blank text is bound as NULL and the update is COALESCE(new, old).
"""

import re
import sqlite3
from contextlib import contextmanager
from datetime import datetime, UTC
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence
from uuid import UUID

from bookmeta.domain.entities import WorkCluster
from bookmeta.domain.ports import CatalogSession
from bookmeta.domain.utils import categories as category_utils
from bookmeta.domain.utils import covers
from bookmeta.domain.utils import isbn as isbn_utils
from bookmeta.domain.utils.covers import CoverQualitySnapshot
from bookmeta.domain.utils.dimensions import ParsedDimensions
from bookmeta.domain.utils.urls import normalize_to_https
from bookmeta.domain.value_objects import ExternalIdentifiers, NormalizedAggregate

_AUTHOR_KEY = re.compile(r"[\W_]+", re.UNICODE)

_EXTERNAL_TEXT_COLUMNS = (
    "provider_isbn10",
    "provider_isbn13",
    "info_link",
    "preview_link",
    "web_reader_link",
    "purchase_link",
    "canonical_volume_link",
    "currency_code",
    "canonical_id",
)

_EXTERNAL_VALUE_COLUMNS = (
    "average_rating",
    "ratings_count",
    "review_count",
    "is_ebook",
    "pdf_available",
    "epub_available",
    "embeddable",
    "public_domain",
    "list_price",
    "retail_price",
)

_LINK_COLUMNS = {
    "info_link",
    "preview_link",
    "web_reader_link",
    "purchase_link",
    "canonical_volume_link",
}


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def normalize_author_name(name: str) -> str:
    """Key used to match author spellings such as 'J.K. Rowling' / 'J. K. Rowling'."""
    return _AUTHOR_KEY.sub(" ", name.lower()).strip()


class SqliteCatalogSession(CatalogSession):
    """Unit of work over one SQLite connection inside BEGIN IMMEDIATE."""

    def __init__(self, conn: sqlite3.Connection, lock_acquired: bool = False) -> None:
        self._conn = conn
        self.lock_acquired = lock_acquired

    def _scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        row = self._conn.execute(sql, params).fetchone()
        return None if row is None else row[0]

    def _uuid_or_none(self, sql: str, params: Sequence[Any]) -> Optional[UUID]:
        value = self._scalar(sql, params)
        return UUID(value) if value else None

    # =========================================================================
    # Identity lookups
    # =========================================================================

    def find_book_id_by_external_id(self, source: str, external_id: str) -> Optional[UUID]:
        return self._uuid_or_none(
            "SELECT book_id FROM book_external_ids WHERE source = ? AND external_id = ?",
            (source, external_id),
        )

    def find_book_id_by_isbn13(self, isbn13: str) -> Optional[UUID]:
        return self._uuid_or_none("SELECT id FROM books WHERE isbn13 = ?", (isbn13,))

    def find_book_id_by_isbn10(self, isbn10: str) -> Optional[UUID]:
        return self._uuid_or_none("SELECT id FROM books WHERE isbn10 = ?", (isbn10,))

    def find_primary_book_id_by_isbn_prefix(self, prefix: str) -> Optional[UUID]:
        return self._uuid_or_none(
            """
            SELECT m.book_id
            FROM work_clusters c
            JOIN work_cluster_members m ON m.cluster_id = c.id
            WHERE c.cluster_method = 'ISBN_PREFIX'
              AND c.cluster_key = ?
              AND m.is_primary = 1
            """,
            (prefix,),
        )

    # =========================================================================
    # Canonical row
    # =========================================================================

    @contextmanager
    def savepoint(self, name: str) -> Iterator[None]:
        self._conn.execute(f"SAVEPOINT {name}")
        try:
            yield
        except BaseException:
            self._conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            self._conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        self._conn.execute(f"RELEASE SAVEPOINT {name}")

    def get_book_slug(self, book_id: UUID) -> Optional[str]:
        return self._scalar("SELECT slug FROM books WHERE id = ?", (str(book_id),))

    def assign_slug(self, book_id: UUID, slug: str) -> None:
        self._conn.execute(
            "UPDATE books SET slug = ? WHERE id = ? AND slug IS NULL",
            (slug, str(book_id)),
        )

    def slug_exists(self, slug: str) -> bool:
        return self._scalar("SELECT 1 FROM books WHERE slug = ?", (slug,)) is not None

    def _book_params(self, book_id: UUID, aggregate: NormalizedAggregate) -> Dict[str, Any]:
        return {
            "id": str(book_id),
            "title": _blank_to_none(aggregate.title),
            "subtitle": _blank_to_none(aggregate.subtitle),
            "description": _blank_to_none(aggregate.description),
            "isbn13": aggregate.isbn13,
            "isbn10": aggregate.isbn10,
            "language": _blank_to_none(aggregate.language),
            "publisher": _blank_to_none(aggregate.publisher),
            "page_count": aggregate.page_count,
            "published_date": (
                aggregate.published_date.isoformat() if aggregate.published_date else None
            ),
            "now": _now(),
        }

    def insert_book(self, book_id: UUID, slug: Optional[str], aggregate: NormalizedAggregate) -> None:
        params = self._book_params(book_id, aggregate)
        params["slug"] = slug
        self._conn.execute(
            """
            INSERT INTO books
            (id, slug, title, subtitle, description, isbn13, isbn10, language,
             publisher, page_count, published_date, created_at, updated_at)
            VALUES
            (:id, :slug, :title, :subtitle, :description, :isbn13, :isbn10, :language,
             :publisher, :page_count, :published_date, :now, :now)
            """,
            params,
        )

    def merge_book(self, book_id: UUID, aggregate: NormalizedAggregate) -> None:
        # ISBNs are identity: fill them when missing, never replace them,
        # and never claim one already owned by another book.
        self._conn.execute(
            """
            UPDATE books SET
                title = COALESCE(:title, title),
                subtitle = COALESCE(:subtitle, subtitle),
                description = COALESCE(:description, description),
                isbn13 = CASE
                    WHEN isbn13 IS NULL AND :isbn13 IS NOT NULL AND NOT EXISTS (
                        SELECT 1 FROM books other WHERE other.isbn13 = :isbn13 AND other.id != :id
                    ) THEN :isbn13
                    ELSE isbn13 END,
                isbn10 = CASE
                    WHEN isbn10 IS NULL AND :isbn10 IS NOT NULL AND NOT EXISTS (
                        SELECT 1 FROM books other WHERE other.isbn10 = :isbn10 AND other.id != :id
                    ) THEN :isbn10
                    ELSE isbn10 END,
                language = COALESCE(:language, language),
                publisher = COALESCE(:publisher, publisher),
                page_count = COALESCE(:page_count, page_count),
                published_date = COALESCE(:published_date, published_date),
                updated_at = :now
            WHERE id = :id
            """,
            self._book_params(book_id, aggregate),
        )

    # =========================================================================
    # Related attributes
    # =========================================================================

    def link_authors(self, book_id: UUID, authors: Sequence[str]) -> None:
        seen: set[str] = set()
        position = 0
        for name in authors:
            display = " ".join(name.split())
            key = normalize_author_name(display)
            if not key or key in seen:
                continue
            seen.add(key)

            self._conn.execute(
                """
                INSERT INTO authors (name, normalized_name, created_at)
                VALUES (?, ?, ?)
                ON CONFLICT(normalized_name) DO NOTHING
                """,
                (display, key, _now()),
            )
            author_id = self._scalar("SELECT id FROM authors WHERE normalized_name = ?", (key,))
            self._conn.execute(
                """
                INSERT INTO book_authors (book_id, author_id, position)
                VALUES (?, ?, ?)
                ON CONFLICT(book_id, author_id) DO UPDATE SET position = excluded.position
                """,
                (str(book_id), author_id, position),
            )
            position += 1

    def upsert_external_identifiers(self, book_id: UUID, identifiers: ExternalIdentifiers) -> None:
        values: Dict[str, Any] = {
            "book_id": str(book_id),
            "source": identifiers.source,
            "external_id": str(identifiers.external_id).strip(),
            "now": _now(),
        }
        for column in _EXTERNAL_TEXT_COLUMNS:
            value = _blank_to_none(getattr(identifiers, column))
            if column in _LINK_COLUMNS:
                value = normalize_to_https(value)
            values[column] = value
        values["provider_isbn10"] = isbn_utils.sanitize(values["provider_isbn10"])
        values["provider_isbn13"] = isbn_utils.sanitize(values["provider_isbn13"])
        for column in _EXTERNAL_VALUE_COLUMNS:
            value = getattr(identifiers, column)
            values[column] = int(value) if isinstance(value, bool) else value

        columns = ("book_id", "source", "external_id") + _EXTERNAL_TEXT_COLUMNS + _EXTERNAL_VALUE_COLUMNS
        assignments = ",\n                ".join(
            f"{column} = COALESCE(excluded.{column}, {column})"
            for column in _EXTERNAL_TEXT_COLUMNS + _EXTERNAL_VALUE_COLUMNS
        )
        self._conn.execute(
            f"""
            INSERT INTO book_external_ids
            ({", ".join(columns)}, created_at, updated_at)
            VALUES
            ({", ".join(":" + column for column in columns)}, :now, :now)
            ON CONFLICT(book_id, source) DO UPDATE SET
                {assignments},
                updated_at = excluded.updated_at
            """,
            values,
        )

    def get_cover_quality(self, book_id: UUID) -> Optional[CoverQualitySnapshot]:
        row = self._conn.execute(
            """
            SELECT url, cdn_path, width, height, is_high_resolution
            FROM book_image_links
            WHERE book_id = ?
            ORDER BY COALESCE(is_high_resolution, 0) DESC,
                     COALESCE(width * height, 0) DESC,
                     created_at DESC
            LIMIT 1
            """,
            (str(book_id),),
        ).fetchone()
        if row is None:
            return None
        return CoverQualitySnapshot.of(
            row["url"],
            row["width"],
            row["height"],
            bool(row["is_high_resolution"]),
            cdn_path=row["cdn_path"],
        )

    def upsert_image_links(self, book_id: UUID, source: str, image_links: Mapping[str, str]) -> None:
        now = _now()
        for image_type, url in image_links.items():
            estimate = covers.estimate_from_type(image_type)
            self._conn.execute(
                """
                INSERT INTO book_image_links
                (book_id, image_type, url, source, width, height, is_high_resolution,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(book_id, image_type) DO UPDATE SET
                    url = excluded.url,
                    source = excluded.source,
                    width = COALESCE(excluded.width, width),
                    height = COALESCE(excluded.height, height),
                    is_high_resolution = excluded.is_high_resolution,
                    updated_at = excluded.updated_at
                """,
                (
                    str(book_id),
                    image_type,
                    url,
                    source,
                    estimate.width,
                    estimate.height,
                    int(estimate.high_resolution),
                    now,
                    now,
                ),
            )

    def link_categories(self, book_id: UUID, categories: Sequence[str]) -> None:
        for display_name in categories:
            normalized = category_utils.normalize_for_database(display_name)
            if not normalized:
                continue
            self._conn.execute(
                """
                INSERT INTO categories (display_name, normalized_name, created_at)
                VALUES (?, ?, ?)
                ON CONFLICT(normalized_name) DO NOTHING
                """,
                (display_name, normalized, _now()),
            )
            category_id = self._scalar(
                "SELECT id FROM categories WHERE normalized_name = ?", (normalized,)
            )
            self._conn.execute(
                """
                INSERT INTO book_categories (book_id, category_id)
                VALUES (?, ?)
                ON CONFLICT(book_id, category_id) DO NOTHING
                """,
                (str(book_id), category_id),
            )

    def upsert_dimensions(self, book_id: UUID, dimensions: ParsedDimensions) -> None:
        self._conn.execute(
            """
            INSERT INTO book_dimensions (book_id, height_cm, width_cm, thickness_cm, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(book_id) DO UPDATE SET
                height_cm = COALESCE(excluded.height_cm, height_cm),
                width_cm = COALESCE(excluded.width_cm, width_cm),
                thickness_cm = COALESCE(excluded.thickness_cm, thickness_cm),
                updated_at = excluded.updated_at
            """,
            (str(book_id), dimensions.height, dimensions.width, dimensions.thickness, _now()),
        )

    def delete_dimensions(self, book_id: UUID) -> None:
        self._conn.execute("DELETE FROM book_dimensions WHERE book_id = ?", (str(book_id),))

    # =========================================================================
    # Clustering
    # =========================================================================

    def get_book_isbn13(self, book_id: UUID) -> Optional[str]:
        return self._scalar("SELECT isbn13 FROM books WHERE id = ?", (str(book_id),))

    _CANDIDATE_SELECT = """
        SELECT b.id AS book_id,
               b.title AS title,
               b.published_date AS published_date,
               MAX(COALESCE(il.is_high_resolution, 0)) AS has_high_res,
               MAX(COALESCE(il.width * il.height, 0)) AS cover_area
        FROM books b
        LEFT JOIN book_image_links il ON il.book_id = b.id
    """

    def find_edition_candidates_by_isbn_prefix(self, prefix: str) -> List[Dict[str, Any]]:
        rows = self._conn.execute(
            self._CANDIDATE_SELECT
            + """
            WHERE substr(b.isbn13, 1, ?) = ? AND length(b.isbn13) = 13
            GROUP BY b.id
            """,
            (len(prefix), prefix),
        ).fetchall()
        return [dict(row) for row in rows]

    def get_canonical_ids(self, book_id: UUID) -> List[str]:
        rows = self._conn.execute(
            """
            SELECT DISTINCT canonical_id FROM book_external_ids
            WHERE book_id = ? AND canonical_id IS NOT NULL
            """,
            (str(book_id),),
        ).fetchall()
        return [row["canonical_id"] for row in rows]

    def find_edition_candidates_by_canonical_id(self, canonical_id: str) -> List[Dict[str, Any]]:
        rows = self._conn.execute(
            self._CANDIDATE_SELECT
            + """
            WHERE b.id IN (
                SELECT book_id FROM book_external_ids WHERE canonical_id = ?
            )
            GROUP BY b.id
            """,
            (canonical_id,),
        ).fetchall()
        return [dict(row) for row in rows]

    def save_work_cluster(self, cluster: WorkCluster) -> int:
        now = _now()
        self._conn.execute(
            """
            INSERT INTO work_clusters
            (cluster_key, cluster_method, canonical_title, member_count, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(cluster_method, cluster_key) DO UPDATE SET
                canonical_title = excluded.canonical_title,
                member_count = excluded.member_count,
                updated_at = excluded.updated_at
            """,
            (
                cluster.cluster_key,
                cluster.cluster_method,
                cluster.canonical_title,
                cluster.member_count,
                now,
                now,
            ),
        )
        cluster_id = self._scalar(
            "SELECT id FROM work_clusters WHERE cluster_method = ? AND cluster_key = ?",
            (cluster.cluster_method, cluster.cluster_key),
        )

        self._conn.execute("DELETE FROM work_cluster_members WHERE cluster_id = ?", (cluster_id,))
        self._conn.executemany(
            """
            INSERT INTO work_cluster_members
            (cluster_id, book_id, is_primary, confidence, join_reason, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    cluster_id,
                    str(member.book_id),
                    int(member.is_primary),
                    member.confidence,
                    member.join_reason,
                    now,
                )
                for member in cluster.members
            ],
        )
        cluster.id = cluster_id
        return cluster_id
