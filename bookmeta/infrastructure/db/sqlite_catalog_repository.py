"""
SQLite implementation of the CatalogStore port.

This adapter owns the canonical schema, opens units of work for the
upsert engine and serves the read-side projections (by id, by slug,
search candidates).
"""

import logging
import re
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence
from uuid import UUID

from bookmeta.domain.entities import CanonicalBook, WorkCluster, WorkClusterMember
from bookmeta.domain.errors import classify_store_error
from bookmeta.domain.ports import CatalogStore
from bookmeta.domain.utils import covers
from bookmeta.domain.utils import isbn as isbn_utils
from bookmeta.domain.value_objects import QUERY_STOPWORDS
from bookmeta.infrastructure.db.advisory_locks import AdvisoryLockRegistry
from bookmeta.infrastructure.db.sqlite_catalog_session import SqliteCatalogSession

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"\w+", re.UNICODE)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS books (
    id TEXT PRIMARY KEY,
    slug TEXT UNIQUE,
    title TEXT NOT NULL,
    subtitle TEXT,
    description TEXT,
    isbn13 TEXT UNIQUE,
    isbn10 TEXT UNIQUE,
    language TEXT,
    publisher TEXT,
    page_count INTEGER,
    published_date TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS authors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    normalized_name TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS book_authors (
    book_id TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    author_id INTEGER NOT NULL REFERENCES authors(id) ON DELETE CASCADE,
    position INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (book_id, author_id)
);

CREATE TABLE IF NOT EXISTS book_external_ids (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    book_id TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    source TEXT NOT NULL,
    external_id TEXT NOT NULL,
    provider_isbn10 TEXT,
    provider_isbn13 TEXT,
    info_link TEXT,
    preview_link TEXT,
    web_reader_link TEXT,
    purchase_link TEXT,
    canonical_volume_link TEXT,
    average_rating REAL,
    ratings_count INTEGER,
    review_count INTEGER,
    is_ebook INTEGER,
    pdf_available INTEGER,
    epub_available INTEGER,
    embeddable INTEGER,
    public_domain INTEGER,
    list_price REAL,
    retail_price REAL,
    currency_code TEXT,
    canonical_id TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (source, external_id),
    UNIQUE (book_id, source)
);

CREATE INDEX IF NOT EXISTS idx_external_ids_canonical ON book_external_ids(canonical_id);

CREATE TABLE IF NOT EXISTS book_image_links (
    book_id TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    image_type TEXT NOT NULL,
    url TEXT NOT NULL,
    source TEXT,
    width INTEGER,
    height INTEGER,
    is_high_resolution INTEGER NOT NULL DEFAULT 0,
    cdn_path TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (book_id, image_type)
);

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    display_name TEXT NOT NULL,
    normalized_name TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS book_categories (
    book_id TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    category_id INTEGER NOT NULL REFERENCES categories(id) ON DELETE CASCADE,
    PRIMARY KEY (book_id, category_id)
);

CREATE TABLE IF NOT EXISTS book_dimensions (
    book_id TEXT PRIMARY KEY REFERENCES books(id) ON DELETE CASCADE,
    height_cm REAL,
    width_cm REAL,
    thickness_cm REAL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS work_clusters (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cluster_key TEXT NOT NULL,
    cluster_method TEXT NOT NULL,
    canonical_title TEXT NOT NULL,
    member_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (cluster_method, cluster_key)
);

CREATE TABLE IF NOT EXISTS work_cluster_members (
    cluster_id INTEGER NOT NULL REFERENCES work_clusters(id) ON DELETE CASCADE,
    book_id TEXT NOT NULL REFERENCES books(id) ON DELETE CASCADE,
    is_primary INTEGER NOT NULL DEFAULT 0,
    confidence REAL NOT NULL DEFAULT 1.0,
    join_reason TEXT,
    created_at TEXT NOT NULL,
    PRIMARY KEY (cluster_id, book_id)
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_one_primary_per_cluster
    ON work_cluster_members(cluster_id) WHERE is_primary = 1;
"""


class SqliteCatalogRepository(CatalogStore):
    """
    Canonical store on a SQLite file.

    Each unit of work uses its own connection and runs inside
    BEGIN IMMEDIATE, so writers are serialized by SQLite itself; the
    advisory lock additionally scopes the whole resolve-then-write
    sequence for one logical book.
    """

    def __init__(
        self,
        db_path: Path,
        lock_registry: Optional[AdvisoryLockRegistry] = None,
        lock_timeout_seconds: float = 10.0,
        busy_timeout_seconds: float = 30.0,
    ) -> None:
        """
        Initialize the repository with a database path.

        Args:
            db_path: SQLite database file (parent directories are created)
            lock_registry: Advisory locks; a private registry by default
            lock_timeout_seconds: How long to wait for an advisory lock
                before proceeding unlocked
            busy_timeout_seconds: SQLite busy timeout for competing writers
        """
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._locks = lock_registry or AdvisoryLockRegistry()
        self._lock_timeout = lock_timeout_seconds
        self._busy_timeout = busy_timeout_seconds
        self._init_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get an autocommit connection with row factory; transactions are explicit."""
        conn = sqlite3.connect(
            str(self._db_path),
            timeout=self._busy_timeout,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_schema(self) -> None:
        """Create the catalog tables if they don't exist."""
        conn = self._get_connection()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(_SCHEMA)
        finally:
            conn.close()

    # =========================================================================
    # Unit of work
    # =========================================================================

    def _acquire_advisory_lock(self, lock_key: int) -> bool:
        try:
            acquired = self._locks.acquire(lock_key, timeout=self._lock_timeout)
        except Exception as e:
            logger.warning(
                "Advisory lock %s acquisition failed (%s); proceeding without lock",
                lock_key,
                e,
            )
            return False

        if not acquired:
            logger.warning(
                "Advisory lock %s not acquired within %.1fs; proceeding without lock",
                lock_key,
                self._lock_timeout,
            )
        return acquired

    @contextmanager
    def unit_of_work(self, lock_key: Optional[int] = None) -> Iterator[SqliteCatalogSession]:
        lock_acquired = False
        if lock_key is not None:
            lock_acquired = self._acquire_advisory_lock(lock_key)

        try:
            conn = None
            try:
                conn = self._get_connection()
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                if conn is not None:
                    conn.close()
                raise classify_store_error(e) from e

            try:
                yield SqliteCatalogSession(conn, lock_acquired=lock_acquired)
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise classify_store_error(e) from e
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
            finally:
                conn.close()
        finally:
            if lock_acquired:
                self._locks.release(lock_key)

    # =========================================================================
    # Read side
    # =========================================================================

    def count(self) -> int:
        """Get the total number of canonical books."""
        conn = self._get_connection()
        try:
            return conn.execute("SELECT COUNT(*) AS cnt FROM books").fetchone()["cnt"]
        finally:
            conn.close()

    def get_by_id(self, book_id: UUID) -> Optional[CanonicalBook]:
        """Retrieve a book by its canonical UUID."""
        return self._get_one("SELECT * FROM books WHERE id = ?", (str(book_id),))

    def get_by_slug(self, slug: str) -> Optional[CanonicalBook]:
        """Retrieve a book by its slug."""
        return self._get_one("SELECT * FROM books WHERE slug = ?", (slug,))

    def _get_one(self, sql: str, params: Sequence) -> Optional[CanonicalBook]:
        conn = self._get_connection()
        try:
            row = conn.execute(sql, params).fetchone()
            if row is None:
                return None
            return self._hydrate(conn, [row])[0]
        finally:
            conn.close()

    def find_candidates(
        self,
        query: str,
        limit: int = 200,
        language: Optional[str] = None,
    ) -> List[CanonicalBook]:
        """
        Books containing every significant query word as a whole word in
        title, subtitle, description or author names, plus exact ISBN hits.

        Stopwords are dropped unless the query has nothing else. SQL narrows
        the set with substring matches; whole-word matching runs on the
        hydrated books.
        """
        tokens = [token.lower() for token in _TOKEN.findall(query or "")]
        if not tokens:
            return []
        terms = [token for token in tokens if token not in QUERY_STOPWORDS] or tokens

        clauses = []
        params: List[object] = []
        for term in terms:
            like = f"%{term}%"
            clauses.append(
                """
                (lower(b.title) LIKE ? OR lower(COALESCE(b.subtitle, '')) LIKE ?
                 OR lower(COALESCE(b.description, '')) LIKE ?
                 OR b.isbn13 = ? OR b.isbn10 = ?
                 OR EXISTS (
                    SELECT 1 FROM book_authors ba JOIN authors a ON a.id = ba.author_id
                    WHERE ba.book_id = b.id AND a.normalized_name LIKE ?
                 ))
                """
            )
            params.extend([like, like, like, term, term.upper(), like])
        where = " AND ".join(clauses)

        query_isbn = isbn_utils.sanitize_isbn13(query) or isbn_utils.sanitize_isbn10(query)
        if query_isbn:
            where = f"({where}) OR b.isbn13 = ? OR b.isbn10 = ?"
            params.extend([query_isbn, query_isbn])

        sql = f"SELECT b.* FROM books b WHERE ({where})"
        if language:
            sql += " AND (b.language IS NULL OR b.language = ?)"
            params.append(language)
        sql += " ORDER BY b.created_at, b.id"

        conn = self._get_connection()
        try:
            rows = conn.execute(sql, params).fetchall()
            books = self._hydrate(conn, rows)
        finally:
            conn.close()

        matches = [book for book in books if _matches(book, terms, query_isbn)]
        return matches[:limit]

    def get_work_cluster(self, book_id: UUID) -> Optional[WorkCluster]:
        """The ISBN-prefix cluster a book belongs to, else its canonical-id cluster."""
        conn = self._get_connection()
        try:
            row = conn.execute(
                """
                SELECT c.* FROM work_clusters c
                JOIN work_cluster_members m ON m.cluster_id = c.id
                WHERE m.book_id = ?
                ORDER BY CASE c.cluster_method WHEN 'ISBN_PREFIX' THEN 0 ELSE 1 END
                LIMIT 1
                """,
                (str(book_id),),
            ).fetchone()
            if row is None:
                return None

            members = conn.execute(
                """
                SELECT book_id, is_primary, confidence, join_reason
                FROM work_cluster_members WHERE cluster_id = ?
                ORDER BY is_primary DESC, book_id
                """,
                (row["id"],),
            ).fetchall()
            return WorkCluster(
                id=row["id"],
                cluster_key=row["cluster_key"],
                cluster_method=row["cluster_method"],
                canonical_title=row["canonical_title"],
                members=[
                    WorkClusterMember(
                        book_id=UUID(member["book_id"]),
                        is_primary=bool(member["is_primary"]),
                        confidence=member["confidence"],
                        join_reason=member["join_reason"],
                    )
                    for member in members
                ],
            )
        finally:
            conn.close()

    def _hydrate(self, conn: sqlite3.Connection, rows: Sequence[sqlite3.Row]) -> List[CanonicalBook]:
        """Convert book rows to CanonicalBook projections with joined attributes."""
        if not rows:
            return []

        ids = [row["id"] for row in rows]
        placeholders = ", ".join("?" for _ in ids)

        authors: Dict[str, List[str]] = {}
        for row in conn.execute(
            f"""
            SELECT ba.book_id, a.name FROM book_authors ba
            JOIN authors a ON a.id = ba.author_id
            WHERE ba.book_id IN ({placeholders})
            ORDER BY ba.book_id, ba.position
            """,
            ids,
        ):
            authors.setdefault(row["book_id"], []).append(row["name"])

        categories: Dict[str, List[str]] = {}
        for row in conn.execute(
            f"""
            SELECT bc.book_id, c.display_name FROM book_categories bc
            JOIN categories c ON c.id = bc.category_id
            WHERE bc.book_id IN ({placeholders})
            ORDER BY c.id
            """,
            ids,
        ):
            categories.setdefault(row["book_id"], []).append(row["display_name"])

        image_links: Dict[str, Dict[str, str]] = {}
        for row in conn.execute(
            f"""
            SELECT book_id, image_type, COALESCE(cdn_path, url) AS url
            FROM book_image_links WHERE book_id IN ({placeholders})
            """,
            ids,
        ):
            image_links.setdefault(row["book_id"], {})[row["image_type"]] = row["url"]

        external_ids: Dict[str, Dict[str, str]] = {}
        for row in conn.execute(
            f"""
            SELECT book_id, source, external_id FROM book_external_ids
            WHERE book_id IN ({placeholders})
            """,
            ids,
        ):
            external_ids.setdefault(row["book_id"], {})[row["source"]] = row["external_id"]

        return [
            CanonicalBook(
                id=UUID(row["id"]),
                slug=row["slug"],
                title=row["title"],
                subtitle=row["subtitle"],
                description=row["description"],
                isbn13=row["isbn13"],
                isbn10=row["isbn10"],
                language=row["language"],
                publisher=row["publisher"],
                page_count=row["page_count"],
                published_date=_parse_date(row["published_date"]),
                authors=authors.get(row["id"], []),
                categories=categories.get(row["id"], []),
                cover_url=covers.select_preferred_image_url(image_links.get(row["id"])),
                external_ids=external_ids.get(row["id"], {}),
                created_at=datetime.fromisoformat(row["created_at"]),
                updated_at=datetime.fromisoformat(row["updated_at"]),
            )
            for row in rows
        ]


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _matches(book: CanonicalBook, terms: Sequence[str], query_isbn: Optional[str]) -> bool:
    if query_isbn and query_isbn in (book.isbn13, book.isbn10):
        return True
    words = set()
    for text in (book.title, book.subtitle, book.description, *book.authors):
        words.update(_TOKEN.findall((text or "").lower()))
    for identifier in (book.isbn13, book.isbn10):
        if identifier:
            words.add(identifier.lower())
    return all(term in words for term in terms)
