"""
Identity resolution for incoming book payloads.

Decides, before anything is written, which canonical book (if any) an
incoming NormalizedAggregate describes.
"""

import hashlib
import logging
from typing import Dict, Optional
from uuid import UUID

from bookmeta.domain.ports import CatalogSession
from bookmeta.domain.utils import isbn as isbn_utils
from bookmeta.domain.value_objects import NormalizedAggregate

logger = logging.getLogger(__name__)

STRATEGY_EXTERNAL_ID = "external_id"
STRATEGY_ISBN13 = "isbn13"
STRATEGY_ISBN10 = "isbn10"
STRATEGY_CLUSTER = "isbn_prefix_cluster"


def lock_key_string(aggregate: NormalizedAggregate) -> Optional[str]:
    """
    The strongest identifier of a payload as a lock key.

    Priority: ISBN-13, then ISBN-10, then (source, external id). Title-only
    payloads have no key.
    """
    if aggregate.isbn13:
        return f"ISBN13:{aggregate.isbn13}"
    if aggregate.isbn10:
        return f"ISBN10:{aggregate.isbn10}"
    if aggregate.identifiers is not None:
        return f"{aggregate.identifiers.source}:{aggregate.identifiers.external_id}"
    return None


def hash_lock_key(key: str) -> int:
    """Deterministic positive 63-bit integer for an advisory lock key."""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") & 0x7FFF_FFFF_FFFF_FFFF


class IdentityResolver:
    """
    Resolves an aggregate to an existing canonical book id.

    Strategies run in a fixed order and the first match wins:

    1. exact (source, external id)
    2. sanitized ISBN-13
    3. sanitized ISBN-10
    4. primary member of the edition cluster sharing the ISBN-13 prefix

    Conflicting matches (for example an external id pointing at one book
    and the ISBN at another) are not reconciled; ``detect_conflicts`` makes
    them visible.
    """

    def lock_key(self, aggregate: NormalizedAggregate) -> Optional[int]:
        key = lock_key_string(aggregate)
        return hash_lock_key(key) if key else None

    def resolve(self, session: CatalogSession, aggregate: NormalizedAggregate) -> Optional[UUID]:
        for strategy, book_id in self._matches(session, aggregate):
            logger.debug("Resolved %s via %s -> %s", aggregate.describe(), strategy, book_id)
            return book_id
        return None

    def detect_conflicts(self, session: CatalogSession, aggregate: NormalizedAggregate) -> Dict[str, UUID]:
        """
        Run every strategy and report what each one matched.

        More than one distinct id in the result means the payload is
        ambiguous; ``resolve`` still picks the first.
        """
        return dict(self._matches(session, aggregate))

    def _matches(self, session: CatalogSession, aggregate: NormalizedAggregate):
        identifiers = aggregate.identifiers
        if identifiers is not None:
            book_id = session.find_book_id_by_external_id(
                identifiers.source, str(identifiers.external_id).strip()
            )
            if book_id is not None:
                yield STRATEGY_EXTERNAL_ID, book_id

        if aggregate.isbn13:
            book_id = session.find_book_id_by_isbn13(aggregate.isbn13)
            if book_id is not None:
                yield STRATEGY_ISBN13, book_id

        if aggregate.isbn10:
            book_id = session.find_book_id_by_isbn10(aggregate.isbn10)
            if book_id is not None:
                yield STRATEGY_ISBN10, book_id

        prefix = isbn_utils.work_prefix(aggregate.isbn13)
        if prefix:
            book_id = session.find_primary_book_id_by_isbn_prefix(prefix)
            if book_id is not None:
                yield STRATEGY_CLUSTER, book_id
