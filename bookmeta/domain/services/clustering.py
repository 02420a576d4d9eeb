"""
Application-level edition clustering.

Groups canonical books that are editions of the same work, either
because their ISBN-13s share the 11-digit publisher/title prefix or
because a provider reports the same canonical work id for them. Runs
inside the upsert transaction right after a new book is inserted.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from bookmeta.domain.entities import WorkCluster, WorkClusterMember
from bookmeta.domain.ports import CatalogSession
from bookmeta.domain.utils import isbn as isbn_utils

logger = logging.getLogger(__name__)

METHOD_ISBN_PREFIX = "ISBN_PREFIX"
METHOD_CANONICAL_ID = "CANONICAL_ID"

UNTITLED = "Untitled Book"
MIN_CLUSTER_SIZE = 2


def _primary_sort_key(candidate: Dict[str, Any]):
    """
    Best edition first: high-res cover, bigger cover, newest, then title.
    """
    published = candidate.get("published_date")
    if isinstance(published, str):
        try:
            published = date.fromisoformat(published)
        except ValueError:
            published = None
    # Missing dates sort after every real date
    published_ordinal = -published.toordinal() if published else float("inf")
    return (
        -int(bool(candidate.get("has_high_res"))),
        -int(candidate.get("cover_area") or 0),
        published_ordinal,
        (candidate.get("title") or "").lower(),
    )


class EditionClusterer:
    """Builds and refreshes work clusters for a newly inserted book."""

    def cluster_by_isbn_prefix(self, session: CatalogSession, book_id: UUID) -> Optional[WorkCluster]:
        prefix = isbn_utils.work_prefix(session.get_book_isbn13(book_id))
        if prefix is None:
            return None

        candidates = session.find_edition_candidates_by_isbn_prefix(prefix)
        return self._save(session, prefix, METHOD_ISBN_PREFIX, candidates)

    def cluster_by_canonical_id(self, session: CatalogSession, book_id: UUID) -> List[WorkCluster]:
        clusters = []
        for canonical_id in session.get_canonical_ids(book_id):
            candidates = session.find_edition_candidates_by_canonical_id(canonical_id)
            cluster = self._save(session, canonical_id, METHOD_CANONICAL_ID, candidates)
            if cluster is not None:
                clusters.append(cluster)
        return clusters

    def _save(
        self,
        session: CatalogSession,
        cluster_key: str,
        method: str,
        candidates: List[Dict[str, Any]],
    ) -> Optional[WorkCluster]:
        if len(candidates) < MIN_CLUSTER_SIZE:
            return None

        ordered = sorted(candidates, key=_primary_sort_key)
        primary = ordered[0]
        cluster = WorkCluster(
            cluster_key=cluster_key,
            cluster_method=method,
            canonical_title=primary.get("title") or UNTITLED,
            members=[
                WorkClusterMember(
                    book_id=UUID(str(candidate["book_id"])),
                    is_primary=index == 0,
                    confidence=1.0 if method == METHOD_CANONICAL_ID else 0.9,
                    join_reason=method,
                )
                for index, candidate in enumerate(ordered)
            ],
        )
        session.save_work_cluster(cluster)
        logger.info(
            "Clustered %d editions under %s %s (primary=%s)",
            cluster.member_count,
            method,
            cluster_key,
            primary["book_id"],
        )
        return cluster
