"""
BM25-based relevance ranking of local search candidates.

The store returns the books matching the query words; this adapter
orders them by BM25 score over each book's searchable text, after lifting
exact ISBN hits and title phrase hits to the top.
"""

import logging
import re
from typing import List, Sequence

import numpy as np
from rank_bm25 import BM25Okapi

from bookmeta.domain.entities import CanonicalBook
from bookmeta.domain.ports import RelevanceRanker
from bookmeta.domain.utils import isbn as isbn_utils
from bookmeta.domain.value_objects import QUERY_STOPWORDS

logger = logging.getLogger(__name__)

_PUNCTUATION = re.compile(r"[^\w\s]")


class BM25RelevanceRanker(RelevanceRanker):
    """
    Ranks a candidate list with an index built per query.

    Candidate sets are small (a few hundred books at most), so building a
    BM25Okapi index on the fly is cheaper than keeping a global index in
    sync with the catalog.

    Ordering keys, most significant first:
    1. The query is the book's ISBN-13 or ISBN-10
    2. The normalized query appears in the title
    3. BM25 score
    Ties keep the store's order. Books with no ISBN hit, no title hit and
    no significant query word in their text are dropped.
    """

    def rank(self, query: str, books: Sequence[CanonicalBook], limit: int) -> List[CanonicalBook]:
        """
        Order books by relevance to query.

        Args:
            query: Raw search query
            books: Candidates from the catalog store
            limit: Maximum number of books to return

        Returns:
            At most ``limit`` books, most relevant first

        Raises:
            RuntimeError: If scoring fails
        """
        if not books or limit <= 0:
            return []

        tokenized_query = self._tokenize(query)
        if not tokenized_query:
            return list(books[:limit])

        try:
            corpus = [self._tokenize(book.get_searchable_text()) or [""] for book in books]
            scores = np.asarray(BM25Okapi(corpus).get_scores(tokenized_query), dtype=float)
        except Exception as e:
            raise RuntimeError(f"BM25 ranking failed: {e}") from e

        query_isbn = isbn_utils.sanitize(query)
        phrase = " ".join(tokenized_query)
        significant = set(tokenized_query) - QUERY_STOPWORDS or set(tokenized_query)
        isbn_hits = np.array(
            [bool(query_isbn) and query_isbn in (book.isbn13, book.isbn10) for book in books], dtype=float
        )
        title_hits = np.array(
            [phrase in " ".join(self._tokenize(book.title)) for book in books], dtype=float
        )
        term_hits = np.array([bool(significant.intersection(doc)) for doc in corpus], dtype=bool)

        # Candidates sharing no significant word with the query are not results
        relevant = (isbn_hits > 0) | (title_hits > 0) | term_hits
        if not relevant.any():
            return []

        # lexsort is stable and sorts by the last key first
        order = np.lexsort((-scores, -title_hits, -isbn_hits))
        ranked = [books[i] for i in order if relevant[i]][:limit]
        logger.debug("Ranked %d of %d candidates for '%s'", len(ranked), len(books), query)
        return ranked

    @staticmethod
    def _tokenize(text: str) -> List[str]:
        """
        Lowercase, strip punctuation, split on whitespace.

        Args:
            text: Text to tokenize

        Returns:
            List of lowercase tokens
        """
        return _PUNCTUATION.sub(" ", (text or "").lower()).split()
