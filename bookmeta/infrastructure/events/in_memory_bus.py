"""
In-process event buses.

Real-time delivery to browsers is outside this service; these buses fan
events out to in-process subscribers and keep a bounded history so the
API and tests can inspect what was published.
"""

import logging
import threading
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Union

from bookmeta.domain.ports import ChangeNotifier, SearchEventPublisher
from bookmeta.domain.value_objects import BookChangeEvent, SearchProgress, SearchResultsBatch

logger = logging.getLogger(__name__)

DEFAULT_HISTORY = 500

SearchEvent = Union[SearchProgress, SearchResultsBatch]


class InMemoryChangeNotifier(ChangeNotifier):
    """Delivers book change events to registered callbacks."""

    def __init__(self, history_size: int = DEFAULT_HISTORY) -> None:
        self._subscribers: List[Callable[[BookChangeEvent], None]] = []
        self._history: Deque[BookChangeEvent] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[BookChangeEvent], None]) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def publish(self, event: BookChangeEvent) -> None:
        with self._lock:
            self._history.append(event)
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning("Change subscriber failed for book %s: %s", event.book_id, e)

    def recent(self, limit: Optional[int] = None) -> List[BookChangeEvent]:
        with self._lock:
            events = list(self._history)
        return events[-limit:] if limit else events


class InMemorySearchEventBus(SearchEventPublisher):
    """
    Routes search progress and result batches by query hash.

    Subscribers register for one query hash, the same key the web layer
    uses to match events to the search a client started.
    """

    def __init__(self, history_size: int = DEFAULT_HISTORY) -> None:
        self._subscribers: Dict[str, List[Callable[[SearchEvent], None]]] = {}
        self._history: Deque[SearchEvent] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def subscribe(self, query_hash: str, callback: Callable[[SearchEvent], None]) -> None:
        with self._lock:
            self._subscribers.setdefault(query_hash, []).append(callback)

    def unsubscribe(self, query_hash: str) -> None:
        with self._lock:
            self._subscribers.pop(query_hash, None)

    def publish_progress(self, progress: SearchProgress) -> None:
        logger.debug("Search %s: %s %s", progress.query_hash, progress.status.value, progress.message)
        self._dispatch(progress.query_hash, progress)

    def publish_batch(self, batch: SearchResultsBatch) -> None:
        logger.debug(
            "Search %s: batch of %d from %s (total=%d, final=%s)",
            batch.query_hash,
            len(batch.results),
            batch.source,
            batch.running_total,
            batch.is_final,
        )
        self._dispatch(batch.query_hash, batch)

    def history(self, query_hash: Optional[str] = None) -> List[SearchEvent]:
        with self._lock:
            events = list(self._history)
        if query_hash is None:
            return events
        return [event for event in events if event.query_hash == query_hash]

    def _dispatch(self, query_hash: str, event: SearchEvent) -> None:
        with self._lock:
            self._history.append(event)
            subscribers = list(self._subscribers.get(query_hash, ()))

        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                logger.warning("Search subscriber for %s failed: %s", query_hash, e)
