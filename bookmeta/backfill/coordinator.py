"""
Backfill coordinator: drains the backfill queue on a dedicated worker
thread, re-fetching each provider record and persisting it through the
upsert engine.
"""

import logging
import threading
from typing import Any, Callable, Dict, Mapping, Optional

from bookmeta.backfill.guards import Bulkhead, BulkheadFull, RateLimiter, RequestNotPermitted
from bookmeta.backfill.queue import BackfillQueue, DEFAULT_PRIORITY
from bookmeta.domain.errors import RateLimitFailure
from bookmeta.domain.ports import PayloadMapper, VolumeProvider
from bookmeta.domain.services.circuit_breaker import CircuitBreaker, Rail
from bookmeta.domain.services.upsert_engine import UpsertEngine
from bookmeta.domain.value_objects import BackfillTask

logger = logging.getLogger(__name__)

MAX_RETRIES = 3

Fetcher = Callable[[str], Optional[Mapping[str, Any]]]


def volume_fetcher(provider: VolumeProvider, breaker: Optional[CircuitBreaker] = None) -> Fetcher:
    """
    Build a fetcher for volume ids that goes through the authenticated rail.

    Returns None (a task failure) when the rail is open.
    """

    def fetch(volume_id: str) -> Optional[Mapping[str, Any]]:
        if breaker is not None and not breaker.allowed(Rail.AUTHENTICATED):
            logger.debug("Authenticated rail open; cannot backfill volume %s", volume_id)
            return None
        try:
            payload = provider.fetch_volume(volume_id, authenticated=True)
        except RateLimitFailure:
            if breaker is not None:
                breaker.record_failure(Rail.AUTHENTICATED, is_rate_limit=True)
            raise
        if breaker is not None:
            breaker.record_success(Rail.AUTHENTICATED)
        return payload

    return fetch


class BackfillCoordinator:
    """
    Fetch, map and upsert queued backfill tasks with bounded retries.

    A failed task is retried until it has been attempted ``max_retries``
    times in total, then dropped with an ERROR log. Tasks rejected by the
    rate limiter or bulkhead go back on the queue without consuming an
    attempt.

    Usage:
        coordinator = BackfillCoordinator(queue, fetchers, mappers, engine)
        coordinator.start()
        coordinator.enqueue("GOOGLE_BOOKS", "zyTCAlFPjgYC", priority=3)
        ...
        coordinator.stop()
    """

    def __init__(
        self,
        queue: BackfillQueue,
        fetchers: Mapping[str, Fetcher],
        mappers: Mapping[str, PayloadMapper],
        upsert_engine: UpsertEngine,
        rate_limiter: Optional[RateLimiter] = None,
        bulkhead: Optional[Bulkhead] = None,
        max_retries: int = MAX_RETRIES,
        guard_wait_seconds: float = 1.0,
    ) -> None:
        """
        Args:
            queue: Source of backfill tasks
            fetchers: Source name -> callable returning the raw provider record
            mappers: Source name -> mapper producing a NormalizedAggregate
            upsert_engine: Write path for mapped aggregates
            rate_limiter: Optional token bucket guarding provider calls
            bulkhead: Optional concurrent-call bound guarding provider calls
            max_retries: Total attempts per task before it is dropped
            guard_wait_seconds: How long a guard may block before rejecting
        """
        self._queue = queue
        self._fetchers = dict(fetchers)
        self._mappers = dict(mappers)
        self._upsert_engine = upsert_engine
        self._rate_limiter = rate_limiter
        self._bulkhead = bulkhead
        self._max_retries = max_retries
        self._guard_wait = guard_wait_seconds

        self._running = threading.Event()
        self._worker: Optional[threading.Thread] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._running.set()
        self._worker = threading.Thread(target=self._run, name="backfill-worker", daemon=True)
        self._worker.start()
        logger.info("Backfill worker thread started")

    def stop(self, timeout: float = 5.0) -> None:
        self._running.clear()
        if self._worker is not None:
            self._queue.wake()
            self._worker.join(timeout)
            self._worker = None
        logger.info("Backfill worker thread stopped")

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def _run(self) -> None:
        while self._running.is_set():
            try:
                self.process_next()
            except Exception:
                logger.exception("Error in backfill worker loop")

    # =========================================================================
    # Public API
    # =========================================================================

    def enqueue(self, source: str, source_id: str, priority: int = DEFAULT_PRIORITY) -> bool:
        return self._queue.enqueue(source, source_id, priority)

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """
        Take one task from the queue and process it.

        Returns:
            False if no task arrived within ``timeout`` or the worker was woken
        """
        task = self._queue.take(timeout=timeout)
        if task is None:
            return False
        self.process_task(task)
        return True

    def process_task(self, task: BackfillTask) -> None:
        """Run one task behind the rate limiter and bulkhead."""
        try:
            if self._rate_limiter is not None:
                self._rate_limiter.acquire(timeout=self._guard_wait)
            if self._bulkhead is not None:
                with self._bulkhead.call(timeout=self._guard_wait):
                    self._process(task)
            else:
                self._process(task)
        except (RequestNotPermitted, BulkheadFull) as e:
            logger.warning(
                "Backfill task %s %s rejected by guard: %s", task.source, task.source_id, e
            )
            self._queue.retry(task)

    def queue_stats(self) -> Dict[str, Any]:
        return {
            "queue_size": self._queue.size(),
            "in_flight": self._queue.dedupe_size(),
            "running": self.running,
            "max_retries": self._max_retries,
        }

    # =========================================================================
    # Private helpers
    # =========================================================================

    def _process(self, task: BackfillTask) -> None:
        logger.info(
            "Processing backfill %s %s (attempt %d/%d)",
            task.source,
            task.source_id,
            task.attempts + 1,
            self._max_retries,
        )

        fetcher = self._fetchers.get(task.source)
        mapper = self._mappers.get(task.source)
        if fetcher is None or mapper is None:
            logger.warning("Unsupported backfill source: %s", task.source)
            self._handle_failure(task, f"unsupported source {task.source}")
            return

        try:
            raw = fetcher(task.source_id)
            if raw is None:
                self._handle_failure(task, "provider returned no record")
                return

            aggregate = mapper.map(raw)
            if aggregate is None:
                self._handle_failure(task, "mapper returned no aggregate")
                return

            result = self._upsert_engine.upsert(aggregate)
        except Exception as e:
            logger.error("Backfill error for %s %s: %s", task.source, task.source_id, e)
            self._handle_failure(task, str(e))
            return

        logger.info(
            "Backfill success: %s %s -> book_id=%s, slug=%s",
            task.source,
            task.source_id,
            result.book_id,
            result.slug,
        )
        self._queue.mark_completed(task)

    def _handle_failure(self, task: BackfillTask, reason: str) -> None:
        if task.attempts + 1 < self._max_retries:
            self._queue.retry(task.with_incremented_attempts())
            logger.warning(
                "Backfill task %s %s failed (will retry): %s", task.source, task.source_id, reason
            )
        else:
            self._queue.mark_completed(task)
            logger.error(
                "Backfill task %s %s exhausted retries: %s", task.source, task.source_id, reason
            )
