"""
In-memory, deduplicating priority queue of backfill tasks.

Tasks are re-fetchable and idempotent, so the queue is deliberately not
durable. A (source, source_id) pair stays "in flight" from enqueue until
mark_completed, and a second enqueue for it in that window is a no-op.
"""

import itertools
import logging
import queue
import threading
from typing import Optional, Tuple

from bookmeta.domain.value_objects import BackfillTask

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 5
MIN_PRIORITY = 1
MAX_PRIORITY = 10

# Sorts ahead of every real task
_WAKE_PRIORITY = MIN_PRIORITY - 1


class BackfillQueue:
    """
    Thread-safe priority queue (lower number = more urgent, FIFO within a
    priority) with an in-flight dedupe set.

    A single consumer blocks in ``take()`` until work exists.
    """

    def __init__(self) -> None:
        self._queue: "queue.PriorityQueue[Tuple[int, int, Optional[BackfillTask]]]" = queue.PriorityQueue()
        self._sequence = itertools.count()
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()
        self._pending_wakeups = 0

    def enqueue(self, source: str, source_id: str, priority: int = DEFAULT_PRIORITY) -> bool:
        """
        Add a task unless the same (source, source_id) is already in flight.

        Priority is clamped into 1..10.

        Returns:
            True if a new task was queued, False if it was a duplicate
        """
        priority = max(MIN_PRIORITY, min(MAX_PRIORITY, int(priority)))
        task = BackfillTask(source=source, source_id=source_id, priority=priority)

        with self._in_flight_lock:
            if task.dedupe_key in self._in_flight:
                logger.debug("Backfill task %s already pending; skipping", task.dedupe_key)
                return False
            self._in_flight.add(task.dedupe_key)

        self._put(task)
        logger.debug("Enqueued backfill task %s (priority=%d)", task.dedupe_key, priority)
        return True

    def take(self, timeout: Optional[float] = None) -> Optional[BackfillTask]:
        """
        Block until a task is available.

        Args:
            timeout: Seconds to wait; None waits indefinitely

        Returns:
            The most urgent task, or None if the timeout elapsed or the
            consumer was woken
        """
        try:
            _, _, task = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if task is None:
            with self._in_flight_lock:
                self._pending_wakeups -= 1
        return task

    def wake(self) -> None:
        """Unblock a consumer waiting in take(); it receives None."""
        with self._in_flight_lock:
            self._pending_wakeups += 1
        self._queue.put((_WAKE_PRIORITY, next(self._sequence), None))

    def retry(self, task: BackfillTask) -> None:
        """Requeue a task; its dedupe marker stays in place."""
        with self._in_flight_lock:
            self._in_flight.add(task.dedupe_key)
        self._put(task)

    def mark_completed(self, task: BackfillTask) -> None:
        """Release the dedupe marker so the pair can be enqueued again."""
        with self._in_flight_lock:
            self._in_flight.discard(task.dedupe_key)

    def size(self) -> int:
        with self._in_flight_lock:
            return self._queue.qsize() - self._pending_wakeups

    def dedupe_size(self) -> int:
        with self._in_flight_lock:
            return len(self._in_flight)

    def _put(self, task: BackfillTask) -> None:
        self._queue.put((task.priority, next(self._sequence), task))
