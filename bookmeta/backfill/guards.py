"""
Call guards for backfill fetches: a token-bucket rate limiter and a
bulkhead bounding the number of concurrent provider calls.

Both reject instead of queueing; the coordinator puts rejected tasks
back on the backfill queue.
"""

import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Optional


class RequestNotPermitted(RuntimeError):
    """The rate limiter had no permit available within the wait time."""


class BulkheadFull(RuntimeError):
    """The bulkhead already runs its maximum number of concurrent calls."""


class RateLimiter:
    """
    Token bucket refilled at ``rate_per_second`` up to ``burst`` tokens.

    Args:
        rate_per_second: Sustained permits per second
        burst: Bucket capacity (defaults to one second worth of permits)
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        rate_per_second: float,
        burst: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if rate_per_second <= 0:
            raise ValueError(f"rate_per_second must be positive, got {rate_per_second}")
        self._rate = rate_per_second
        self._capacity = float(burst if burst is not None else max(1, int(rate_per_second)))
        self._tokens = self._capacity
        self._clock = clock
        self._updated = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._updated = now

    def try_acquire(self) -> bool:
        with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def acquire(self, timeout: float = 0.0) -> None:
        """
        Take one permit, waiting at most ``timeout`` seconds.

        Raises:
            RequestNotPermitted: If no permit became available in time
        """
        deadline = time.monotonic() + timeout
        while True:
            if self.try_acquire():
                return
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise RequestNotPermitted("Backfill rate limit exceeded")
            time.sleep(min(remaining, 1.0 / self._rate))


class Bulkhead:
    """Bounded concurrent-call count."""

    def __init__(self, max_concurrent: int) -> None:
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {max_concurrent}")
        self._max_concurrent = max_concurrent
        self._semaphore = threading.BoundedSemaphore(max_concurrent)

    @contextmanager
    def call(self, timeout: float = 0.0) -> Iterator[None]:
        """
        Hold one slot for the duration of the block.

        Raises:
            BulkheadFull: If no slot frees up within ``timeout`` seconds
        """
        if not self._semaphore.acquire(timeout=timeout):
            raise BulkheadFull(f"Bulkhead full ({self._max_concurrent} concurrent calls)")
        try:
            yield
        finally:
            self._semaphore.release()
