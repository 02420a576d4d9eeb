"""
Tests for the backfill priority queue and its call guards.
"""

import threading

import pytest

from bookmeta.backfill.guards import Bulkhead, BulkheadFull, RateLimiter, RequestNotPermitted
from bookmeta.backfill.queue import BackfillQueue
from bookmeta.domain.errors import ValidationError


# =============================================================================
# BackfillQueue
# =============================================================================


class TestBackfillQueue:
    def test_lower_priority_number_taken_first(self):
        queue = BackfillQueue()
        queue.enqueue("GOOGLE_BOOKS", "low", priority=9)
        queue.enqueue("GOOGLE_BOOKS", "high", priority=1)
        queue.enqueue("GOOGLE_BOOKS", "medium", priority=5)

        taken = [queue.take(timeout=0).source_id for _ in range(3)]

        assert taken == ["high", "medium", "low"]

    def test_fifo_within_same_priority(self):
        queue = BackfillQueue()
        for source_id in ("a", "b", "c"):
            queue.enqueue("GOOGLE_BOOKS", source_id, priority=3)

        assert [queue.take(timeout=0).source_id for _ in range(3)] == ["a", "b", "c"]

    def test_duplicate_in_flight_is_rejected(self):
        queue = BackfillQueue()

        assert queue.enqueue("GOOGLE_BOOKS", "abc") is True
        assert queue.enqueue("GOOGLE_BOOKS", "abc", priority=1) is False
        assert queue.size() == 1

    def test_duplicate_allowed_after_completion(self):
        queue = BackfillQueue()
        queue.enqueue("GOOGLE_BOOKS", "abc")
        task = queue.take(timeout=0)

        assert queue.enqueue("GOOGLE_BOOKS", "abc") is False
        queue.mark_completed(task)
        assert queue.enqueue("GOOGLE_BOOKS", "abc") is True

    def test_same_id_different_source_is_distinct(self):
        queue = BackfillQueue()

        assert queue.enqueue("GOOGLE_BOOKS", "abc")
        assert queue.enqueue("OPEN_LIBRARY", "abc")
        assert queue.dedupe_size() == 2

    def test_priority_clamped(self):
        queue = BackfillQueue()
        queue.enqueue("GOOGLE_BOOKS", "a", priority=0)
        queue.enqueue("GOOGLE_BOOKS", "b", priority=42)

        priorities = sorted(queue.take(timeout=0).priority for _ in range(2))

        assert priorities == [1, 10]

    def test_blank_ids_rejected(self):
        with pytest.raises(ValidationError):
            BackfillQueue().enqueue("GOOGLE_BOOKS", "  ")

    def test_take_times_out_with_none(self):
        assert BackfillQueue().take(timeout=0.01) is None

    def test_take_blocks_until_work_arrives(self):
        queue = BackfillQueue()
        threading.Timer(0.05, queue.enqueue, args=("GOOGLE_BOOKS", "late")).start()

        task = queue.take(timeout=2)

        assert task.source_id == "late"

    def test_wake_unblocks_waiting_consumer(self):
        queue = BackfillQueue()
        threading.Timer(0.05, queue.wake).start()

        assert queue.take() is None
        assert queue.size() == 0

    def test_wakeup_not_counted_as_work(self):
        queue = BackfillQueue()
        queue.enqueue("GOOGLE_BOOKS", "abc")
        queue.wake()

        assert queue.size() == 1
        assert queue.take(timeout=0) is None
        assert queue.take(timeout=0).source_id == "abc"

    def test_retry_keeps_task_in_flight(self):
        queue = BackfillQueue()
        queue.enqueue("GOOGLE_BOOKS", "abc")
        task = queue.take(timeout=0)

        queue.retry(task.with_incremented_attempts())

        assert queue.enqueue("GOOGLE_BOOKS", "abc") is False
        assert queue.take(timeout=0).attempts == 1


# =============================================================================
# Guards
# =============================================================================


class FakeMonotonic:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestRateLimiter:
    def test_burst_then_refill(self):
        clock = FakeMonotonic()
        limiter = RateLimiter(rate_per_second=2, burst=2, clock=clock)

        assert limiter.try_acquire()
        assert limiter.try_acquire()
        assert not limiter.try_acquire()

        clock.now += 0.5
        assert limiter.try_acquire()
        assert not limiter.try_acquire()

    def test_bucket_never_exceeds_capacity(self):
        clock = FakeMonotonic()
        limiter = RateLimiter(rate_per_second=1, clock=clock)
        limiter.try_acquire()

        clock.now += 60

        assert limiter.try_acquire()
        assert not limiter.try_acquire()

    def test_acquire_without_wait_rejects(self):
        limiter = RateLimiter(rate_per_second=1, clock=FakeMonotonic())
        limiter.acquire()

        with pytest.raises(RequestNotPermitted):
            limiter.acquire(timeout=0)

    def test_rate_must_be_positive(self):
        with pytest.raises(ValueError):
            RateLimiter(rate_per_second=0)


class TestBulkhead:
    def test_rejects_when_full(self):
        bulkhead = Bulkhead(max_concurrent=1)

        with bulkhead.call():
            with pytest.raises(BulkheadFull):
                with bulkhead.call(timeout=0):
                    pass

    def test_slot_released_after_block(self):
        bulkhead = Bulkhead(max_concurrent=1)

        with bulkhead.call():
            pass
        with bulkhead.call(timeout=0):
            pass

    def test_slot_released_on_error(self):
        bulkhead = Bulkhead(max_concurrent=1)

        with pytest.raises(KeyError):
            with bulkhead.call():
                raise KeyError("x")

        with bulkhead.call(timeout=0):
            pass

    def test_max_concurrent_must_be_positive(self):
        with pytest.raises(ValueError):
            Bulkhead(max_concurrent=0)
