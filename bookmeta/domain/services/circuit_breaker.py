"""
Dual-rail circuit breaker for the quota-limited volumes API.

Authenticated and unauthenticated calls are tracked on independent
rails. A single rate-limit failure opens a rail, because upstream quota
exhaustion is provider-wide for the rest of the quota window. An open
rail closes again on the first check made on a later calendar day in the
provider's quota-reset time zone.
"""

import logging
import threading
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Callable, Dict, Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

QUOTA_RESET_TIME_ZONE = "America/Los_Angeles"
RATE_LIMIT_THRESHOLD = 1


class Rail(str, Enum):
    AUTHENTICATED = "AUTHENTICATED"
    UNAUTHENTICATED = "UNAUTHENTICATED"


class CircuitStatus(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"


@dataclass(frozen=True)
class CircuitState:
    """Immutable snapshot of one rail; transitions swap the whole object."""

    status: CircuitStatus = CircuitStatus.CLOSED
    failure_count: int = 0
    last_failure_at: Optional[datetime] = None
    opened_on: Optional[date] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "state": self.status.value,
            "failure_count": self.failure_count,
            "last_failure_at": self.last_failure_at.isoformat() if self.last_failure_at else None,
            "opened_on": self.opened_on.isoformat() if self.opened_on else None,
        }


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _RailCell:
    """Holds one rail's state; writes are compare-and-set under a small lock."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = CircuitState()

    def get(self) -> CircuitState:
        return self._state

    def compare_and_set(self, expected: CircuitState, new: CircuitState) -> bool:
        with self._lock:
            if self._state is not expected:
                return False
            self._state = new
            return True


class CircuitBreaker:
    """
    Allow/deny decisions for the two volumes API rails.

    Owned as an injected service instance for the process lifetime. The
    only resets are the automatic daily one and ``reset()``.

    Usage:
        breaker = CircuitBreaker()
        if breaker.allowed(Rail.AUTHENTICATED):
            try:
                ...
                breaker.record_success(Rail.AUTHENTICATED)
            except RateLimitFailure:
                breaker.record_failure(Rail.AUTHENTICATED, is_rate_limit=True)
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = _utc_now,
        reset_time_zone: str = QUOTA_RESET_TIME_ZONE,
    ) -> None:
        """
        Args:
            clock: Returns the current aware datetime; injectable for tests
            reset_time_zone: IANA zone whose calendar day bounds the quota window
        """
        self._clock = clock
        self._zone = ZoneInfo(reset_time_zone)
        self._rails: Dict[Rail, _RailCell] = {rail: _RailCell() for rail in Rail}

    def _today(self) -> date:
        return self._clock().astimezone(self._zone).date()

    def allowed(self, rail: Rail) -> bool:
        """True if calls on ``rail`` may be attempted now."""
        cell = self._rails[rail]
        while True:
            state = cell.get()
            if state.status is CircuitStatus.CLOSED:
                return True

            today = self._today()
            if state.opened_on is None or today <= state.opened_on:
                return False

            if cell.compare_and_set(state, CircuitState()):
                logger.info(
                    "Circuit %s auto-reset on %s (opened %s)", rail.value, today, state.opened_on
                )
                return True

    def record_failure(self, rail: Rail, is_rate_limit: bool) -> None:
        """
        Record a failed call. Only rate-limit failures can open the rail.
        """
        if not is_rate_limit:
            logger.debug("Non rate-limit failure on %s rail; circuit unchanged", rail.value)
            return

        cell = self._rails[rail]
        while True:
            state = cell.get()
            now = self._clock()
            failures = state.failure_count + 1
            if state.status is CircuitStatus.OPEN:
                new_state = replace(state, failure_count=failures, last_failure_at=now)
            elif failures >= RATE_LIMIT_THRESHOLD:
                new_state = CircuitState(
                    status=CircuitStatus.OPEN,
                    failure_count=failures,
                    last_failure_at=now,
                    opened_on=now.astimezone(self._zone).date(),
                )
            else:
                new_state = replace(state, failure_count=failures, last_failure_at=now)

            if cell.compare_and_set(state, new_state):
                break

        if state.status is CircuitStatus.CLOSED and new_state.status is CircuitStatus.OPEN:
            logger.error(
                "Rate limit hit on %s rail; circuit OPEN until next %s day",
                rail.value,
                self._zone.key,
            )

    def record_success(self, rail: Rail) -> None:
        """Clear the failure count of a closed rail."""
        cell = self._rails[rail]
        while True:
            state = cell.get()
            if state.status is CircuitStatus.OPEN or state.failure_count == 0:
                return
            if cell.compare_and_set(state, replace(state, failure_count=0)):
                return

    def reset(self, rail: Optional[Rail] = None) -> None:
        """Manually close one rail, or both when ``rail`` is None."""
        rails = [rail] if rail is not None else list(Rail)
        for target in rails:
            cell = self._rails[target]
            while not cell.compare_and_set(cell.get(), CircuitState()):
                pass
            logger.info("Circuit %s manually reset", target.value)

    def state(self, rail: Rail) -> CircuitState:
        return self._rails[rail].get()

    def status(self) -> Dict[str, Dict[str, object]]:
        """Snapshot of both rails for monitoring endpoints."""
        return {rail.value: self._rails[rail].get().to_dict() for rail in Rail}
