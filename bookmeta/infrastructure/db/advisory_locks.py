"""
Keyed advisory locks for the SQLite catalog store.

SQLite has no advisory locking primitive, so the store keeps one
process-wide lock per integer key. Unrelated keys never contend; locks
for keys nobody holds or waits on are discarded.
"""

import logging
import threading
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class _KeyedLock:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.refs = 0


class AdvisoryLockRegistry:
    """Process-wide mutual exclusion keyed by an arbitrary integer."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[int, _KeyedLock] = {}

    def acquire(self, key: int, timeout: Optional[float] = None) -> bool:
        """
        Block until the lock for ``key`` is held or ``timeout`` elapses.

        Returns:
            True if the lock was acquired, False on timeout
        """
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyedLock()
            entry.refs += 1

        acquired = entry.lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            self._drop_ref(key, entry)
            logger.debug("Advisory lock %s timed out after %ss", key, timeout)
        return acquired

    def release(self, key: int) -> None:
        with self._guard:
            entry = self._locks.get(key)
        if entry is None:
            raise RuntimeError(f"Advisory lock {key} is not held")
        entry.lock.release()
        self._drop_ref(key, entry)

    def held_keys(self) -> int:
        """Number of keys currently held or waited on."""
        with self._guard:
            return len(self._locks)

    def _drop_ref(self, key: int, entry: _KeyedLock) -> None:
        with self._guard:
            entry.refs -= 1
            if entry.refs == 0 and self._locks.get(key) is entry:
                del self._locks[key]
