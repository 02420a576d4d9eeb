"""
Error taxonomy for the consolidation pipeline.

Each error subclasses the builtin the rest of the codebase already raises
for that concern (ValueError for bad input, RuntimeError for infrastructure
failures), so callers that only know the builtins keep working.
"""

from typing import Optional


class BookMetaError(Exception):
    """Root of all domain errors."""


class ValidationError(BookMetaError, ValueError):
    """Required input is missing or malformed. Nothing has been written."""


class ProviderFailure(BookMetaError, RuntimeError):
    """An upstream provider call failed."""

    def __init__(self, message: str, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider


class TransientProviderFailure(ProviderFailure):
    """Network error, 5xx or timeout. Safe to retry later."""


class RateLimitFailure(ProviderFailure):
    """HTTP 429. Opens the matching circuit rail until the daily reset."""


class StoreFailure(BookMetaError, RuntimeError):
    """A catalog store operation failed."""


class SystemicStoreFailure(StoreFailure):
    """The store itself is unavailable; abort the whole batch."""


class PersistenceFailure(StoreFailure):
    """A single write failed; unrelated items may still proceed."""


_SYSTEMIC_MARKERS = (
    "connection refused",
    "unable to open database",
    "authentication failed",
    "too many connections",
    "disk i/o error",
    "database disk image is malformed",
    "readonly database",
)


def classify_store_error(exc: BaseException) -> StoreFailure:
    """
    Map a low level store exception onto the store failure taxonomy.

    Returns the exception unchanged when it already is a StoreFailure.
    """
    if isinstance(exc, StoreFailure):
        return exc

    message = str(exc).lower()
    if any(marker in message for marker in _SYSTEMIC_MARKERS):
        return SystemicStoreFailure(f"Catalog store unavailable: {exc}")

    return PersistenceFailure(f"Catalog write failed: {exc}")
