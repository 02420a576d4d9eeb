"""
Asynchronous backfill of thin catalog records.

Search and ingestion enqueue provider ids; a single worker thread
re-fetches them and merges the result through the upsert engine.
"""

from .coordinator import BackfillCoordinator
from .queue import BackfillQueue

__all__ = ["BackfillCoordinator", "BackfillQueue"]
