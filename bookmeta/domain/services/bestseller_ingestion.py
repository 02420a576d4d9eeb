"""
Bestseller list ingestion.

Fetches one bestseller list, maps every entry to a NormalizedAggregate and
persists it through the upsert engine, reporting the outcome as an
IngestionSummary.
"""

import logging
from datetime import date
from typing import List, Optional

from bookmeta.domain.errors import PersistenceFailure, SystemicStoreFailure, ValidationError
from bookmeta.domain.ports import BestsellerProvider, PayloadMapper
from bookmeta.domain.services.upsert_engine import UpsertEngine
from bookmeta.domain.value_objects import SOURCE_NYT, IngestionSummary

logger = logging.getLogger(__name__)


class BestsellerIngestionService:
    """
    Orchestrates the bestseller ingestion pipeline.

    Item failures (validation, persistence) are counted and the batch goes
    on. A systemic store failure aborts the rest of the batch so a broken
    store is not hammered once per entry.
    """

    def __init__(
        self,
        provider: BestsellerProvider,
        mapper: PayloadMapper,
        upsert_engine: UpsertEngine,
        source: str = SOURCE_NYT,
    ) -> None:
        """
        Args:
            provider: Bestseller list API client
            mapper: Maps one list entry to a NormalizedAggregate
            upsert_engine: Write path for mapped entries
            source: Source name reported in the summary
        """
        self._provider = provider
        self._mapper = mapper
        self._upsert_engine = upsert_engine
        self._source = source

    def ingest_list(self, list_name: str, published_date: Optional[date] = None) -> IngestionSummary:
        """
        Fetch, map and persist one bestseller list.

        Args:
            list_name: List code (e.g., 'hardcover-fiction')
            published_date: List edition; the current one if None

        Returns:
            IngestionSummary with per-entry outcomes

        Raises:
            ValueError: If list_name is blank
            RuntimeError: If the list could not be fetched
        """
        if not list_name or not list_name.strip():
            raise ValueError("list_name cannot be empty")

        logger.info(f"Starting bestseller ingestion: list='{list_name}'")

        try:
            entries = self._provider.fetch_list(list_name, published_date)
        except Exception as e:
            raise RuntimeError(f"Failed to fetch bestseller list '{list_name}': {e}") from e

        if not entries:
            logger.warning(f"Bestseller list '{list_name}' returned no entries")
            return IngestionSummary(
                n_fetched=0, n_inserted=0, n_updated=0, n_errors=0, source=self._source, list_name=list_name
            )

        n_inserted = 0
        n_updated = 0
        n_errors = 0
        error_messages: List[str] = []

        for index, entry in enumerate(entries):
            try:
                aggregate = self._mapper.map(entry)
                if aggregate is None:
                    raise ValidationError("entry could not be mapped to a book")
                result = self._upsert_engine.upsert(aggregate)
            except SystemicStoreFailure as e:
                n_unprocessed = len(entries) - index
                error_messages.append(f"Aborted at entry {index}: {e}")
                logger.error(
                    f"Systemic store failure; aborting '{list_name}' with {n_unprocessed} entries left: {e}"
                )
                return IngestionSummary(
                    n_fetched=len(entries),
                    n_inserted=n_inserted,
                    n_updated=n_updated,
                    n_errors=n_errors,
                    source=self._source,
                    list_name=list_name,
                    n_unprocessed=n_unprocessed,
                    aborted=True,
                    errors=error_messages,
                )
            except (ValidationError, PersistenceFailure) as e:
                n_errors += 1
                error_msg = f"Failed to persist entry {index} ({_describe(entry)}): {e}"
                logger.warning(error_msg)
                error_messages.append(error_msg)
                continue
            except Exception as e:
                n_errors += 1
                error_msg = f"Failed to map entry {index} ({_describe(entry)}): {e}"
                logger.error(error_msg, exc_info=True)
                error_messages.append(error_msg)
                continue

            if result.is_new:
                n_inserted += 1
            else:
                n_updated += 1

        logger.info(
            f"Bestseller ingestion complete: {n_inserted} inserted, {n_updated} updated, {n_errors} errors"
        )

        return IngestionSummary(
            n_fetched=len(entries),
            n_inserted=n_inserted,
            n_updated=n_updated,
            n_errors=n_errors,
            source=self._source,
            list_name=list_name,
            errors=error_messages,
        )


def _describe(entry) -> str:
    title = entry.get("title") if hasattr(entry, "get") else None
    isbn = entry.get("primary_isbn13") if hasattr(entry, "get") else None
    return f"title={title!r}, isbn13={isbn}"
