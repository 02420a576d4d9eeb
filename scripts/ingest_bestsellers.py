#!/usr/bin/env python3
"""
Bestseller Ingestion Script.

Fetches one New York Times bestseller list and upserts every entry into
the canonical catalog.

Usage:
    python -m scripts.ingest_bestsellers --list hardcover-fiction
    python -m scripts.ingest_bestsellers --list hardcover-fiction --date 2024-06-02
"""

import argparse
import logging
import sys
from datetime import date
from typing import Optional

from bookmeta.config import Settings, configure_logging
from bookmeta.domain.services import BestsellerIngestionService, UpsertEngine
from bookmeta.infrastructure.db.sqlite_catalog_repository import SqliteCatalogRepository
from bookmeta.infrastructure.external.nyt_bestsellers_client import NytBestsellerClient, NytBestsellerMapper

logger = logging.getLogger(__name__)


def main(list_name: str, published_date: Optional[date] = None) -> int:
    """
    Main entry point for the ingestion script.

    Args:
        list_name: NYT list code
        published_date: List edition; the current one if None

    Returns:
        Process exit code
    """
    settings = Settings.from_env()
    configure_logging(settings.log_level)

    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    store = SqliteCatalogRepository(settings.db_path)
    service = BestsellerIngestionService(
        provider=NytBestsellerClient(api_key=settings.nyt_api_key),
        mapper=NytBestsellerMapper(),
        upsert_engine=UpsertEngine(store),
    )

    try:
        summary = service.ingest_list(list_name, published_date)
    except (ValueError, RuntimeError) as e:
        logger.error(f"Ingestion failed: {e}")
        return 1

    logger.info(
        f"'{list_name}': fetched={summary.n_fetched} inserted={summary.n_inserted} "
        f"updated={summary.n_updated} errors={summary.n_errors} catalog size={store.count()}"
    )
    return 2 if summary.aborted else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Ingest a NYT bestseller list")
    parser.add_argument(
        "--list", "-l",
        dest="list_name",
        type=str,
        required=True,
        help="List code (e.g., 'hardcover-fiction')",
    )
    parser.add_argument(
        "--date", "-d",
        type=date.fromisoformat,
        default=None,
        help="List edition date, YYYY-MM-DD (default: current)",
    )

    args = parser.parse_args()
    sys.exit(main(args.list_name, args.date))
