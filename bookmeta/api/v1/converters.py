"""
Converters between domain entities/value objects and API schemas.

This module centralizes all conversion logic between the domain layer
and the API layer, maintaining clean separation of concerns.
"""

from dataclasses import asdict
from typing import Any, Dict

from bookmeta.api.v1 import schemas as api
from bookmeta.domain import entities as domain
from bookmeta.domain import value_objects as domain_vo


def domain_book_to_api(book: domain.CanonicalBook) -> api.Book:
    """
    Convert a domain CanonicalBook entity to an API Book model.

    Args:
        book: Domain CanonicalBook entity

    Returns:
        API Book model
    """
    return api.Book(**asdict(book))


def circuit_status_to_api(status: Dict[str, Dict[str, Any]]) -> api.CircuitStatusResponse:
    return api.CircuitStatusResponse(
        rails={rail: api.CircuitRailState(**state) for rail, state in status.items()}
    )


def ingestion_summary_to_api(summary: domain_vo.IngestionSummary) -> api.IngestionResponse:
    return api.IngestionResponse(
        source=summary.source,
        list_name=summary.list_name,
        n_fetched=summary.n_fetched,
        n_inserted=summary.n_inserted,
        n_updated=summary.n_updated,
        n_errors=summary.n_errors,
        n_unprocessed=summary.n_unprocessed,
        aborted=summary.aborted,
        errors=list(summary.errors),
    )
