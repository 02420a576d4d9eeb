"""
Operational endpoints: circuit breaker state, backfill queue and
bestseller ingestion.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from bookmeta.api.v1 import schemas as api
from bookmeta.api.v1.converters import circuit_status_to_api, ingestion_summary_to_api
from bookmeta.api.v1.dependencies import (
    get_backfill_coordinator,
    get_bestseller_service,
    get_circuit_breaker,
)
from bookmeta.backfill.coordinator import BackfillCoordinator
from bookmeta.domain.errors import ValidationError
from bookmeta.domain.services import BestsellerIngestionService, CircuitBreaker, Rail

router = APIRouter(prefix="/admin")


@router.get("/circuit", response_model=api.CircuitStatusResponse)
def circuit_status(breaker: CircuitBreaker = Depends(get_circuit_breaker)) -> api.CircuitStatusResponse:
    return circuit_status_to_api(breaker.status())


@router.post("/circuit/reset", response_model=api.CircuitStatusResponse)
def reset_circuit(
    rail: Rail | None = None,
    breaker: CircuitBreaker = Depends(get_circuit_breaker),
) -> api.CircuitStatusResponse:
    """Close one rail (or both when ``rail`` is omitted)."""
    breaker.reset(rail)
    return circuit_status_to_api(breaker.status())


@router.get("/backfill", response_model=api.BackfillStats)
def backfill_stats(coordinator: BackfillCoordinator = Depends(get_backfill_coordinator)) -> api.BackfillStats:
    return api.BackfillStats(**coordinator.queue_stats())


@router.post("/backfill", response_model=api.BackfillEnqueueResponse, status_code=status.HTTP_202_ACCEPTED)
def enqueue_backfill(
    request: api.BackfillRequest,
    coordinator: BackfillCoordinator = Depends(get_backfill_coordinator),
) -> api.BackfillEnqueueResponse:
    try:
        enqueued = coordinator.enqueue(request.source.strip(), request.source_id.strip(), request.priority)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return api.BackfillEnqueueResponse(enqueued=enqueued)


@router.post("/bestsellers/{list_name}", response_model=api.IngestionResponse)
def ingest_bestsellers(
    list_name: str,
    service: BestsellerIngestionService = Depends(get_bestseller_service),
) -> api.IngestionResponse:
    """
    Ingest the current edition of a bestseller list.

    Raises:
        400: Blank list name
        502: The list could not be fetched (including a missing API key)
    """
    try:
        summary = service.ingest_list(list_name)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    return ingestion_summary_to_api(summary)
