"""Batch API routes: CSV upload, staging records, status and rollback."""

import logging

from fastapi import APIRouter, HTTPException, Query

from partnermap.api.errors import http_error
from partnermap.db import batch_store
from partnermap.errors import NotFoundError, PartnerMapError
from partnermap.models import (
    Batch,
    CSVProcessingResult,
    ProcessBatchCSVRequest,
    RollbackResult,
    StagingRecord,
    StagingStatus,
    UpdateBatchStatusRequest,
)
from partnermap.services import batch_lifecycle, csv_ingest

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/batches",
    response_model=CSVProcessingResult,
    status_code=201,
    operation_id="processBatchCSV",
)
async def process_batch_csv(request: ProcessBatchCSVRequest) -> CSVProcessingResult:
    """Upload a CSV and stage its rows as a new batch.

    Invalid rows are reported in ``validation_errors``; the batch proceeds
    with the valid ones.
    """
    try:
        return await csv_ingest.process_batch_csv(request.csv_content, request.batch_name)
    except PartnerMapError as e:
        raise http_error(e) from e
    except Exception as e:
        logger.exception(f"Unexpected error during CSV processing: {e}")
        raise HTTPException(status_code=500, detail="Internal error processing CSV") from e


@router.get("/batches", response_model=list[Batch], operation_id="getBatchLogs")
async def get_batch_logs(limit: int = Query(100, ge=1, le=1000)) -> list[Batch]:
    """List batches, newest first."""
    try:
        return await batch_store.list_batches(limit=limit)
    except PartnerMapError as e:
        raise http_error(e) from e


@router.get("/batches/{batch_id}", response_model=Batch)
async def get_batch(batch_id: str) -> Batch:
    try:
        batch = await batch_store.get_batch(batch_id)
    except PartnerMapError as e:
        raise http_error(e) from e
    if batch is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    return batch


@router.get(
    "/batches/{batch_id}/staging",
    response_model=list[StagingRecord],
    operation_id="getStagingNodes",
)
async def get_staging_nodes(
    batch_id: str,
    status: StagingStatus | None = Query(None, description="Filter by decision status"),
) -> list[StagingRecord]:
    """List the staging records of a batch in upload order."""
    try:
        if await batch_store.get_batch(batch_id) is None:
            raise NotFoundError("Batch", batch_id)
        return await batch_store.list_staging_records(batch_id, status=status)
    except PartnerMapError as e:
        raise http_error(e) from e


@router.patch("/batches/{batch_id}", response_model=Batch, operation_id="updateBatchStatus")
async def update_batch_status(batch_id: str, request: UpdateBatchStatusRequest) -> Batch:
    """Move a batch to another status.

    Only transitions out of ``pending`` are accepted here; use the rollback
    route to roll back a processed batch.
    """
    try:
        return await batch_lifecycle.update_batch_status(
            batch_id, request.status, request.processing_notes
        )
    except PartnerMapError as e:
        raise http_error(e) from e


@router.post(
    "/batches/{batch_id}/rollback",
    response_model=RollbackResult,
    operation_id="rollbackBatch",
)
async def rollback_batch(batch_id: str) -> RollbackResult:
    """Delete everything a processed batch created."""
    try:
        return await batch_lifecycle.rollback_batch(batch_id)
    except PartnerMapError as e:
        raise http_error(e) from e
