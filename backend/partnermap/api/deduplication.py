"""Deduplication API routes: analysis and operator decisions."""

from fastapi import APIRouter, Body

from partnermap.api.errors import http_error
from partnermap.errors import PartnerMapError
from partnermap.models import (
    AnalyzeDeduplicationRequest,
    MatchResult,
    ProcessDecisionsRequest,
    ProcessDecisionsResponse,
)
from partnermap.services.decision_processor import decision_processor
from partnermap.services.dedup_analyzer import analyze_batch

router = APIRouter()


@router.post(
    "/batches/{batch_id}/deduplication",
    response_model=list[MatchResult],
    operation_id="analyzeDeduplication",
)
async def analyze_deduplication(
    batch_id: str,
    request: AnalyzeDeduplicationRequest | None = Body(None),
) -> list[MatchResult]:
    """Find registry records and earlier rows that each staged record resembles."""
    config = request.config if request else None
    try:
        return await analyze_batch(batch_id, config)
    except PartnerMapError as e:
        raise http_error(e) from e


@router.post(
    "/deduplication/decisions",
    response_model=ProcessDecisionsResponse,
    operation_id="processDeduplicationDecisions",
)
async def process_deduplication_decisions(
    request: ProcessDecisionsRequest,
) -> ProcessDecisionsResponse:
    """Apply decisions one by one; failures are listed, never fatal to the rest."""
    try:
        return await decision_processor.process(request.decisions)
    except PartnerMapError as e:
        raise http_error(e) from e
