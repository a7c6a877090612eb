"""Consolidation API routes: merge groups, alias suggestions and the audit trail."""

from typing import Literal

from fastapi import APIRouter, Query

from partnermap.api.errors import http_error
from partnermap.db.registry_store import registry_store
from partnermap.db.audit_store import list_audit
from partnermap.errors import PartnerMapError
from partnermap.models import (
    AliasSuggestion,
    ApplyMergeRequest,
    ApplyMergeResult,
    AuditEntry,
    MergeGroup,
    RecordType,
)
from partnermap.services.alias_suggestions import suggest_aliases
from partnermap.services.consolidation import apply_merge, find_merge_groups

router = APIRouter()


@router.get("/merge-groups", response_model=list[MergeGroup])
async def get_merge_groups(
    kind: Literal["entity", "node", "all"] = Query("all", description="Restrict to entities or nodes"),
) -> list[MergeGroup]:
    """Propose groups of near-duplicate registry records, highest confidence first."""
    try:
        return await find_merge_groups(None if kind == "all" else RecordType(kind))
    except PartnerMapError as e:
        raise http_error(e) from e


@router.post("/merge-groups/apply", response_model=ApplyMergeResult)
async def apply_merge_group(request: ApplyMergeRequest) -> ApplyMergeResult:
    """Fold candidate records into a master record."""
    try:
        return await apply_merge(request)
    except PartnerMapError as e:
        raise http_error(e) from e


@router.get("/alias-suggestions", response_model=list[AliasSuggestion])
async def get_alias_suggestions(
    limit: int = Query(20, ge=1, le=100),
) -> list[AliasSuggestion]:
    try:
        entities = await registry_store.list_entities()
        nodes = await registry_store.list_nodes()
    except PartnerMapError as e:
        raise http_error(e) from e
    return suggest_aliases(entities, nodes, limit=limit)


@router.get("/audit", response_model=list[AuditEntry])
async def get_audit_log(
    resource_id: str | None = Query(None),
    batch_id: str | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
) -> list[AuditEntry]:
    """List recorded registry mutations, newest first."""
    try:
        return await list_audit(resource_id=resource_id, batch_id=batch_id, limit=limit)
    except PartnerMapError as e:
        raise http_error(e) from e
