"""Consolidation of near-duplicate records already in the registry.

Merge groups are derived on every call and never stored. Applying a merge
folds the candidates into the master in a single transaction.
"""

import logging
import os

from partnermap.db.audit_store import append_audit
from partnermap.db.database import transaction
from partnermap.db.registry_store import RegistryStore, registry_store
from partnermap.errors import ConflictError, NotFoundError
from partnermap.models import (
    ApplyMergeRequest,
    ApplyMergeResult,
    Entity,
    EntityUpdate,
    MergeCandidate,
    MergeGroup,
    Node,
    NodeUpdate,
    RecordType,
)
from partnermap.services.canonical import consolidate_aliases, resolve_canonical
from partnermap.services.grouper import (
    DEFAULT_THRESHOLD,
    CandidateGroup,
    group_by_key,
    group_similar,
)
from partnermap.services.similarity import extract_domain

logger = logging.getLogger(__name__)


def merge_group_threshold() -> float:
    """Grouping threshold, configurable through MERGE_GROUP_THRESHOLD."""
    return float(os.getenv("MERGE_GROUP_THRESHOLD", str(DEFAULT_THRESHOLD)))


def entity_merge_reasons(master: Entity, candidate: Entity) -> list[str]:
    reasons: list[str] = []

    master_domain = extract_domain(master.website)
    if master_domain and master_domain == extract_domain(candidate.website):
        reasons.append("Same domain")

    common = set(master.master_entity_name.lower().split()) & set(
        candidate.master_entity_name.lower().split()
    )
    if common:
        reasons.append(f"{len(common)} common word{'s' if len(common) > 1 else ''}")

    return reasons


def node_merge_reasons(master: Node, candidate: Node) -> list[str]:
    reasons: list[str] = []
    if master.node_category == candidate.node_category:
        reasons.append("Same category")
    if master.entity_id == candidate.entity_id:
        reasons.append("Same entity")
    return reasons


def _entity_group(group: CandidateGroup[Entity]) -> MergeGroup:
    master = group.master
    candidates = [
        MergeCandidate(
            id=entity.entity_id,
            type=RecordType.ENTITY,
            name=entity.master_entity_name,
            website=entity.website,
            aliases=entity.alternate_names,
            similarity=score,
            reasons=entity_merge_reasons(master, entity),
        )
        for entity, score in zip(group.candidates, group.scores)
    ]
    names = [m.master_entity_name for m in group.members]
    existing = [a for m in group.members for a in m.alternate_names]
    canonical, aliases = resolve_canonical(names, existing)

    return MergeGroup(
        master_id=master.entity_id,
        master_name=master.master_entity_name,
        master_type=RecordType.ENTITY,
        candidates=candidates,
        proposed_canonical_name=canonical,
        proposed_aliases=aliases,
        confidence_score=group.mean_score,
    )


def _node_group(group: CandidateGroup[Node]) -> MergeGroup:
    master = group.master
    candidates = [
        MergeCandidate(
            id=node.node_id,
            type=RecordType.NODE,
            name=node.node_name,
            category=node.node_category,
            aliases=node.node_aliases,
            similarity=score,
            reasons=node_merge_reasons(master, node),
        )
        for node, score in zip(group.candidates, group.scores)
    ]
    names = [m.node_name for m in group.members]
    existing = [a for m in group.members for a in m.node_aliases]
    canonical, aliases = resolve_canonical(names, existing)

    return MergeGroup(
        master_id=master.node_id,
        master_name=master.node_name,
        master_type=RecordType.NODE,
        candidates=candidates,
        proposed_canonical_name=canonical,
        proposed_aliases=aliases,
        confidence_score=group.mean_score,
    )


def build_merge_groups(
    entities: list[Entity], nodes: list[Node], threshold: float = DEFAULT_THRESHOLD
) -> list[MergeGroup]:
    """Group entities by name, and nodes by name within each category."""
    groups = [
        _entity_group(g)
        for g in group_similar(entities, lambda e: e.master_entity_name, threshold)
    ]
    groups.extend(
        _node_group(g)
        for g in group_by_key(nodes, lambda n: n.node_category, lambda n: n.node_name, threshold)
    )
    groups.sort(key=lambda g: g.confidence_score, reverse=True)
    return groups


async def find_merge_groups(
    kind: RecordType | None = None, store: RegistryStore = registry_store
) -> list[MergeGroup]:
    """Merge groups over the current registry, highest confidence first."""
    entities = await store.list_entities() if kind in (None, RecordType.ENTITY) else []
    nodes = await store.list_nodes() if kind in (None, RecordType.NODE) else []
    groups = build_merge_groups(entities, nodes, merge_group_threshold())
    logger.info(f"Found {len(groups)} merge groups")
    return groups


async def apply_merge(
    request: ApplyMergeRequest, store: RegistryStore = registry_store
) -> ApplyMergeResult:
    """Fold the candidates into the master record."""
    if request.master_id in request.candidate_ids:
        raise ConflictError("A record cannot be merged into itself")

    if request.master_type == RecordType.ENTITY:
        return await _merge_entities(request, store)
    return await _merge_nodes(request, store)


async def _merge_entities(request: ApplyMergeRequest, store: RegistryStore) -> ApplyMergeResult:
    async with transaction() as db:
        master = await store.get_entity(request.master_id, conn=db)
        if master is None:
            raise NotFoundError("Entity", request.master_id)

        candidates: list[Entity] = []
        for candidate_id in dict.fromkeys(request.candidate_ids):
            candidate = await store.get_entity(candidate_id, conn=db)
            if candidate is None:
                raise NotFoundError("Entity", candidate_id)
            candidates.append(candidate)

        names = [master.master_entity_name, *(c.master_entity_name for c in candidates)]
        existing = [*master.alternate_names, *(a for c in candidates for a in c.alternate_names)]
        if request.canonical_name:
            canonical = request.canonical_name
            aliases = consolidate_aliases(canonical, names, existing)
        else:
            canonical, aliases = resolve_canonical(names, existing)

        nodes_reassigned = 0
        for candidate in candidates:
            nodes_reassigned += await store.reassign_nodes(
                candidate.entity_id, master.entity_id, conn=db
            )
            await store.delete_entity(candidate.entity_id, conn=db)

        website = master.website or next((c.website for c in candidates if c.website), "")
        await store.update_entity(
            master.entity_id,
            EntityUpdate(master_entity_name=canonical, alternate_names=aliases, website=website),
            conn=db,
        )
        await append_audit(
            db,
            "ENTITY_MERGE",
            "entity",
            master.entity_id,
            payload={
                "absorbed": [c.entity_id for c in candidates],
                "canonical_name": canonical,
                "nodes_reassigned": nodes_reassigned,
            },
        )

    logger.info(
        f"Merged {len(candidates)} entities into {master.entity_id} as '{canonical}', "
        f"{nodes_reassigned} nodes reassigned"
    )
    return ApplyMergeResult(
        master_id=master.entity_id,
        canonical_name=canonical,
        aliases=aliases,
        absorbed_ids=[c.entity_id for c in candidates],
        nodes_reassigned=nodes_reassigned,
    )


async def _merge_nodes(request: ApplyMergeRequest, store: RegistryStore) -> ApplyMergeResult:
    async with transaction() as db:
        master = await store.get_node(request.master_id, conn=db)
        if master is None:
            raise NotFoundError("Node", request.master_id)

        candidates: list[Node] = []
        for candidate_id in dict.fromkeys(request.candidate_ids):
            candidate = await store.get_node(candidate_id, conn=db)
            if candidate is None:
                raise NotFoundError("Node", candidate_id)
            candidates.append(candidate)

        names = [master.node_name, *(c.node_name for c in candidates)]
        existing = [*master.node_aliases, *(a for c in candidates for a in c.node_aliases)]
        if request.canonical_name:
            canonical = request.canonical_name
            aliases = consolidate_aliases(canonical, names, existing)
        else:
            canonical, aliases = resolve_canonical(names, existing)

        for candidate in candidates:
            await store.merge_node_attributes(
                master.node_id,
                connects_to=candidate.connects_to,
                protocols_supported=candidate.protocols_supported,
                data_types_supported=candidate.data_types_supported,
                conn=db,
            )

        absorbed = {c.node_id for c in candidates}
        edges_redirected = await store.redirect_connections(absorbed, master.node_id, conn=db)

        for candidate in candidates:
            await store.delete_node(candidate.node_id, conn=db)

        await store.update_node(
            master.node_id,
            NodeUpdate(node_name=canonical, node_aliases=aliases),
            conn=db,
        )
        await append_audit(
            db,
            "NODE_MERGE",
            "node",
            master.node_id,
            payload={
                "absorbed": sorted(absorbed),
                "canonical_name": canonical,
                "edges_redirected": edges_redirected,
            },
        )

    logger.info(
        f"Merged {len(candidates)} nodes into {master.node_id} as '{canonical}', "
        f"{edges_redirected} edges redirected"
    )
    return ApplyMergeResult(
        master_id=master.node_id,
        canonical_name=canonical,
        aliases=aliases,
        absorbed_ids=[c.node_id for c in candidates],
        edges_redirected=edges_redirected,
    )
