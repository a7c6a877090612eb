"""Deduplication analysis of staged records.

Each staging record of a batch is compared with a snapshot of the registry
(entities by name and alternate names, nodes of the same category by name and
aliases) and with the rows staged before it in the same batch. Results are
computed independently per record from that snapshot.
"""

import logging
import sqlite3
from collections.abc import Sequence

from partnermap.db import batch_store
from partnermap.db.registry_store import registry_store
from partnermap.errors import NotFoundError, RegistryUnavailableError
from partnermap.models import (
    DeduplicationConfig,
    DuplicateMatch,
    Entity,
    MatchConfidence,
    MatchResult,
    MatchTargetType,
    Node,
    RecommendedAction,
    StagingRecord,
    SuggestedMergeAction,
)
from partnermap.services.similarity import extract_domain, name_similarity

logger = logging.getLogger(__name__)

_ACTION_FOR_CONFIDENCE = {
    MatchConfidence.HIGH: RecommendedAction.MERGE,
    MatchConfidence.MEDIUM: RecommendedAction.REVIEW,
    MatchConfidence.LOW: RecommendedAction.SEPARATE,
}


def _pct(score: float) -> str:
    return f"{round(score * 100)}%"


class DeduplicationAnalyzer:
    """Scores one staged record against a fixed registry snapshot."""

    def __init__(self, entities: list[Entity], nodes: list[Node], config: DeduplicationConfig):
        self.entities = entities
        self.nodes = nodes
        self.config = config
        self._entity_by_id = {e.entity_id: e for e in entities}

    def confidence_level(self, score: float) -> MatchConfidence:
        if score >= self.config.high_confidence:
            return MatchConfidence.HIGH
        if score >= self.config.medium_confidence:
            return MatchConfidence.MEDIUM
        return MatchConfidence.LOW

    def _with_domain(
        self, score: float, reasons: list[str], left: str | None, right: str | None
    ) -> float:
        """Boost a name score when both records share a website domain."""
        if not self.config.enable_domain_clustering:
            return score
        left_domain, right_domain = extract_domain(left), extract_domain(right)
        if not left_domain or left_domain != right_domain:
            return score
        reasons.append("same_domain")
        combined = self.config.website_domain_weight * 0.7 + score * 0.3
        return max(score, combined)

    def _match(
        self,
        target_id: str,
        target_type: MatchTargetType,
        target_name: str,
        score: float,
        reasons: list[str],
    ) -> DuplicateMatch | None:
        score = min(1.0, score)
        if score <= self.config.min_confidence_score:
            return None
        level = self.confidence_level(score)
        return DuplicateMatch(
            target_id=target_id,
            target_type=target_type,
            target_name=target_name,
            similarity_score=score,
            match_reasons=reasons,
            confidence_level=level,
            recommended_action=_ACTION_FOR_CONFIDENCE[level],
        )

    def _entity_match(self, record: StagingRecord, entity: Entity) -> DuplicateMatch | None:
        reasons: list[str] = []

        name_score = name_similarity(record.entity_name, entity.master_entity_name)
        if name_score > self.config.min_confidence_score:
            reasons.append(f"entity_name_match_{_pct(name_score)}")

        alt_score = max(
            (name_similarity(record.entity_name, alt) for alt in entity.alternate_names),
            default=0.0,
        )
        if alt_score > self.config.min_confidence_score:
            reasons.append(f"alternate_name_match_{_pct(alt_score)}")

        score = self._with_domain(
            max(name_score, alt_score), reasons, record.website, entity.website
        )
        return self._match(
            entity.entity_id, MatchTargetType.ENTITY, entity.master_entity_name, score, reasons
        )

    def _node_match(self, record: StagingRecord, node: Node) -> DuplicateMatch | None:
        if node.node_category != record.node_category:
            return None

        reasons: list[str] = []

        name_score = name_similarity(record.node_name, node.node_name)
        if name_score > self.config.min_confidence_score:
            reasons.append(f"node_name_match_{_pct(name_score)}")

        alias_score = max(
            (name_similarity(record.node_name, alias) for alias in node.node_aliases),
            default=0.0,
        )
        if alias_score > self.config.min_confidence_score:
            reasons.append(f"alias_match_{_pct(alias_score)}")

        owner = self._entity_by_id.get(node.entity_id)
        score = self._with_domain(
            max(name_score, alias_score),
            reasons,
            record.website,
            owner.website if owner else None,
        )
        reasons.append("same_category")
        if node.direction == record.direction:
            reasons.append("same_direction")

        return self._match(
            node.node_id,
            MatchTargetType.NODE,
            f"{node.entity_name} - {node.node_name}",
            score,
            reasons,
        )

    def _peer_match(self, record: StagingRecord, peer: StagingRecord) -> DuplicateMatch | None:
        reasons: list[str] = []
        same_category = peer.node_category == record.node_category

        entity_score = name_similarity(record.entity_name, peer.entity_name)
        if entity_score > self.config.min_confidence_score:
            reasons.append(f"entity_name_match_{_pct(entity_score)}")

        node_score = name_similarity(record.node_name, peer.node_name) if same_category else 0.0
        if node_score > self.config.min_confidence_score:
            reasons.append(f"node_name_match_{_pct(node_score)}")

        score = self._with_domain(
            max(entity_score, node_score), reasons, record.website, peer.website
        )
        if same_category:
            reasons.append("same_category")
        if peer.direction == record.direction:
            reasons.append("same_direction")

        return self._match(
            peer.id,
            MatchTargetType.STAGING,
            f"{peer.entity_name} - {peer.node_name}",
            score,
            reasons,
        )

    def analyze(self, record: StagingRecord, peers: Sequence[StagingRecord] = ()) -> MatchResult:
        """Analyze one record. ``peers`` are the rows staged before it."""
        candidates: list[DuplicateMatch | None] = []
        candidates.extend(self._entity_match(record, e) for e in self.entities)
        candidates.extend(self._node_match(record, n) for n in self.nodes)
        if self.config.include_batch_peers:
            candidates.extend(self._peer_match(record, p) for p in peers if p.id != record.id)

        # One match per target, keeping its best score
        best: dict[str, DuplicateMatch] = {}
        for match in candidates:
            if match is None:
                continue
            current = best.get(match.target_id)
            if current is None or match.similarity_score > current.similarity_score:
                best[match.target_id] = match

        matches = sorted(best.values(), key=lambda m: m.similarity_score, reverse=True)
        matches = matches[: self.config.max_suggestions]

        if not matches:
            return MatchResult(
                staging_id=record.id,
                has_duplicates=False,
                duplicate_count=0,
                matches=[],
                overall_confidence=0.0,
                recommended_action=RecommendedAction.SEPARATE,
                suggested_entity_id=None,
                suggested_merge_action=SuggestedMergeAction.CREATE_NEW,
            )

        top = matches[0]
        if top.confidence_level == MatchConfidence.HIGH and top.target_type != MatchTargetType.STAGING:
            merge_action = SuggestedMergeAction.MERGE_EXISTING
        else:
            merge_action = SuggestedMergeAction.MANUAL_REVIEW

        return MatchResult(
            staging_id=record.id,
            has_duplicates=True,
            duplicate_count=len(matches),
            matches=matches,
            overall_confidence=top.similarity_score,
            recommended_action=_ACTION_FOR_CONFIDENCE[top.confidence_level],
            suggested_entity_id=self._suggested_entity(matches),
            suggested_merge_action=merge_action,
        )

    def _suggested_entity(self, matches: list[DuplicateMatch]) -> str | None:
        """Best entity among the matches, directly or as the owner of a matched node."""
        node_owner = {n.node_id: n.entity_id for n in self.nodes}
        for match in matches:
            if match.target_type == MatchTargetType.ENTITY:
                return match.target_id
            if match.target_type == MatchTargetType.NODE:
                return node_owner.get(match.target_id)
        return None


async def analyze_batch(
    batch_id: str, config: DeduplicationConfig | None = None
) -> list[MatchResult]:
    """Analyze every staging record of a batch, in upload order.

    Fails as a whole with RegistryUnavailableError if the registry snapshot
    cannot be read.
    """
    config = config or DeduplicationConfig()

    try:
        batch = await batch_store.get_batch(batch_id)
        if batch is None:
            raise NotFoundError("Batch", batch_id)
        records = await batch_store.list_staging_records(batch_id)
        entities = await registry_store.list_entities()
        nodes = await registry_store.list_nodes()
    except sqlite3.Error as e:
        logger.error(f"Registry snapshot failed for batch {batch_id}: {e}")
        raise RegistryUnavailableError(str(e)) from e

    analyzer = DeduplicationAnalyzer(entities, nodes, config)
    results = [analyzer.analyze(record, records[:i]) for i, record in enumerate(records)]

    flagged = sum(1 for r in results if r.has_duplicates)
    logger.info(
        f"Analyzed batch {batch_id}: {len(results)} records, {flagged} with potential duplicates"
    )
    return results
