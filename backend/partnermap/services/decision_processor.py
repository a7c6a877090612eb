"""DecisionProcessor - Applies operator decisions to staging records.

Each decision is applied in its own transaction: the registry writes, the
staging status change and the audit entry commit together or not at all.
A failing decision is reported and does not affect the others.
"""

import logging
from dataclasses import dataclass

import aiosqlite

from partnermap.db import batch_store
from partnermap.db.audit_store import append_audit
from partnermap.db.database import transaction
from partnermap.db.registry_store import RegistryStore, registry_store
from partnermap.errors import DecisionError, NotFoundError
from partnermap.models import (
    BatchStatus,
    Decision,
    DecisionAction,
    DecisionFailure,
    EntityCreate,
    NodeCreate,
    ProcessDecisionsResponse,
    StagingEdits,
    StagingRecord,
    StagingStatus,
)
from partnermap.models.decision import ACTION_OUTCOMES
from partnermap.services.batch_lifecycle import batch_lock

logger = logging.getLogger(__name__)


@dataclass
class DecisionOutcome:
    """Result of applying one decision."""

    applied: bool
    entity_id: str | None = None
    node_id: str | None = None
    error: str | None = None
    already_applied: bool = False


def apply_edits(record: StagingRecord, edits: StagingEdits | None) -> StagingRecord:
    """Return the record with operator overrides applied."""
    if edits is None:
        return record
    return record.model_copy(update=edits.model_dump(exclude_none=True))


class DecisionProcessor:
    """Applies decisions to staging records of processed batches.

    Re-applying the decision a record already received is a successful no-op;
    a different decision on a decided record is an error.
    """

    def __init__(self, store: RegistryStore = registry_store) -> None:
        self._store = store

    async def process(self, decisions: list[Decision]) -> ProcessDecisionsResponse:
        processed = 0
        errors: list[DecisionFailure] = []

        for decision in decisions:
            outcome = await self.apply(decision)
            if outcome.error:
                errors.append(DecisionFailure(staging_id=decision.staging_id, reason=outcome.error))
            else:
                processed += 1

        logger.info(f"Processed {len(decisions)} decisions: {processed} applied, {len(errors)} failed")
        return ProcessDecisionsResponse(processed=processed, errors=errors)

    async def apply(self, decision: Decision) -> DecisionOutcome:
        """Apply one decision under the lock of its batch."""
        record = await batch_store.get_staging_record(decision.staging_id)
        if record is None:
            return DecisionOutcome(
                applied=False, error=f"Staging record {decision.staging_id} not found"
            )

        async with batch_lock(record.batch_id):
            try:
                outcome = await self._apply_locked(decision)
            except (DecisionError, NotFoundError) as e:
                logger.warning(f"Decision for {decision.staging_id} failed: {e}")
                return DecisionOutcome(applied=False, error=str(e))

        if outcome.already_applied:
            logger.info(f"Decision for {decision.staging_id} already applied")
        return outcome

    async def _apply_locked(self, decision: Decision) -> DecisionOutcome:
        async with transaction() as db:
            # Re-read inside the transaction, the record may have been decided meanwhile
            record = await batch_store.get_staging_record(decision.staging_id, conn=db)
            if record is None:
                raise DecisionError(f"Staging record {decision.staging_id} not found")

            outcome_status = ACTION_OUTCOMES[decision.action]
            if record.status != StagingStatus.PENDING:
                return self._check_repeat(record, decision, outcome_status)

            batch = await batch_store.get_batch(record.batch_id, conn=db)
            if batch is None or batch.status != BatchStatus.PROCESSED:
                status = batch.status.value if batch else "missing"
                raise DecisionError(
                    f"Batch {record.batch_id} is {status}; decisions need a processed batch"
                )

            record = apply_edits(record, decision.manual_edits)

            if decision.action == DecisionAction.APPROVE_NEW:
                entity_id, node_id = await self._approve_new(record, db)
            elif decision.action == DecisionAction.MERGE_WITH_ENTITY:
                entity_id, node_id = await self._merge_with_entity(record, decision.target_id, db)
            elif decision.action == DecisionAction.MERGE_WITH_NODE:
                entity_id, node_id = await self._merge_with_node(record, decision.target_id, db)
            else:
                entity_id, node_id = None, None

            await batch_store.mark_staging_decided(
                record.id, outcome_status, entity_id, node_id, conn=db
            )
            await append_audit(
                db,
                f"DECISION_{decision.action.value.upper()}",
                "staging_node",
                record.id,
                batch_id=record.batch_id,
                payload={
                    "target_id": decision.target_id,
                    "entity_id": entity_id,
                    "node_id": node_id,
                },
            )

        return DecisionOutcome(applied=True, entity_id=entity_id, node_id=node_id)

    def _check_repeat(
        self, record: StagingRecord, decision: Decision, outcome_status: StagingStatus
    ) -> DecisionOutcome:
        """Handle a decision for a record that is no longer pending."""
        if record.status != outcome_status:
            raise DecisionError(
                f"Staging record {record.id} was already decided as {record.status.value}"
            )

        resolved_target = {
            DecisionAction.MERGE_WITH_ENTITY: record.resolved_entity_id,
            DecisionAction.MERGE_WITH_NODE: record.resolved_node_id,
        }.get(decision.action)
        if resolved_target is not None and decision.target_id != resolved_target:
            raise DecisionError(
                f"Staging record {record.id} was already merged into {resolved_target}"
            )

        return DecisionOutcome(
            applied=True,
            entity_id=record.resolved_entity_id,
            node_id=record.resolved_node_id,
            already_applied=True,
        )

    async def _file_node(
        self, record: StagingRecord, entity_id: str, db: aiosqlite.Connection
    ) -> str:
        """Put the staged node under an entity, reusing a same-named node there."""
        existing = await self._store.find_node_under_entity(
            entity_id, record.node_name, record.node_category, conn=db
        )
        if existing is not None:
            await self._store.merge_node_attributes(
                existing.node_id,
                connects_to=record.connect_targets,
                protocols_supported=record.protocols_supported,
                data_types_supported=record.data_types_supported,
                conn=db,
            )
            return existing.node_id

        node = await self._store.create_node(
            NodeCreate(
                node_name=record.node_name,
                entity_id=entity_id,
                node_category=record.node_category,
                direction=record.direction,
                connects_to=record.connect_targets,
                protocols_supported=record.protocols_supported,
                data_types_supported=record.data_types_supported,
                notes=record.notes,
            ),
            source_batch_id=record.batch_id,
            conn=db,
        )
        return node.node_id

    async def _approve_new(
        self, record: StagingRecord, db: aiosqlite.Connection
    ) -> tuple[str, str]:
        entity = await self._store.find_entity_by_name(record.entity_name, conn=db)
        if entity is None:
            entity = await self._store.create_entity(
                EntityCreate(master_entity_name=record.entity_name, website=record.website),
                source_batch_id=record.batch_id,
                conn=db,
            )
        node_id = await self._file_node(record, entity.entity_id, db)
        return entity.entity_id, node_id

    async def _merge_with_entity(
        self, record: StagingRecord, target_id: str | None, db: aiosqlite.Connection
    ) -> tuple[str, str]:
        if not target_id:
            raise DecisionError("target_id is required for merge_with_entity")

        entity = await self._store.get_entity(target_id, conn=db)
        if entity is None:
            raise DecisionError(f"Target entity {target_id} not found")

        await self._store.add_entity_aliases(entity.entity_id, [record.entity_name], conn=db)
        node_id = await self._file_node(record, entity.entity_id, db)
        return entity.entity_id, node_id

    async def _merge_with_node(
        self, record: StagingRecord, target_id: str | None, db: aiosqlite.Connection
    ) -> tuple[str, str]:
        if not target_id:
            raise DecisionError("target_id is required for merge_with_node")

        node = await self._store.get_node(target_id, conn=db)
        if node is None:
            raise DecisionError(f"Target node {target_id} not found")

        await self._store.add_node_aliases(node.node_id, [record.node_name], conn=db)
        await self._store.merge_node_attributes(
            node.node_id,
            connects_to=record.connect_targets,
            protocols_supported=record.protocols_supported,
            data_types_supported=record.data_types_supported,
            conn=db,
        )
        return node.entity_id, node.node_id


# Global instance
decision_processor = DecisionProcessor()
