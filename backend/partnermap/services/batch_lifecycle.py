"""Batch lifecycle: status transitions and rollback.

Legal transitions:

    pending   -> processed | error | cancelled
    processed -> rolled_back   (rollback only)

error, cancelled and rolled_back are terminal.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from partnermap.db import batch_store
from partnermap.db.audit_store import append_audit
from partnermap.db.database import transaction
from partnermap.db.registry_store import registry_store
from partnermap.errors import IllegalStateTransitionError, NotFoundError
from partnermap.models import Batch, BatchStatus, RollbackResult

logger = logging.getLogger(__name__)

# Transitions callers may request directly
ALLOWED_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.PENDING: frozenset(
        {BatchStatus.PROCESSED, BatchStatus.ERROR, BatchStatus.CANCELLED}
    ),
    BatchStatus.PROCESSED: frozenset(),
    BatchStatus.ERROR: frozenset(),
    BatchStatus.CANCELLED: frozenset(),
    BatchStatus.ROLLED_BACK: frozenset(),
}

# Locks of batches currently in use, with the number of holders and waiters
_batch_locks: dict[str, asyncio.Lock] = {}
_batch_lock_users: dict[str, int] = {}


@asynccontextmanager
async def batch_lock(batch_id: str) -> AsyncIterator[None]:
    """Hold the exclusive lock of one batch.

    Decision processing and rollback of the same batch never overlap. The
    lock is dropped once nobody holds or waits for it.
    """
    lock = _batch_locks.setdefault(batch_id, asyncio.Lock())
    _batch_lock_users[batch_id] = _batch_lock_users.get(batch_id, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _batch_lock_users[batch_id] -= 1
        if not _batch_lock_users[batch_id]:
            del _batch_lock_users[batch_id]
            del _batch_locks[batch_id]


async def update_batch_status(
    batch_id: str, status: BatchStatus, processing_notes: str | None = None
) -> Batch:
    """Apply a legal status transition and return the updated batch."""
    batch = await batch_store.get_batch(batch_id)
    if batch is None:
        raise NotFoundError("Batch", batch_id)

    if status not in ALLOWED_TRANSITIONS[batch.status]:
        raise IllegalStateTransitionError(batch_id, batch.status.value, status.value)

    moved = await batch_store.transition_batch(
        batch_id, batch.status, status, processing_notes=processing_notes
    )
    if not moved:
        # Someone else moved the batch between the read and the update
        current = await batch_store.get_batch(batch_id)
        raise IllegalStateTransitionError(
            batch_id, current.status.value if current else batch.status.value, status.value
        )

    logger.info(f"Batch {batch_id}: {batch.status.value} -> {status.value}")
    updated = await batch_store.get_batch(batch_id)
    if updated is None:
        raise NotFoundError("Batch", batch_id)
    return updated


async def rollback_batch(batch_id: str) -> RollbackResult:
    """Remove everything a processed batch created and mark it rolled back.

    Nodes created by the batch go first, then entities created by the batch,
    then the batch's staging records. Records that came from elsewhere are
    never deleted: a batch entity still owning such nodes is kept.
    Aliases that merges added to records which existed before the batch are
    left in place.
    """
    async with batch_lock(batch_id):
        async with transaction() as db:
            batch = await batch_store.get_batch(batch_id, conn=db)
            if batch is None:
                raise NotFoundError("Batch", batch_id)

            moved = await batch_store.transition_batch(
                batch_id, BatchStatus.PROCESSED, BatchStatus.ROLLED_BACK, conn=db
            )
            if not moved:
                raise IllegalStateTransitionError(
                    batch_id, batch.status.value, BatchStatus.ROLLED_BACK.value
                )

            (
                nodes_deleted,
                entities_deleted,
                entities_kept,
            ) = await registry_store.delete_batch_records(batch_id, conn=db)
            staging_deleted = await batch_store.delete_staging_records(batch_id, conn=db)

            await append_audit(
                db,
                "BATCH_ROLLBACK",
                "batch",
                batch_id,
                batch_id=batch_id,
                payload={
                    "nodes_deleted": nodes_deleted,
                    "entities_deleted": entities_deleted,
                    "entities_kept": entities_kept,
                    "staging_nodes_deleted": staging_deleted,
                },
            )

    logger.info(
        f"Rolled back batch {batch_id}: {nodes_deleted} nodes, {entities_deleted} entities, "
        f"{staging_deleted} staging records"
    )
    return RollbackResult(
        success=True,
        nodes_deleted=nodes_deleted,
        entities_deleted=entities_deleted,
        staging_nodes_deleted=staging_deleted,
        entities_kept=entities_kept,
    )
