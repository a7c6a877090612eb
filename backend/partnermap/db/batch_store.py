"""Database operations for batches and their staging records."""

import json
import uuid
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from partnermap.db.audit_store import append_audit
from partnermap.db.database import get_db, transaction
from partnermap.models import (
    Batch,
    BatchStatus,
    StagingRecord,
    StagingRecordCreate,
    StagingStatus,
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _row_to_batch(row: aiosqlite.Row) -> Batch:
    """Convert a database row to a Batch model."""
    error_report = json.loads(row["error_report_json"]) if row["error_report_json"] else None

    return Batch(
        batch_id=row["batch_id"],
        batch_name=row["batch_name"],
        status=BatchStatus(row["status"]),
        total_records=row["total_records"],
        processed_records=row["processed_records"],
        error_records=row["error_records"],
        error_report=error_report,
        processing_notes=row["processing_notes"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        completed_at=row["completed_at"],
    )


def _row_to_staging(row: aiosqlite.Row) -> StagingRecord:
    """Convert a database row to a StagingRecord model."""
    return StagingRecord(
        id=row["id"],
        batch_id=row["batch_id"],
        row_number=row["row_number"],
        node_name=row["node_name"],
        entity_name=row["entity_name"],
        website=row["website"],
        node_category=row["node_category"],
        direction=row["direction"],
        notes=row["notes"],
        connect_targets=json.loads(row["connect_targets_json"] or "[]"),
        protocols_supported=json.loads(row["protocols_json"] or "[]"),
        data_types_supported=json.loads(row["data_types_json"] or "[]"),
        extracted_tags=json.loads(row["extracted_tags_json"] or "[]"),
        confidence_score=row["confidence_score"],
        duplicate_matches=json.loads(row["duplicate_matches_json"] or "[]"),
        original_data=json.loads(row["original_data_json"] or "{}"),
        status=StagingStatus(row["status"]),
        resolved_entity_id=row["resolved_entity_id"],
        resolved_node_id=row["resolved_node_id"],
        created_at=row["created_at"],
        decided_at=row["decided_at"],
    )


# =============================================================================
# Batches
# =============================================================================


async def create_batch(batch_name: str, conn: aiosqlite.Connection | None = None) -> Batch:
    """Create a new batch in the pending state."""
    batch_id = str(uuid.uuid4())
    now = _now()

    async with transaction(conn) as db:
        await db.execute(
            """
            INSERT INTO batch_logs (batch_id, batch_name, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (batch_id, batch_name, BatchStatus.PENDING.value, now, now),
        )
        await append_audit(
            db,
            "BATCH_CREATE",
            "batch",
            batch_id,
            batch_id=batch_id,
            payload={"batch_name": batch_name},
        )

    return Batch(
        batch_id=batch_id,
        batch_name=batch_name,
        status=BatchStatus.PENDING,
        created_at=now,
        updated_at=now,
    )


async def get_batch(batch_id: str, conn: aiosqlite.Connection | None = None) -> Batch | None:
    """Get a batch by ID."""
    db = conn or await get_db()
    cursor = await db.execute("SELECT * FROM batch_logs WHERE batch_id = ?", (batch_id,))
    row = await cursor.fetchone()
    return _row_to_batch(row) if row else None


async def list_batches(limit: int = 100) -> list[Batch]:
    """List batches, newest first."""
    db = await get_db()
    cursor = await db.execute(
        "SELECT * FROM batch_logs ORDER BY created_at DESC LIMIT ?", (limit,)
    )
    rows = await cursor.fetchall()
    return [_row_to_batch(row) for row in rows]


async def transition_batch(
    batch_id: str,
    expected: BatchStatus,
    new_status: BatchStatus,
    *,
    total_records: int | None = None,
    processed_records: int | None = None,
    error_records: int | None = None,
    error_report: dict[str, Any] | None = None,
    processing_notes: str | None = None,
    conn: aiosqlite.Connection | None = None,
) -> bool:
    """Move a batch from ``expected`` to ``new_status`` in one conditional update.

    Returns False when the batch was not in ``expected`` (nothing changes).
    Counters only ever grow.
    """
    now = _now()
    async with transaction(conn) as db:
        cursor = await db.execute(
            """
            UPDATE batch_logs
            SET status = ?,
                total_records = MAX(total_records, COALESCE(?, total_records)),
                processed_records = MAX(processed_records, COALESCE(?, processed_records)),
                error_records = MAX(error_records, COALESCE(?, error_records)),
                error_report_json = COALESCE(?, error_report_json),
                processing_notes = COALESCE(?, processing_notes),
                updated_at = ?,
                completed_at = ?
            WHERE batch_id = ? AND status = ?
            """,
            (
                new_status.value,
                total_records,
                processed_records,
                error_records,
                json.dumps(error_report) if error_report is not None else None,
                processing_notes,
                now,
                now,
                batch_id,
                expected.value,
            ),
        )
        moved = cursor.rowcount > 0
        if moved:
            await append_audit(
                db,
                "BATCH_STATUS",
                "batch",
                batch_id,
                batch_id=batch_id,
                payload={"from": expected.value, "to": new_status.value},
            )
        return moved


# =============================================================================
# Staging records
# =============================================================================


async def add_staging_records(
    batch_id: str,
    records: list[StagingRecordCreate],
    conn: aiosqlite.Connection | None = None,
) -> list[StagingRecord]:
    """Persist staged rows for a batch."""
    created: list[StagingRecord] = []
    now = _now()

    async with transaction(conn) as db:
        for record in records:
            staging = StagingRecord(
                **record.model_dump(),
                id=str(uuid.uuid4()),
                batch_id=batch_id,
                created_at=now,
            )
            await db.execute(
                """
                INSERT INTO staging_nodes (
                    id, batch_id, row_number, node_name, entity_name, website, node_category,
                    direction, notes, connect_targets_json, protocols_json, data_types_json,
                    extracted_tags_json, confidence_score, duplicate_matches_json,
                    original_data_json, status, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    staging.id,
                    batch_id,
                    staging.row_number,
                    staging.node_name,
                    staging.entity_name,
                    staging.website,
                    staging.node_category.value,
                    staging.direction.value,
                    staging.notes,
                    json.dumps(staging.connect_targets),
                    json.dumps([p.value for p in staging.protocols_supported]),
                    json.dumps([d.value for d in staging.data_types_supported]),
                    json.dumps(staging.extracted_tags),
                    staging.confidence_score,
                    json.dumps(staging.duplicate_matches),
                    json.dumps(staging.original_data),
                    staging.status.value,
                    now,
                ),
            )
            created.append(staging)

    return created


async def get_staging_record(
    staging_id: str, conn: aiosqlite.Connection | None = None
) -> StagingRecord | None:
    """Get a staging record by ID."""
    db = conn or await get_db()
    cursor = await db.execute("SELECT * FROM staging_nodes WHERE id = ?", (staging_id,))
    row = await cursor.fetchone()
    return _row_to_staging(row) if row else None


async def list_staging_records(
    batch_id: str,
    status: StagingStatus | None = None,
    conn: aiosqlite.Connection | None = None,
) -> list[StagingRecord]:
    """List the staging records of a batch in upload order."""
    db = conn or await get_db()

    if status is not None:
        cursor = await db.execute(
            """
            SELECT * FROM staging_nodes
            WHERE batch_id = ? AND status = ?
            ORDER BY row_number ASC
            """,
            (batch_id, status.value),
        )
    else:
        cursor = await db.execute(
            "SELECT * FROM staging_nodes WHERE batch_id = ? ORDER BY row_number ASC",
            (batch_id,),
        )
    rows = await cursor.fetchall()
    return [_row_to_staging(row) for row in rows]


async def mark_staging_decided(
    staging_id: str,
    status: StagingStatus,
    resolved_entity_id: str | None = None,
    resolved_node_id: str | None = None,
    conn: aiosqlite.Connection | None = None,
) -> bool:
    """Record the terminal decision of a pending staging record.

    Returns False if the record was already decided.
    """
    async with transaction(conn) as db:
        cursor = await db.execute(
            """
            UPDATE staging_nodes
            SET status = ?, resolved_entity_id = ?, resolved_node_id = ?, decided_at = ?
            WHERE id = ? AND status = ?
            """,
            (
                status.value,
                resolved_entity_id,
                resolved_node_id,
                _now(),
                staging_id,
                StagingStatus.PENDING.value,
            ),
        )
        return cursor.rowcount > 0


async def delete_staging_records(
    batch_id: str, conn: aiosqlite.Connection | None = None
) -> int:
    """Delete every staging record of a batch."""
    async with transaction(conn) as db:
        cursor = await db.execute("DELETE FROM staging_nodes WHERE batch_id = ?", (batch_id,))
        return cursor.rowcount
