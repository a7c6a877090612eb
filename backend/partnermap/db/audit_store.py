"""Audit trail of registry mutations."""

import json
import logging
import uuid
from datetime import UTC, datetime
from typing import Any

import aiosqlite

from partnermap.db.database import get_db
from partnermap.models.audit import AuditEntry

logger = logging.getLogger(__name__)


async def append_audit(
    db: aiosqlite.Connection,
    action: str,
    resource_type: str,
    resource_id: str,
    batch_id: str | None = None,
    payload: dict[str, Any] | None = None,
) -> AuditEntry:
    """Record a mutation inside the caller's transaction."""
    entry = AuditEntry(
        id=str(uuid.uuid4()),
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        batch_id=batch_id,
        payload=payload or {},
        created_at=datetime.now(UTC).isoformat(),
    )

    await db.execute(
        """
        INSERT INTO audit_logs (id, action, resource_type, resource_id, batch_id, payload_json, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            entry.id,
            entry.action,
            entry.resource_type,
            entry.resource_id,
            entry.batch_id,
            json.dumps(entry.payload, default=str),
            entry.created_at,
        ),
    )

    logger.info(f"Audit {action} {resource_type}/{resource_id}")
    return entry


async def list_audit(
    resource_id: str | None = None,
    batch_id: str | None = None,
    limit: int = 100,
) -> list[AuditEntry]:
    """List audit entries, newest first."""
    db = await get_db()

    conditions = []
    params: list[Any] = []

    if resource_id:
        conditions.append("resource_id = ?")
        params.append(resource_id)

    if batch_id:
        conditions.append("batch_id = ?")
        params.append(batch_id)

    where_clause = " AND ".join(conditions) if conditions else "1=1"
    params.append(limit)

    cursor = await db.execute(
        f"""
        SELECT * FROM audit_logs
        WHERE {where_clause}
        ORDER BY created_at DESC
        LIMIT ?
        """,
        params,
    )
    rows = await cursor.fetchall()

    return [
        AuditEntry(
            id=row["id"],
            action=row["action"],
            resource_type=row["resource_type"],
            resource_id=row["resource_id"],
            batch_id=row["batch_id"],
            payload=json.loads(row["payload_json"] or "{}"),
            created_at=row["created_at"],
        )
        for row in rows
    ]
