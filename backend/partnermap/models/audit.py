"""Pydantic models for audit log entries."""

from typing import Any

from pydantic import BaseModel, Field


class AuditEntry(BaseModel):
    """A recorded registry mutation."""

    id: str
    action: str
    resource_type: str
    resource_id: str
    batch_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: str
