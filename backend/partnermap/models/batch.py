"""Pydantic models for CSV batches and their staging records.

A batch is one CSV upload. Each valid row becomes a staging record that waits
for an operator decision before anything reaches the registry.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from partnermap.models.node import DataTypeSupported, Direction, NodeCategory, ProtocolSupported


class BatchStatus(str, Enum):
    """Lifecycle status of a batch."""

    PENDING = "pending"  # Upload received, rows being staged
    PROCESSED = "processed"  # Staging finished, decisions may be applied
    ERROR = "error"  # Unusable upload (terminal)
    CANCELLED = "cancelled"  # Abandoned before staging finished (terminal)
    ROLLED_BACK = "rolled_back"  # Everything it created was removed (terminal)


TERMINAL_BATCH_STATUSES = frozenset(
    {BatchStatus.ERROR, BatchStatus.CANCELLED, BatchStatus.ROLLED_BACK}
)


class StagingStatus(str, Enum):
    """Decision outcome of a staging record. Every state but PENDING is final."""

    PENDING = "pending"
    APPROVED_NEW = "approved_new"
    MERGED_ENTITY = "merged_entity"
    MERGED_NODE = "merged_node"
    REJECTED = "rejected"


class RowValidationError(BaseModel):
    """One field-level problem found in an uploaded CSV row."""

    row: int = Field(description="1-based CSV line number (header is line 1)")
    field: str
    error: str
    value: Any = None


class StagingRecordCreate(BaseModel):
    """A sanitized CSV row ready to be staged."""

    node_name: str
    entity_name: str
    website: str
    node_category: NodeCategory
    direction: Direction
    notes: str = ""
    connect_targets: list[str] = Field(default_factory=list)
    protocols_supported: list[ProtocolSupported] = Field(default_factory=list)
    data_types_supported: list[DataTypeSupported] = Field(default_factory=list)
    extracted_tags: list[str] = Field(default_factory=list)
    confidence_score: float = 0.0
    duplicate_matches: list[str] = Field(default_factory=list)
    original_data: dict[str, str] = Field(default_factory=dict)
    row_number: int = 0


class StagingRecord(StagingRecordCreate):
    """A not-yet-committed node/entity pair belonging to a batch."""

    id: str
    batch_id: str
    status: StagingStatus = StagingStatus.PENDING
    resolved_entity_id: str | None = None
    resolved_node_id: str | None = None
    created_at: str
    decided_at: str | None = None


class Batch(BaseModel):
    """One CSV ingestion event and its lifecycle status."""

    batch_id: str
    batch_name: str
    status: BatchStatus
    total_records: int = 0
    processed_records: int = 0
    error_records: int = 0
    error_report: dict[str, Any] | None = None
    processing_notes: str | None = None
    created_at: str
    updated_at: str
    completed_at: str | None = None


class ProcessBatchCSVRequest(BaseModel):
    """Request body for uploading a CSV as a new batch."""

    model_config = ConfigDict(populate_by_name=True)

    csv_content: str = Field(alias="csvContent")
    batch_name: str | None = Field(default=None, alias="batchName")


class CSVProcessingResult(BaseModel):
    """Outcome of staging a CSV upload."""

    batch_id: str
    total_rows: int
    valid_rows: int
    invalid_rows: int
    staging_nodes: list[StagingRecord]
    validation_errors: list[RowValidationError]
    duplicate_warnings: int


class UpdateBatchStatusRequest(BaseModel):
    """Request body for moving a batch to another status."""

    model_config = ConfigDict(populate_by_name=True)

    status: BatchStatus
    processing_notes: str | None = Field(default=None, alias="processingNotes")


class RollbackResult(BaseModel):
    """What a rollback removed."""

    success: bool
    nodes_deleted: int
    entities_deleted: int
    staging_nodes_deleted: int
    # Batch entities that own nodes from elsewhere and were detached instead
    entities_kept: int = 0
