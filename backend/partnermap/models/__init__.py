"""Pydantic models for the partner map registry."""

from partnermap.models.audit import AuditEntry
from partnermap.models.batch import (
    Batch,
    BatchStatus,
    CSVProcessingResult,
    ProcessBatchCSVRequest,
    RollbackResult,
    RowValidationError,
    StagingRecord,
    StagingRecordCreate,
    StagingStatus,
    UpdateBatchStatusRequest,
)
from partnermap.models.consolidation import (
    AliasChange,
    AliasSuggestion,
    ApplyMergeRequest,
    ApplyMergeResult,
    MergeCandidate,
    MergeGroup,
    RecordType,
)
from partnermap.models.decision import (
    Decision,
    DecisionAction,
    DecisionFailure,
    ProcessDecisionsRequest,
    ProcessDecisionsResponse,
    StagingEdits,
)
from partnermap.models.entity import Entity, EntityCreate, EntityUpdate
from partnermap.models.match import (
    AnalyzeDeduplicationRequest,
    DeduplicationConfig,
    DuplicateMatch,
    MatchConfidence,
    MatchResult,
    MatchTargetType,
    RecommendedAction,
    SuggestedMergeAction,
)
from partnermap.models.node import (
    DataTypeSupported,
    Direction,
    Node,
    NodeCategory,
    NodeCreate,
    NodeSearch,
    NodeUpdate,
    ProtocolSupported,
)

__all__ = [
    # Registry
    "Entity",
    "EntityCreate",
    "EntityUpdate",
    "Node",
    "NodeCreate",
    "NodeUpdate",
    "NodeSearch",
    "NodeCategory",
    "Direction",
    "ProtocolSupported",
    "DataTypeSupported",
    # Batches
    "Batch",
    "BatchStatus",
    "StagingRecord",
    "StagingRecordCreate",
    "StagingStatus",
    "RowValidationError",
    "ProcessBatchCSVRequest",
    "CSVProcessingResult",
    "UpdateBatchStatusRequest",
    "RollbackResult",
    # Deduplication
    "AnalyzeDeduplicationRequest",
    "DeduplicationConfig",
    "DuplicateMatch",
    "MatchConfidence",
    "MatchResult",
    "MatchTargetType",
    "RecommendedAction",
    "SuggestedMergeAction",
    # Decisions
    "Decision",
    "DecisionAction",
    "DecisionFailure",
    "ProcessDecisionsRequest",
    "ProcessDecisionsResponse",
    "StagingEdits",
    # Consolidation
    "AliasChange",
    "AliasSuggestion",
    "ApplyMergeRequest",
    "ApplyMergeResult",
    "MergeCandidate",
    "MergeGroup",
    "RecordType",
    # Audit
    "AuditEntry",
]
