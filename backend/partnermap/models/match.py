"""Data models for deduplication analysis results.

These models describe how a staged record resembles existing entities, nodes,
or earlier rows of the same batch, and what an operator is advised to do.
"""

from enum import Enum

from pydantic import BaseModel, Field


class MatchConfidence(str, Enum):
    """Confidence tier derived from a similarity score."""

    HIGH = "high"  # score >= high_confidence
    MEDIUM = "medium"  # score >= medium_confidence
    LOW = "low"  # above the inclusion floor only


class RecommendedAction(str, Enum):
    MERGE = "merge"
    REVIEW = "review"
    SEPARATE = "separate"


class SuggestedMergeAction(str, Enum):
    CREATE_NEW = "create_new"
    MERGE_EXISTING = "merge_existing"
    MANUAL_REVIEW = "manual_review"


class MatchTargetType(str, Enum):
    ENTITY = "entity"
    NODE = "node"
    STAGING = "staging"


class DeduplicationConfig(BaseModel):
    """Tuning knobs for one analysis pass."""

    min_confidence_score: float = Field(0.5, ge=0.0, le=1.0)
    high_confidence: float = Field(0.85, ge=0.0, le=1.0)
    medium_confidence: float = Field(0.6, ge=0.0, le=1.0)
    website_domain_weight: float = Field(0.9, ge=0.0, le=1.0)
    enable_domain_clustering: bool = True
    include_batch_peers: bool = True
    max_suggestions: int = Field(5, ge=1)


class DuplicateMatch(BaseModel):
    """A single existing record a staged record resembles."""

    target_id: str
    target_type: MatchTargetType
    target_name: str
    similarity_score: float
    match_reasons: list[str] = Field(default_factory=list)
    confidence_level: MatchConfidence
    recommended_action: RecommendedAction


class MatchResult(BaseModel):
    """Deduplication analysis for one staging record."""

    staging_id: str
    has_duplicates: bool
    duplicate_count: int
    matches: list[DuplicateMatch] = Field(default_factory=list)
    overall_confidence: float
    recommended_action: RecommendedAction
    suggested_entity_id: str | None = None
    suggested_merge_action: SuggestedMergeAction


class AnalyzeDeduplicationRequest(BaseModel):
    """Optional body for an analysis call."""

    config: DeduplicationConfig | None = None
