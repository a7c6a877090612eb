"""Models for consolidating near-duplicate records already in the registry."""

from enum import Enum

from pydantic import BaseModel, Field

from partnermap.models.node import NodeCategory


class RecordType(str, Enum):
    ENTITY = "entity"
    NODE = "node"


class MergeCandidate(BaseModel):
    """A record proposed for absorption into a group's master."""

    id: str
    type: RecordType
    name: str
    category: NodeCategory | None = None
    website: str | None = None
    aliases: list[str] = Field(default_factory=list)
    similarity: float
    reasons: list[str] = Field(default_factory=list)


class MergeGroup(BaseModel):
    """A master record plus the similar records proposed for merging into it.

    Derived on every analysis pass and never stored.
    """

    master_id: str
    master_name: str
    master_type: RecordType
    candidates: list[MergeCandidate]
    proposed_canonical_name: str
    proposed_aliases: list[str]
    confidence_score: float


class ApplyMergeRequest(BaseModel):
    """Request to fold candidates into a master record."""

    master_type: RecordType
    master_id: str
    candidate_ids: list[str] = Field(..., min_length=1)
    canonical_name: str | None = None


class ApplyMergeResult(BaseModel):
    master_id: str
    canonical_name: str
    aliases: list[str]
    absorbed_ids: list[str]
    nodes_reassigned: int = 0
    edges_redirected: int = 0


class AliasSuggestion(BaseModel):
    """A proposed alias for an entity or node."""

    type: RecordType
    target_id: str
    target_name: str
    suggested_alias: str
    source: str
    confidence: float
    reason: str


class AliasChange(BaseModel):
    alias: str = Field(..., min_length=1)
