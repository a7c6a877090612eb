"""Pydantic models for operator decisions on staging records."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from partnermap.models.batch import StagingStatus
from partnermap.models.node import Direction, NodeCategory


class DecisionAction(str, Enum):
    """What to do with a staging record."""

    APPROVE_NEW = "approve_new"
    MERGE_WITH_ENTITY = "merge_with_entity"
    MERGE_WITH_NODE = "merge_with_node"
    REJECT = "reject"


# Terminal staging status reached by each action
ACTION_OUTCOMES: dict[DecisionAction, StagingStatus] = {
    DecisionAction.APPROVE_NEW: StagingStatus.APPROVED_NEW,
    DecisionAction.MERGE_WITH_ENTITY: StagingStatus.MERGED_ENTITY,
    DecisionAction.MERGE_WITH_NODE: StagingStatus.MERGED_NODE,
    DecisionAction.REJECT: StagingStatus.REJECTED,
}


class StagingEdits(BaseModel):
    """Operator overrides applied to a staging record before it is committed."""

    node_name: str | None = None
    entity_name: str | None = None
    website: str | None = None
    node_category: NodeCategory | None = None
    direction: Direction | None = None
    notes: str | None = None


class Decision(BaseModel):
    """One decision for one staging record."""

    model_config = ConfigDict(populate_by_name=True)

    staging_id: str = Field(alias="stagingId")
    action: DecisionAction
    target_id: str | None = Field(default=None, alias="targetId")
    manual_edits: StagingEdits | None = Field(default=None, alias="manualEdits")


class ProcessDecisionsRequest(BaseModel):
    decisions: list[Decision]


class DecisionFailure(BaseModel):
    """A decision that could not be applied."""

    staging_id: str
    reason: str


class ProcessDecisionsResponse(BaseModel):
    """Per-call summary: how many decisions were applied and which failed."""

    processed: int
    errors: list[DecisionFailure] = Field(default_factory=list)
