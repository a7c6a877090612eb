"""Pydantic models for Entity instances."""

from pydantic import BaseModel, Field


class EntityCreate(BaseModel):
    """Request model for creating an entity."""

    master_entity_name: str = Field(..., min_length=1)
    alternate_names: list[str] = Field(default_factory=list)
    website: str = ""


class EntityUpdate(BaseModel):
    """Request model for a partial entity update."""

    master_entity_name: str | None = None
    alternate_names: list[str] | None = None
    website: str | None = None


class Entity(BaseModel):
    """A real-world organization and the consolidation unit for its nodes."""

    entity_id: str
    master_entity_name: str
    alternate_names: list[str] = Field(default_factory=list)
    website: str = ""
    source_batch_id: str | None = None
    created_at: str
    updated_at: str
