"""Registry API routes for entities, nodes and their aliases."""

from fastapi import APIRouter, HTTPException, Query

from partnermap.api.errors import http_error
from partnermap.db.registry_store import registry_store
from partnermap.errors import PartnerMapError
from partnermap.models import (
    AliasChange,
    Entity,
    EntityCreate,
    EntityUpdate,
    Node,
    NodeCategory,
    NodeCreate,
    NodeSearch,
    NodeUpdate,
)

router = APIRouter()


# =============================================================================
# Entities
# =============================================================================


@router.post("/entities", response_model=Entity, status_code=201)
async def create_entity(entity: EntityCreate) -> Entity:
    try:
        return await registry_store.create_entity(entity)
    except PartnerMapError as e:
        raise http_error(e) from e


@router.get("/entities", response_model=list[Entity])
async def list_entities() -> list[Entity]:
    """List all entities ordered by name."""
    try:
        return await registry_store.list_entities()
    except PartnerMapError as e:
        raise http_error(e) from e


@router.get("/entities/{entity_id}", response_model=Entity)
async def get_entity(entity_id: str) -> Entity:
    try:
        entity = await registry_store.get_entity(entity_id)
    except PartnerMapError as e:
        raise http_error(e) from e
    if entity is None:
        raise HTTPException(status_code=404, detail="Entity not found")
    return entity


@router.patch("/entities/{entity_id}", response_model=Entity, operation_id="updateEntity")
async def update_entity(entity_id: str, update: EntityUpdate) -> Entity:
    """Apply a partial update to an entity."""
    try:
        entity = await registry_store.update_entity(entity_id, update)
    except PartnerMapError as e:
        raise http_error(e) from e
    if entity is None:
        raise HTTPException(status_code=404, detail="Entity not found")
    return entity


@router.delete("/entities/{entity_id}")
async def delete_entity(entity_id: str) -> dict[str, bool]:
    """Delete an entity. Refused while the entity still owns nodes."""
    try:
        deleted = await registry_store.delete_entity(entity_id)
    except PartnerMapError as e:
        raise http_error(e) from e
    if not deleted:
        raise HTTPException(status_code=404, detail="Entity not found")
    return {"deleted": True}


@router.get("/entities/{entity_id}/nodes", response_model=list[Node])
async def list_entity_nodes(entity_id: str) -> list[Node]:
    try:
        if await registry_store.get_entity(entity_id) is None:
            raise HTTPException(status_code=404, detail="Entity not found")
        return await registry_store.list_nodes_by_entity(entity_id)
    except PartnerMapError as e:
        raise http_error(e) from e


@router.post("/entities/{entity_id}/aliases", response_model=Entity)
async def add_entity_alias(entity_id: str, change: AliasChange) -> Entity:
    try:
        entity = await registry_store.add_entity_aliases(entity_id, [change.alias])
    except PartnerMapError as e:
        raise http_error(e) from e
    if entity is None:
        raise HTTPException(status_code=404, detail="Entity not found")
    return entity


@router.delete("/entities/{entity_id}/aliases/{alias}", response_model=Entity)
async def remove_entity_alias(entity_id: str, alias: str) -> Entity:
    try:
        entity = await registry_store.remove_entity_alias(entity_id, alias)
    except PartnerMapError as e:
        raise http_error(e) from e
    if entity is None:
        raise HTTPException(status_code=404, detail="Entity not found")
    return entity


# =============================================================================
# Nodes
# =============================================================================


@router.post("/nodes", response_model=Node, status_code=201)
async def create_node(node: NodeCreate) -> Node:
    """Create a node under an existing entity."""
    try:
        return await registry_store.create_node(node)
    except PartnerMapError as e:
        raise http_error(e) from e


@router.get("/nodes", response_model=list[Node])
async def list_nodes(
    node_category: NodeCategory | None = Query(None, description="Filter by category"),
) -> list[Node]:
    try:
        return await registry_store.list_nodes(node_category)
    except PartnerMapError as e:
        raise http_error(e) from e


@router.post("/nodes/search", response_model=list[Node])
async def search_nodes(filters: NodeSearch) -> list[Node]:
    """Search nodes by category, direction, protocol, data type, status and text."""
    try:
        return await registry_store.search_nodes(filters)
    except PartnerMapError as e:
        raise http_error(e) from e


@router.get("/nodes/{node_id}", response_model=Node)
async def get_node(node_id: str) -> Node:
    try:
        node = await registry_store.get_node(node_id)
    except PartnerMapError as e:
        raise http_error(e) from e
    if node is None:
        raise HTTPException(status_code=404, detail="Node not found")
    return node


@router.patch("/nodes/{node_id}", response_model=Node, operation_id="updateNode")
async def update_node(node_id: str, update: NodeUpdate) -> Node:
    """Apply a partial update to a node."""
    try:
        node = await registry_store.update_node(node_id, update)
    except PartnerMapError as e:
        raise http_error(e) from e
    if node is None:
        raise HTTPException(status_code=404, detail="Node not found")
    return node


@router.delete("/nodes/{node_id}")
async def delete_node(node_id: str) -> dict[str, bool]:
    try:
        deleted = await registry_store.delete_node(node_id)
    except PartnerMapError as e:
        raise http_error(e) from e
    if not deleted:
        raise HTTPException(status_code=404, detail="Node not found")
    return {"deleted": True}


@router.post("/nodes/{node_id}/aliases", response_model=Node)
async def add_node_alias(node_id: str, change: AliasChange) -> Node:
    try:
        node = await registry_store.add_node_aliases(node_id, [change.alias])
    except PartnerMapError as e:
        raise http_error(e) from e
    if node is None:
        raise HTTPException(status_code=404, detail="Node not found")
    return node


@router.delete("/nodes/{node_id}/aliases/{alias}", response_model=Node)
async def remove_node_alias(node_id: str, alias: str) -> Node:
    try:
        node = await registry_store.remove_node_alias(node_id, alias)
    except PartnerMapError as e:
        raise http_error(e) from e
    if node is None:
        raise HTTPException(status_code=404, detail="Node not found")
    return node
