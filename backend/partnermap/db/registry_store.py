"""RegistryStore - Storage abstraction for entities and nodes."""

import json
import re
import uuid
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import aiosqlite

from partnermap.db.audit_store import append_audit
from partnermap.db.database import get_db, transaction
from partnermap.errors import ConflictError, NotFoundError
from partnermap.models import (
    Entity,
    EntityCreate,
    EntityUpdate,
    Node,
    NodeCategory,
    NodeCreate,
    NodeSearch,
    NodeUpdate,
)

_NODE_SELECT = """
    SELECT n.*, e.master_entity_name AS entity_name
    FROM nodes n JOIN entities e ON e.entity_id = n.entity_id
"""


def _generate_id() -> str:
    """Generate a unique ID."""
    return str(uuid.uuid4())


def _now() -> str:
    """Get current timestamp in ISO format."""
    return datetime.now(UTC).isoformat()


def merge_unique(existing: Iterable[str], additions: Iterable[str]) -> list[str]:
    """Union two string lists, keeping first-seen order.

    Comparison is exact: case and whitespace variants are distinct values.
    Blank strings are dropped.
    """
    merged: list[str] = []
    seen: set[str] = set()
    for value in [*existing, *additions]:
        if not value or not value.strip() or value in seen:
            continue
        seen.add(value)
        merged.append(value)
    return merged


def _values(items: Iterable[Enum | str]) -> list[str]:
    return [item.value if isinstance(item, Enum) else item for item in items]


def _make_node_id(entity_name: str, category: str) -> str:
    """Build a readable node id: <entity>_<category>_<suffix>."""
    clean_entity = re.sub(r"[^a-zA-Z0-9]", "", entity_name).lower() or "entity"
    clean_category = re.sub(r"[^a-zA-Z0-9]", "", category).lower()
    return f"{clean_entity}_{clean_category}_{_generate_id().replace('-', '')[-6:]}"


def _row_to_entity(row: aiosqlite.Row) -> Entity:
    """Convert a database row to an Entity model."""
    return Entity(
        entity_id=row["entity_id"],
        master_entity_name=row["master_entity_name"],
        alternate_names=json.loads(row["alternate_names_json"] or "[]"),
        website=row["website"],
        source_batch_id=row["source_batch_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_node(row: aiosqlite.Row) -> Node:
    """Convert a joined nodes/entities row to a Node model."""
    return Node(
        node_id=row["node_id"],
        node_name=row["node_name"],
        entity_id=row["entity_id"],
        entity_name=row["entity_name"],
        node_category=row["node_category"],
        direction=row["direction"],
        node_aliases=json.loads(row["node_aliases_json"] or "[]"),
        connects_to=json.loads(row["connects_to_json"] or "[]"),
        is_active=bool(row["is_active"]),
        protocols_supported=json.loads(row["protocols_json"] or "[]"),
        data_types_supported=json.loads(row["data_types_json"] or "[]"),
        notes=row["notes"],
        source_batch_id=row["source_batch_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class RegistryStore:
    """Storage abstraction for the entity/node registry.

    Every write method accepts an optional ``conn`` so that several calls can
    share one transaction; without it each call commits on its own.
    """

    # ==================== Entities ====================

    async def create_entity(
        self,
        entity: EntityCreate,
        source_batch_id: str | None = None,
        conn: aiosqlite.Connection | None = None,
    ) -> Entity:
        """Create a new entity."""
        entity_id = _generate_id()
        now = _now()
        alternate_names = merge_unique([], entity.alternate_names)

        async with transaction(conn) as db:
            await db.execute(
                """
                INSERT INTO entities (entity_id, master_entity_name, alternate_names_json, website,
                                      source_batch_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entity_id,
                    entity.master_entity_name,
                    json.dumps(alternate_names),
                    entity.website,
                    source_batch_id,
                    now,
                    now,
                ),
            )
            await append_audit(
                db,
                "ENTITY_CREATE",
                "entity",
                entity_id,
                batch_id=source_batch_id,
                payload={"master_entity_name": entity.master_entity_name},
            )

        return Entity(
            entity_id=entity_id,
            master_entity_name=entity.master_entity_name,
            alternate_names=alternate_names,
            website=entity.website,
            source_batch_id=source_batch_id,
            created_at=now,
            updated_at=now,
        )

    async def get_entity(
        self, entity_id: str, conn: aiosqlite.Connection | None = None
    ) -> Entity | None:
        """Get an entity by ID."""
        db = conn or await get_db()
        cursor = await db.execute("SELECT * FROM entities WHERE entity_id = ?", (entity_id,))
        row = await cursor.fetchone()
        return _row_to_entity(row) if row else None

    async def find_entity_by_name(
        self, name: str, conn: aiosqlite.Connection | None = None
    ) -> Entity | None:
        """Find the oldest entity whose master name matches, ignoring case."""
        db = conn or await get_db()
        cursor = await db.execute(
            """
            SELECT * FROM entities
            WHERE lower(trim(master_entity_name)) = ?
            ORDER BY created_at ASC
            LIMIT 1
            """,
            (name.strip().lower(),),
        )
        row = await cursor.fetchone()
        return _row_to_entity(row) if row else None

    async def list_entities(self, conn: aiosqlite.Connection | None = None) -> list[Entity]:
        """List all entities ordered by name."""
        db = conn or await get_db()
        cursor = await db.execute(
            "SELECT * FROM entities ORDER BY master_entity_name ASC, created_at ASC"
        )
        rows = await cursor.fetchall()
        return [_row_to_entity(row) for row in rows]

    async def update_entity(
        self,
        entity_id: str,
        update: EntityUpdate,
        conn: aiosqlite.Connection | None = None,
    ) -> Entity | None:
        """Apply a partial update to an entity."""
        async with transaction(conn) as db:
            current = await self.get_entity(entity_id, db)
            if current is None:
                return None

            new_name = (
                update.master_entity_name
                if update.master_entity_name is not None
                else current.master_entity_name
            )
            new_aliases = (
                merge_unique([], update.alternate_names)
                if update.alternate_names is not None
                else current.alternate_names
            )
            new_website = update.website if update.website is not None else current.website

            await db.execute(
                """
                UPDATE entities
                SET master_entity_name = ?, alternate_names_json = ?, website = ?, updated_at = ?
                WHERE entity_id = ?
                """,
                (new_name, json.dumps(new_aliases), new_website, _now(), entity_id),
            )
            await append_audit(
                db,
                "ENTITY_UPDATE",
                "entity",
                entity_id,
                payload={"updated_fields": sorted(update.model_dump(exclude_none=True))},
            )
            return await self.get_entity(entity_id, db)

    async def delete_entity(
        self, entity_id: str, conn: aiosqlite.Connection | None = None
    ) -> bool:
        """Delete an entity that owns no nodes."""
        async with transaction(conn) as db:
            cursor = await db.execute(
                "SELECT COUNT(*) FROM nodes WHERE entity_id = ?", (entity_id,)
            )
            row = await cursor.fetchone()
            if row and row[0] > 0:
                raise ConflictError("Cannot delete entity with associated nodes")

            cursor = await db.execute("DELETE FROM entities WHERE entity_id = ?", (entity_id,))
            deleted = cursor.rowcount > 0
            if deleted:
                await append_audit(db, "ENTITY_DELETE", "entity", entity_id)
            return deleted

    async def add_entity_aliases(
        self,
        entity_id: str,
        aliases: Iterable[str],
        conn: aiosqlite.Connection | None = None,
    ) -> Entity | None:
        """Add aliases to an entity without dropping any already stored.

        The read and the write happen under the registry write lock, so two
        concurrent additions to the same entity both survive.
        """
        async with transaction(conn) as db:
            current = await self.get_entity(entity_id, db)
            if current is None:
                return None

            master = current.master_entity_name.strip().lower()
            additions = [a for a in aliases if a.strip().lower() != master]
            merged = merge_unique(current.alternate_names, additions)
            if merged == current.alternate_names:
                return current

            await db.execute(
                "UPDATE entities SET alternate_names_json = ?, updated_at = ? WHERE entity_id = ?",
                (json.dumps(merged), _now(), entity_id),
            )
            await append_audit(
                db,
                "ENTITY_ALIAS_ADD",
                "entity",
                entity_id,
                payload={"added": [a for a in merged if a not in current.alternate_names]},
            )
            return await self.get_entity(entity_id, db)

    async def remove_entity_alias(
        self, entity_id: str, alias: str, conn: aiosqlite.Connection | None = None
    ) -> Entity | None:
        """Remove one alias from an entity."""
        async with transaction(conn) as db:
            current = await self.get_entity(entity_id, db)
            if current is None:
                return None
            if alias not in current.alternate_names:
                return current

            remaining = [a for a in current.alternate_names if a != alias]
            await db.execute(
                "UPDATE entities SET alternate_names_json = ?, updated_at = ? WHERE entity_id = ?",
                (json.dumps(remaining), _now(), entity_id),
            )
            await append_audit(
                db, "ENTITY_ALIAS_REMOVE", "entity", entity_id, payload={"removed": alias}
            )
            return await self.get_entity(entity_id, db)

    async def reassign_nodes(
        self,
        from_entity_id: str,
        to_entity_id: str,
        conn: aiosqlite.Connection | None = None,
    ) -> int:
        """Move every node of one entity under another."""
        async with transaction(conn) as db:
            cursor = await db.execute(
                "UPDATE nodes SET entity_id = ?, updated_at = ? WHERE entity_id = ?",
                (to_entity_id, _now(), from_entity_id),
            )
            return cursor.rowcount

    # ==================== Nodes ====================

    async def create_node(
        self,
        node: NodeCreate,
        source_batch_id: str | None = None,
        conn: aiosqlite.Connection | None = None,
    ) -> Node:
        """Create a node under an existing entity."""
        now = _now()

        async with transaction(conn) as db:
            entity = await self.get_entity(node.entity_id, db)
            if entity is None:
                raise NotFoundError("Entity", node.entity_id)

            node_id = _make_node_id(entity.master_entity_name, node.node_category.value)
            await db.execute(
                """
                INSERT INTO nodes (node_id, node_name, entity_id, node_category, direction,
                                   node_aliases_json, connects_to_json, is_active, protocols_json,
                                   data_types_json, notes, source_batch_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    node_id,
                    node.node_name,
                    node.entity_id,
                    node.node_category.value,
                    node.direction.value,
                    json.dumps(merge_unique([], node.node_aliases)),
                    json.dumps(merge_unique([], node.connects_to)),
                    int(node.is_active),
                    json.dumps(merge_unique([], _values(node.protocols_supported))),
                    json.dumps(merge_unique([], _values(node.data_types_supported))),
                    node.notes,
                    source_batch_id,
                    now,
                    now,
                ),
            )
            await append_audit(
                db,
                "NODE_CREATE",
                "node",
                node_id,
                batch_id=source_batch_id,
                payload={"node_name": node.node_name, "entity_id": node.entity_id},
            )
            created = await self.get_node(node_id, db)
            if created is None:
                raise NotFoundError("Node", node_id)

        return created

    async def get_node(self, node_id: str, conn: aiosqlite.Connection | None = None) -> Node | None:
        """Get a node by ID."""
        db = conn or await get_db()
        cursor = await db.execute(f"{_NODE_SELECT} WHERE n.node_id = ?", (node_id,))
        row = await cursor.fetchone()
        return _row_to_node(row) if row else None

    async def list_nodes(
        self,
        node_category: NodeCategory | None = None,
        conn: aiosqlite.Connection | None = None,
    ) -> list[Node]:
        """List nodes, oldest first, optionally restricted to one category."""
        db = conn or await get_db()
        if node_category is not None:
            cursor = await db.execute(
                f"{_NODE_SELECT} WHERE n.node_category = ? ORDER BY n.created_at ASC, n.node_id ASC",
                (node_category.value,),
            )
        else:
            cursor = await db.execute(f"{_NODE_SELECT} ORDER BY n.created_at ASC, n.node_id ASC")
        rows = await cursor.fetchall()
        return [_row_to_node(row) for row in rows]

    async def list_nodes_by_entity(
        self, entity_id: str, conn: aiosqlite.Connection | None = None
    ) -> list[Node]:
        """List the nodes owned by one entity."""
        db = conn or await get_db()
        cursor = await db.execute(
            f"{_NODE_SELECT} WHERE n.entity_id = ? ORDER BY n.node_name ASC", (entity_id,)
        )
        rows = await cursor.fetchall()
        return [_row_to_node(row) for row in rows]

    async def find_node_under_entity(
        self,
        entity_id: str,
        node_name: str,
        node_category: NodeCategory,
        conn: aiosqlite.Connection | None = None,
    ) -> Node | None:
        """Find a node of an entity by name (ignoring case) and category."""
        db = conn or await get_db()
        cursor = await db.execute(
            f"""
            {_NODE_SELECT}
            WHERE n.entity_id = ? AND n.node_category = ? AND lower(trim(n.node_name)) = ?
            ORDER BY n.created_at ASC
            LIMIT 1
            """,
            (entity_id, node_category.value, node_name.strip().lower()),
        )
        row = await cursor.fetchone()
        return _row_to_node(row) if row else None

    async def update_node(
        self,
        node_id: str,
        update: NodeUpdate,
        conn: aiosqlite.Connection | None = None,
    ) -> Node | None:
        """Apply a partial update to a node."""
        async with transaction(conn) as db:
            current = await self.get_node(node_id, db)
            if current is None:
                return None

            if update.entity_id is not None and update.entity_id != current.entity_id:
                if await self.get_entity(update.entity_id, db) is None:
                    raise NotFoundError("Entity", update.entity_id)

            def pick(new: Any, old: Any) -> Any:
                return new if new is not None else old

            await db.execute(
                """
                UPDATE nodes
                SET node_name = ?, entity_id = ?, node_category = ?, direction = ?,
                    node_aliases_json = ?, connects_to_json = ?, is_active = ?,
                    protocols_json = ?, data_types_json = ?, notes = ?, updated_at = ?
                WHERE node_id = ?
                """,
                (
                    pick(update.node_name, current.node_name),
                    pick(update.entity_id, current.entity_id),
                    pick(update.node_category, current.node_category).value,
                    pick(update.direction, current.direction).value,
                    json.dumps(merge_unique([], pick(update.node_aliases, current.node_aliases))),
                    json.dumps(merge_unique([], pick(update.connects_to, current.connects_to))),
                    int(pick(update.is_active, current.is_active)),
                    json.dumps(
                        merge_unique(
                            [], _values(pick(update.protocols_supported, current.protocols_supported))
                        )
                    ),
                    json.dumps(
                        merge_unique(
                            [],
                            _values(pick(update.data_types_supported, current.data_types_supported)),
                        )
                    ),
                    pick(update.notes, current.notes),
                    _now(),
                    node_id,
                ),
            )
            await append_audit(
                db,
                "NODE_UPDATE",
                "node",
                node_id,
                payload={"updated_fields": sorted(update.model_dump(exclude_none=True))},
            )
            return await self.get_node(node_id, db)

    async def delete_node(self, node_id: str, conn: aiosqlite.Connection | None = None) -> bool:
        """Delete a node. Edges pointing at it are left dangling."""
        async with transaction(conn) as db:
            cursor = await db.execute("DELETE FROM nodes WHERE node_id = ?", (node_id,))
            deleted = cursor.rowcount > 0
            if deleted:
                await append_audit(db, "NODE_DELETE", "node", node_id)
            return deleted

    async def add_node_aliases(
        self,
        node_id: str,
        aliases: Iterable[str],
        conn: aiosqlite.Connection | None = None,
    ) -> Node | None:
        """Add aliases to a node with union semantics."""
        async with transaction(conn) as db:
            current = await self.get_node(node_id, db)
            if current is None:
                return None

            name = current.node_name.strip().lower()
            additions = [a for a in aliases if a.strip().lower() != name]
            merged = merge_unique(current.node_aliases, additions)
            if merged == current.node_aliases:
                return current

            await db.execute(
                "UPDATE nodes SET node_aliases_json = ?, updated_at = ? WHERE node_id = ?",
                (json.dumps(merged), _now(), node_id),
            )
            await append_audit(
                db,
                "NODE_ALIAS_ADD",
                "node",
                node_id,
                payload={"added": [a for a in merged if a not in current.node_aliases]},
            )
            return await self.get_node(node_id, db)

    async def remove_node_alias(
        self, node_id: str, alias: str, conn: aiosqlite.Connection | None = None
    ) -> Node | None:
        """Remove one alias from a node."""
        async with transaction(conn) as db:
            current = await self.get_node(node_id, db)
            if current is None:
                return None
            if alias not in current.node_aliases:
                return current

            remaining = [a for a in current.node_aliases if a != alias]
            await db.execute(
                "UPDATE nodes SET node_aliases_json = ?, updated_at = ? WHERE node_id = ?",
                (json.dumps(remaining), _now(), node_id),
            )
            await append_audit(db, "NODE_ALIAS_REMOVE", "node", node_id, payload={"removed": alias})
            return await self.get_node(node_id, db)

    async def merge_node_attributes(
        self,
        node_id: str,
        connects_to: Iterable[str] = (),
        protocols_supported: Iterable[Enum | str] = (),
        data_types_supported: Iterable[Enum | str] = (),
        conn: aiosqlite.Connection | None = None,
    ) -> Node | None:
        """Union connectivity, protocols and data types into a node."""
        async with transaction(conn) as db:
            current = await self.get_node(node_id, db)
            if current is None:
                return None

            await db.execute(
                """
                UPDATE nodes
                SET connects_to_json = ?, protocols_json = ?, data_types_json = ?, updated_at = ?
                WHERE node_id = ?
                """,
                (
                    json.dumps(
                        [t for t in merge_unique(current.connects_to, connects_to) if t != node_id]
                    ),
                    json.dumps(
                        merge_unique(
                            _values(current.protocols_supported), _values(protocols_supported)
                        )
                    ),
                    json.dumps(
                        merge_unique(
                            _values(current.data_types_supported), _values(data_types_supported)
                        )
                    ),
                    _now(),
                    node_id,
                ),
            )
            return await self.get_node(node_id, db)

    async def redirect_connections(
        self,
        old_ids: set[str],
        new_id: str,
        conn: aiosqlite.Connection | None = None,
    ) -> int:
        """Point every connects_to edge aimed at ``old_ids`` to ``new_id``.

        Returns the number of nodes whose edge list changed.
        """
        changed = 0
        async with transaction(conn) as db:
            cursor = await db.execute("SELECT node_id, connects_to_json FROM nodes")
            rows = await cursor.fetchall()
            for row in rows:
                targets = json.loads(row["connects_to_json"] or "[]")
                if not old_ids.intersection(targets):
                    continue
                redirected = merge_unique(
                    [], (new_id if t in old_ids else t for t in targets)
                )
                redirected = [t for t in redirected if t != row["node_id"]]
                await db.execute(
                    "UPDATE nodes SET connects_to_json = ?, updated_at = ? WHERE node_id = ?",
                    (json.dumps(redirected), _now(), row["node_id"]),
                )
                changed += 1
        return changed

    async def search_nodes(self, filters: NodeSearch) -> list[Node]:
        """Search nodes by enumerated filters and free text."""
        db = await get_db()

        conditions = []
        params: list[Any] = []

        if filters.node_category:
            placeholders = ", ".join("?" for _ in filters.node_category)
            conditions.append(f"n.node_category IN ({placeholders})")
            params.extend(_values(filters.node_category))

        if filters.direction:
            placeholders = ", ".join("?" for _ in filters.direction)
            conditions.append(f"n.direction IN ({placeholders})")
            params.extend(_values(filters.direction))

        if filters.is_active is not None:
            conditions.append("n.is_active = ?")
            params.append(int(filters.is_active))

        if filters.entity_name:
            conditions.append("lower(e.master_entity_name) = ?")
            params.append(filters.entity_name.strip().lower())

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        cursor = await db.execute(
            f"{_NODE_SELECT} WHERE {where_clause} ORDER BY n.node_name ASC", params
        )
        rows = await cursor.fetchall()
        results = [_row_to_node(row) for row in rows]

        # Filters over JSON columns and free text are applied in Python
        if filters.search_text:
            term = filters.search_text.lower()
            results = [
                node
                for node in results
                if term in node.node_name.lower()
                or term in node.entity_name.lower()
                or term in node.notes.lower()
            ]

        if filters.protocols_supported:
            wanted = set(_values(filters.protocols_supported))
            results = [n for n in results if wanted.intersection(_values(n.protocols_supported))]

        if filters.data_types_supported:
            wanted = set(_values(filters.data_types_supported))
            results = [n for n in results if wanted.intersection(_values(n.data_types_supported))]

        return results

    # ==================== Provenance ====================

    async def delete_batch_records(
        self, batch_id: str, conn: aiosqlite.Connection | None = None
    ) -> tuple[int, int, int]:
        """Delete every node and entity created by a batch.

        Only records whose provenance is the batch are deleted. An entity the
        batch created that still owns nodes from elsewhere (manual, or filed by
        a later batch) is kept and loses its provenance instead.
        Returns (nodes_deleted, entities_deleted, entities_kept).
        """
        async with transaction(conn) as db:
            cursor = await db.execute("DELETE FROM nodes WHERE source_batch_id = ?", (batch_id,))
            nodes_deleted = cursor.rowcount

            cursor = await db.execute(
                """
                UPDATE entities
                SET source_batch_id = NULL, updated_at = ?
                WHERE source_batch_id = ?
                  AND EXISTS (SELECT 1 FROM nodes n WHERE n.entity_id = entities.entity_id)
                """,
                (_now(), batch_id),
            )
            entities_kept = cursor.rowcount

            cursor = await db.execute(
                "DELETE FROM entities WHERE source_batch_id = ?", (batch_id,)
            )
            entities_deleted = cursor.rowcount

            return nodes_deleted, entities_deleted, entities_kept


# Global instance
registry_store = RegistryStore()
