"""SQLite database connection, schema initialization and write transactions."""

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from partnermap.errors import RegistryUnavailableError

logger = logging.getLogger(__name__)

# Global connection holder
_db_connection: aiosqlite.Connection | None = None

# All writes share the single connection, so they are serialized here
_write_lock: asyncio.Lock | None = None


async def init_database(db_path: str) -> None:
    """Initialize the database connection and create schema."""
    global _db_connection, _write_lock

    # Ensure the data directory exists
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    _db_connection = await aiosqlite.connect(db_path)
    _db_connection.row_factory = aiosqlite.Row
    _write_lock = asyncio.Lock()

    # Enable foreign keys
    await _db_connection.execute("PRAGMA foreign_keys = ON")

    # Create schema
    await _create_schema(_db_connection)


async def close_database() -> None:
    """Close the database connection."""
    global _db_connection, _write_lock
    if _db_connection:
        await _db_connection.close()
        _db_connection = None
        _write_lock = None


async def get_db() -> aiosqlite.Connection:
    """Get the database connection."""
    if _db_connection is None:
        raise RegistryUnavailableError("Database not initialized. Call init_database first.")
    return _db_connection


def _get_write_lock() -> asyncio.Lock:
    if _write_lock is None:
        raise RegistryUnavailableError("Database not initialized. Call init_database first.")
    return _write_lock


@asynccontextmanager
async def transaction(
    conn: aiosqlite.Connection | None = None,
) -> AsyncIterator[aiosqlite.Connection]:
    """Run a block of writes atomically.

    Passing the connection of an enclosing transaction joins it instead of
    opening a new one, so helpers can be composed into one atomic unit.
    """
    if conn is not None:
        yield conn
        return

    db = await get_db()
    async with _get_write_lock():
        try:
            yield db
            await db.commit()
        except sqlite3.OperationalError as e:
            await db.rollback()
            logger.error(f"Registry write failed: {e}")
            raise RegistryUnavailableError(str(e)) from e
        except BaseException:
            await db.rollback()
            raise


async def _create_schema(db: aiosqlite.Connection) -> None:
    """Create database tables and indexes."""
    # Entities table
    await db.execute("""
        CREATE TABLE IF NOT EXISTS entities (
            entity_id TEXT PRIMARY KEY,
            master_entity_name TEXT NOT NULL,
            alternate_names_json TEXT NOT NULL DEFAULT '[]',
            website TEXT NOT NULL DEFAULT '',
            source_batch_id TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    # Nodes table
    await db.execute("""
        CREATE TABLE IF NOT EXISTS nodes (
            node_id TEXT PRIMARY KEY,
            node_name TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            node_category TEXT NOT NULL,
            direction TEXT NOT NULL,
            node_aliases_json TEXT NOT NULL DEFAULT '[]',
            connects_to_json TEXT NOT NULL DEFAULT '[]',
            is_active INTEGER NOT NULL DEFAULT 1,
            protocols_json TEXT NOT NULL DEFAULT '[]',
            data_types_json TEXT NOT NULL DEFAULT '[]',
            notes TEXT NOT NULL DEFAULT '',
            source_batch_id TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now')),
            FOREIGN KEY (entity_id) REFERENCES entities(entity_id) ON DELETE CASCADE
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_nodes_entity
        ON nodes(entity_id, node_name)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_nodes_category
        ON nodes(node_category)
    """)

    # Provenance lookups for rollback
    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_nodes_source_batch
        ON nodes(source_batch_id)
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_entities_source_batch
        ON entities(source_batch_id)
    """)

    # =========================================================================
    # Batches and Staging
    # =========================================================================
    await db.execute("""
        CREATE TABLE IF NOT EXISTS batch_logs (
            batch_id TEXT PRIMARY KEY,
            batch_name TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            total_records INTEGER NOT NULL DEFAULT 0,
            processed_records INTEGER NOT NULL DEFAULT 0,
            error_records INTEGER NOT NULL DEFAULT 0,
            error_report_json TEXT,
            processing_notes TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            updated_at TEXT NOT NULL DEFAULT (datetime('now')),
            completed_at TEXT
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_batch_logs_created
        ON batch_logs(created_at)
    """)

    await db.execute("""
        CREATE TABLE IF NOT EXISTS staging_nodes (
            id TEXT PRIMARY KEY,
            batch_id TEXT NOT NULL,
            row_number INTEGER NOT NULL DEFAULT 0,
            node_name TEXT NOT NULL,
            entity_name TEXT NOT NULL,
            website TEXT NOT NULL DEFAULT '',
            node_category TEXT NOT NULL,
            direction TEXT NOT NULL,
            notes TEXT NOT NULL DEFAULT '',
            connect_targets_json TEXT NOT NULL DEFAULT '[]',
            protocols_json TEXT NOT NULL DEFAULT '[]',
            data_types_json TEXT NOT NULL DEFAULT '[]',
            extracted_tags_json TEXT NOT NULL DEFAULT '[]',
            confidence_score REAL NOT NULL DEFAULT 0,
            duplicate_matches_json TEXT NOT NULL DEFAULT '[]',
            original_data_json TEXT NOT NULL DEFAULT '{}',
            status TEXT NOT NULL DEFAULT 'pending',
            resolved_entity_id TEXT,
            resolved_node_id TEXT,
            created_at TEXT NOT NULL DEFAULT (datetime('now')),
            decided_at TEXT,
            FOREIGN KEY (batch_id) REFERENCES batch_logs(batch_id) ON DELETE CASCADE
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_staging_batch
        ON staging_nodes(batch_id, row_number)
    """)

    # =========================================================================
    # Audit Trail
    # =========================================================================
    await db.execute("""
        CREATE TABLE IF NOT EXISTS audit_logs (
            id TEXT PRIMARY KEY,
            action TEXT NOT NULL,
            resource_type TEXT NOT NULL,
            resource_id TEXT NOT NULL,
            batch_id TEXT,
            payload_json TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL DEFAULT (datetime('now'))
        )
    """)

    await db.execute("""
        CREATE INDEX IF NOT EXISTS idx_audit_created
        ON audit_logs(created_at)
    """)

    await db.commit()
