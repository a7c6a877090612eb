"""Pytest configuration and fixtures."""

import os
import tempfile
from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

from partnermap.db.database import close_database, init_database
from partnermap.db.registry_store import registry_store
from partnermap.main import app
from partnermap.models import (
    Direction,
    Entity,
    EntityCreate,
    Node,
    NodeCategory,
    NodeCreate,
)

SAMPLE_HEADER = (
    "node_name,website,entity_name,node_category,direction,notes,"
    "connect_targets,protocols_supported,data_types_supported"
)


@pytest.fixture(autouse=True)
async def setup_test_db():
    """Set up a test database for each test."""
    # Create a temporary database file
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    # Initialize the database
    await init_database(db_path)

    yield

    # Clean up
    await close_database()
    os.unlink(db_path)


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


@pytest.fixture
def make_csv():
    """Build CSV text with the standard header from row strings."""

    def _make(*rows: str) -> str:
        return "\n".join([SAMPLE_HEADER, *rows]) + "\n"

    return _make


@pytest.fixture
async def acme_entity() -> Entity:
    return await registry_store.create_entity(
        EntityCreate(master_entity_name="Acme Hospitality", website="acme.com")
    )


@pytest.fixture
async def acme_pms(acme_entity: Entity) -> Node:
    return await registry_store.create_node(
        NodeCreate(
            node_name="Acme PMS",
            entity_id=acme_entity.entity_id,
            node_category=NodeCategory.PMS,
            direction=Direction.SUPPLY,
        )
    )
