"""End-to-end tests through the HTTP API."""

from httpx import AsyncClient

from partnermap.db import batch_store, database

API = "/api/v1"


async def _upload(client: AsyncClient, csv_content: str, **extra) -> dict:
    response = await client.post(f"{API}/batches", json={"csv_content": csv_content, **extra})
    assert response.status_code == 201, response.text
    return response.json()


async def _registry_counts(client: AsyncClient) -> tuple[int, int]:
    entities = (await client.get(f"{API}/entities")).json()
    nodes = (await client.get(f"{API}/nodes")).json()
    return len(entities), len(nodes)


class TestHealth:
    async def test_health(self, client: AsyncClient):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "registry": "ok"}

    async def test_unhealthy_without_registry(self, client: AsyncClient):
        await database.close_database()
        try:
            response = await client.get("/health")
        finally:
            await database.init_database(":memory:")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"


class TestBatchFlow:
    """Upload, analyze, decide and roll back through the API."""

    async def test_same_domain_rows_are_flagged(self, client: AsyncClient, make_csv):
        upload = await _upload(
            client,
            make_csv(
                "Example Hotel PMS,example-hotel.com,Example Hotel,PMS,Supply,,,,",
                "Example Hotels PMS,example-hotel.com,Example Hotels,PMS,Supply,,,,",
            ),
        )
        assert upload["valid_rows"] == 2

        response = await client.post(f"{API}/batches/{upload['batch_id']}/deduplication")
        assert response.status_code == 200
        results = response.json()

        flagged = [r for r in results if r["has_duplicates"]]
        assert len(flagged) == 1
        assert flagged[0]["recommended_action"] in ("merge", "review")
        assert any(
            "same_domain" in m["match_reasons"] for m in flagged[0]["matches"]
        )

    async def test_analysis_config_body(self, client: AsyncClient, make_csv):
        upload = await _upload(
            client,
            make_csv(
                "Example Hotel PMS,example-hotel.com,Example Hotel,PMS,Supply,,,,",
                "Example Hotels PMS,example-hotel.com,Example Hotels,PMS,Supply,,,,",
            ),
        )

        response = await client.post(
            f"{API}/batches/{upload['batch_id']}/deduplication",
            json={"config": {"include_batch_peers": False}},
        )

        assert response.status_code == 200
        assert all(not r["has_duplicates"] for r in response.json())

    async def test_reject_leaves_registry_unchanged(self, client: AsyncClient, make_csv):
        upload = await _upload(client, make_csv("Acme PMS,acme.com,Acme,PMS,Supply,,,,"))
        before = await _registry_counts(client)

        response = await client.post(
            f"{API}/deduplication/decisions",
            json={
                "decisions": [
                    {"stagingId": upload["staging_nodes"][0]["id"], "action": "reject"}
                ]
            },
        )

        assert response.status_code == 200
        assert response.json() == {"processed": 1, "errors": []}
        assert await _registry_counts(client) == before

        staging = await client.get(
            f"{API}/batches/{upload['batch_id']}/staging", params={"status": "rejected"}
        )
        assert len(staging.json()) == 1

    async def test_approve_then_rollback(self, client: AsyncClient, make_csv):
        upload = await _upload(
            client,
            make_csv("Acme PMS,acme.com,Acme,PMS,Supply,,,,"),
            batchName="Weekly import",
        )
        batch_id = upload["batch_id"]

        decided = await client.post(
            f"{API}/deduplication/decisions",
            json={
                "decisions": [
                    {"staging_id": upload["staging_nodes"][0]["id"], "action": "approve_new"}
                ]
            },
        )
        assert decided.json()["processed"] == 1
        assert await _registry_counts(client) == (1, 1)

        response = await client.post(f"{API}/batches/{batch_id}/rollback")

        assert response.status_code == 200
        assert response.json()["nodes_deleted"] == 1
        assert response.json()["entities_deleted"] == 1
        assert await _registry_counts(client) == (0, 0)

        batch = (await client.get(f"{API}/batches/{batch_id}")).json()
        assert batch["batch_name"] == "Weekly import"
        assert batch["status"] == "rolled_back"

        again = await client.post(f"{API}/batches/{batch_id}/rollback")
        assert again.status_code == 409

    async def test_rollback_pending_batch_conflicts(self, client: AsyncClient):
        batch = await batch_store.create_batch("stuck")

        response = await client.post(f"{API}/batches/{batch.batch_id}/rollback")

        assert response.status_code == 409
        assert "pending" in response.json()["detail"]

    async def test_cancel_pending_batch(self, client: AsyncClient):
        batch = await batch_store.create_batch("stuck")

        response = await client.patch(
            f"{API}/batches/{batch.batch_id}",
            json={"status": "cancelled", "processingNotes": "abandoned"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["processing_notes"] == "abandoned"

    async def test_malformed_upload(self, client: AsyncClient):
        response = await client.post(f"{API}/batches", json={"csvContent": "a,b\n1,2\n"})

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["message"].startswith("Missing required headers")

        batch = (await client.get(f"{API}/batches/{detail['batch_id']}")).json()
        assert batch["status"] == "error"

    async def test_batch_logs_newest_first(self, client: AsyncClient, make_csv):
        first = await _upload(client, make_csv("Acme PMS,acme.com,Acme,PMS,Supply,,,,"))
        second = await _upload(client, make_csv("Beta CRS,beta.io,Beta,CRS,Demand,,,,"))

        logs = (await client.get(f"{API}/batches")).json()

        assert [b["batch_id"] for b in logs] == [second["batch_id"], first["batch_id"]]

    async def test_unknown_batch(self, client: AsyncClient):
        assert (await client.get(f"{API}/batches/missing")).status_code == 404
        assert (await client.get(f"{API}/batches/missing/staging")).status_code == 404
        assert (await client.post(f"{API}/batches/missing/deduplication")).status_code == 404
        assert (await client.post(f"{API}/batches/missing/rollback")).status_code == 404


class TestRegistryRoutes:
    """Entity and node routes."""

    async def test_entity_lifecycle(self, client: AsyncClient):
        created = await client.post(
            f"{API}/entities", json={"master_entity_name": "Acme", "website": "acme.com"}
        )
        assert created.status_code == 201
        entity_id = created.json()["entity_id"]

        updated = await client.patch(
            f"{API}/entities/{entity_id}", json={"master_entity_name": "Acme Group"}
        )
        assert updated.json()["master_entity_name"] == "Acme Group"
        assert updated.json()["website"] == "acme.com"

        aliased = await client.post(f"{API}/entities/{entity_id}/aliases", json={"alias": "ACME"})
        assert aliased.json()["alternate_names"] == ["ACME"]

        removed = await client.delete(f"{API}/entities/{entity_id}/aliases/ACME")
        assert removed.json()["alternate_names"] == []

        deleted = await client.delete(f"{API}/entities/{entity_id}")
        assert deleted.json() == {"deleted": True}
        assert (await client.get(f"{API}/entities/{entity_id}")).status_code == 404

    async def test_entity_with_nodes_cannot_be_deleted(self, client: AsyncClient, acme_pms):
        response = await client.delete(f"{API}/entities/{acme_pms.entity_id}")
        assert response.status_code == 409

    async def test_node_routes(self, client: AsyncClient, acme_pms):
        updated = await client.patch(
            f"{API}/nodes/{acme_pms.node_id}",
            json={"is_active": False, "protocols_supported": ["PushAPI"]},
        )
        assert updated.status_code == 200
        assert updated.json()["is_active"] is False
        assert updated.json()["protocols_supported"] == ["PushAPI"]

        search = await client.post(
            f"{API}/nodes/search", json={"is_active": False, "node_category": ["PMS"]}
        )
        assert [n["node_id"] for n in search.json()] == [acme_pms.node_id]

        by_entity = await client.get(f"{API}/entities/{acme_pms.entity_id}/nodes")
        assert [n["node_name"] for n in by_entity.json()] == ["Acme PMS"]

        filtered = await client.get(f"{API}/nodes", params={"node_category": "CRS"})
        assert filtered.json() == []

    async def test_node_under_unknown_entity(self, client: AsyncClient):
        response = await client.post(
            f"{API}/nodes",
            json={
                "node_name": "Orphan",
                "entity_id": "missing",
                "node_category": "PMS",
                "direction": "Supply",
            },
        )
        assert response.status_code == 404

    async def test_unknown_node(self, client: AsyncClient):
        assert (await client.get(f"{API}/nodes/missing")).status_code == 404
        assert (await client.patch(f"{API}/nodes/missing", json={})).status_code == 404


class TestConsolidationRoutes:
    """Merge groups, alias suggestions and the audit trail."""

    async def test_merge_group_round(self, client: AsyncClient):
        for name in ("Acme Hotels", "Acme Hotel"):
            await client.post(f"{API}/entities", json={"master_entity_name": name})

        groups = (await client.get(f"{API}/merge-groups", params={"kind": "entity"})).json()
        assert len(groups) == 1
        group = groups[0]

        response = await client.post(
            f"{API}/merge-groups/apply",
            json={
                "master_type": "entity",
                "master_id": group["master_id"],
                "candidate_ids": [c["id"] for c in group["candidates"]],
            },
        )

        assert response.status_code == 200
        assert response.json()["canonical_name"] == "Acme Hotel"
        entities = (await client.get(f"{API}/entities")).json()
        assert [e["master_entity_name"] for e in entities] == ["Acme Hotel"]

        audit = (await client.get(f"{API}/audit", params={"resource_id": group["master_id"]})).json()
        assert "ENTITY_MERGE" in [e["action"] for e in audit]

    async def test_self_merge_conflicts(self, client: AsyncClient, acme_entity):
        response = await client.post(
            f"{API}/merge-groups/apply",
            json={
                "master_type": "entity",
                "master_id": acme_entity.entity_id,
                "candidate_ids": [acme_entity.entity_id],
            },
        )
        assert response.status_code == 409

    async def test_alias_suggestions(self, client: AsyncClient, acme_pms):
        response = await client.get(f"{API}/alias-suggestions", params={"limit": 1})

        assert response.status_code == 200
        suggestions = response.json()
        assert len(suggestions) == 1
        assert suggestions[0]["source"] == "domain_analysis"


class TestRegistryUnavailable:
    async def test_retriable_error(self, client: AsyncClient):
        await database.close_database()
        try:
            response = await client.get(f"{API}/entities")
        finally:
            await database.init_database(":memory:")

        assert response.status_code == 503
        assert response.json()["detail"]["retriable"] is True
