"""Tests for registry consolidation: merge groups and merge application."""

import pytest

from partnermap.db.audit_store import list_audit
from partnermap.db.registry_store import registry_store
from partnermap.errors import ConflictError, NotFoundError
from partnermap.models import (
    ApplyMergeRequest,
    DataTypeSupported,
    Direction,
    EntityCreate,
    NodeCategory,
    NodeCreate,
    RecordType,
)
from partnermap.services.consolidation import (
    apply_merge,
    build_merge_groups,
    entity_merge_reasons,
    find_merge_groups,
    merge_group_threshold,
)


async def _entity(name: str, website: str = "", aliases=None):
    return await registry_store.create_entity(
        EntityCreate(master_entity_name=name, website=website, alternate_names=aliases or [])
    )


async def _node(entity_id: str, name: str, category=NodeCategory.PMS, **kwargs):
    return await registry_store.create_node(
        NodeCreate(
            node_name=name,
            entity_id=entity_id,
            node_category=category,
            direction=Direction.SUPPLY,
            **kwargs,
        )
    )


class TestMergeGroupThreshold:
    def test_default(self, monkeypatch):
        monkeypatch.delenv("MERGE_GROUP_THRESHOLD", raising=False)
        assert merge_group_threshold() == 0.7

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("MERGE_GROUP_THRESHOLD", "0.9")
        assert merge_group_threshold() == 0.9


class TestFindMergeGroups:
    """Tests for merge group discovery."""

    async def test_entity_group(self):
        candidate = await _entity("Acme Hotels", website="acme.com")
        # Listed by name, so the shorter name is visited first
        master = await _entity("Acme Hotel", website="https://www.acme.com")
        await _entity("Zenith Travel")

        groups = await find_merge_groups(RecordType.ENTITY)

        assert len(groups) == 1
        group = groups[0]
        assert group.master_id == master.entity_id
        assert group.master_type == RecordType.ENTITY
        assert [c.id for c in group.candidates] == [candidate.entity_id]
        assert group.candidates[0].reasons == ["Same domain", "1 common word"]
        assert group.proposed_canonical_name == "Acme Hotel"
        assert group.proposed_aliases == ["Acme Hotels"]
        assert group.confidence_score == pytest.approx(1 - 1 / 11)

    async def test_nodes_grouped_within_category(self, acme_entity):
        pms = await _node(acme_entity.entity_id, "Acme PMS")
        await _node(acme_entity.entity_id, "Acme PMS", category=NodeCategory.CRS)
        dup = await _node(acme_entity.entity_id, "Acme PMS.")

        groups = await find_merge_groups(RecordType.NODE)

        assert len(groups) == 1
        assert groups[0].master_id == pms.node_id
        assert [c.id for c in groups[0].candidates] == [dup.node_id]
        assert groups[0].candidates[0].reasons == ["Same category", "Same entity"]
        assert groups[0].proposed_canonical_name == "Acme PMS"

    async def test_kind_filter(self, acme_entity):
        await _entity("Acme Hospitality.")
        await _node(acme_entity.entity_id, "Acme PMS")
        await _node(acme_entity.entity_id, "Acme PMS2")

        entity_groups = await find_merge_groups(RecordType.ENTITY)
        node_groups = await find_merge_groups(RecordType.NODE)
        all_groups = await find_merge_groups()

        assert [g.master_type for g in entity_groups] == [RecordType.ENTITY]
        assert [g.master_type for g in node_groups] == [RecordType.NODE]
        assert len(all_groups) == 2

    def test_no_groups_for_distinct_names(self):
        assert build_merge_groups([], []) == []


class TestEntityMergeReasons:
    async def test_plural_common_words(self):
        left = await _entity("Grand Hotel Group")
        right = await _entity("Grand Hotel Groups")
        assert entity_merge_reasons(left, right) == ["2 common words"]


class TestApplyEntityMerge:
    """Tests for folding entities together."""

    async def test_nodes_move_to_master(self):
        master = await _entity("Acme Hotels", aliases=["AH"])
        candidate = await _entity("Acme Hotel", website="acme.com", aliases=["Acme"])
        node = await _node(candidate.entity_id, "Acme PMS")

        result = await apply_merge(
            ApplyMergeRequest(
                master_type=RecordType.ENTITY,
                master_id=master.entity_id,
                candidate_ids=[candidate.entity_id],
            )
        )

        assert result.canonical_name == "Acme Hotel"
        assert result.aliases == ["Acme Hotels", "AH", "Acme"]
        assert result.absorbed_ids == [candidate.entity_id]
        assert result.nodes_reassigned == 1

        assert await registry_store.get_entity(candidate.entity_id) is None
        merged = await registry_store.get_entity(master.entity_id)
        assert merged.master_entity_name == "Acme Hotel"
        assert merged.website == "acme.com"
        moved = await registry_store.get_node(node.node_id)
        assert moved.entity_id == master.entity_id

    async def test_explicit_canonical_name(self):
        master = await _entity("Acme Hotels")
        candidate = await _entity("ACME Hotels")

        result = await apply_merge(
            ApplyMergeRequest(
                master_type=RecordType.ENTITY,
                master_id=master.entity_id,
                candidate_ids=[candidate.entity_id],
                canonical_name="Acme Hotel Group",
            )
        )

        assert result.canonical_name == "Acme Hotel Group"
        assert result.aliases == ["Acme Hotels", "ACME Hotels"]

    async def test_master_cannot_be_candidate(self, acme_entity):
        with pytest.raises(ConflictError):
            await apply_merge(
                ApplyMergeRequest(
                    master_type=RecordType.ENTITY,
                    master_id=acme_entity.entity_id,
                    candidate_ids=[acme_entity.entity_id],
                )
            )

    async def test_unknown_candidate_changes_nothing(self, acme_entity):
        other = await _entity("Acme Hotel")

        with pytest.raises(NotFoundError):
            await apply_merge(
                ApplyMergeRequest(
                    master_type=RecordType.ENTITY,
                    master_id=acme_entity.entity_id,
                    candidate_ids=[other.entity_id, "missing"],
                )
            )

        assert await registry_store.get_entity(other.entity_id) is not None


class TestApplyNodeMerge:
    """Tests for folding nodes together."""

    async def test_attributes_and_edges(self, acme_entity, acme_pms):
        dup = await _node(
            acme_entity.entity_id,
            "Acme PMS Cloud",
            node_aliases=["APC"],
            data_types_supported=[DataTypeSupported.RATES],
            connects_to=["ext-1", acme_pms.node_id],
        )
        upstream = await _node(
            acme_entity.entity_id,
            "Acme Channel",
            category=NodeCategory.CM,
            connects_to=[dup.node_id, "ext-2"],
        )

        result = await apply_merge(
            ApplyMergeRequest(
                master_type=RecordType.NODE,
                master_id=acme_pms.node_id,
                candidate_ids=[dup.node_id],
            )
        )

        assert result.canonical_name == "Acme PMS"
        assert result.aliases == ["Acme PMS Cloud", "APC"]
        assert result.edges_redirected == 1

        assert await registry_store.get_node(dup.node_id) is None
        master = await registry_store.get_node(acme_pms.node_id)
        assert master.connects_to == ["ext-1"]
        assert master.data_types_supported == [DataTypeSupported.RATES]
        assert master.node_aliases == ["Acme PMS Cloud", "APC"]

        rewired = await registry_store.get_node(upstream.node_id)
        assert rewired.connects_to == [acme_pms.node_id, "ext-2"]

    async def test_merge_is_audited(self, acme_entity, acme_pms):
        dup = await _node(acme_entity.entity_id, "Acme PMS 2")

        await apply_merge(
            ApplyMergeRequest(
                master_type=RecordType.NODE,
                master_id=acme_pms.node_id,
                candidate_ids=[dup.node_id],
            )
        )

        entries = await list_audit(resource_id=acme_pms.node_id)
        merge = next(e for e in entries if e.action == "NODE_MERGE")
        assert merge.payload["absorbed"] == [dup.node_id]
