"""
Stage dependency graph — cycle detection and edge persistence.

Covers:
  1. find_cycle on plain adjacency maps (chain, diamond, loop)
  2. overlay_edges replacing one side of a stage
  3. A→B→C then C→A rejected, stored edges unchanged
  4. Self reference rejected
  5. Diamond accepted
  6. Cross-tenant stage ids rejected as not found
  7. Edge updates apply only when the payload carries them
  8. Deleting a stage removes its edge rows
"""

import pytest

from shopfloor.core.exceptions import NotFoundError, ValidationError
from shopfloor.models.production import StageDependency
from shopfloor.services import production_service as ps
from shopfloor.services import stage_graph


def _edges(tenant_id):
    return {
        (d.predecessor_id, d.successor_id)
        for d in StageDependency.query.filter_by(tenant_id=tenant_id).all()
    }


# ═════════════════════════════════════════════════════════════════════════════
# Pure graph helpers
# ═════════════════════════════════════════════════════════════════════════════


class TestFindCycle:

    def test_chain_has_no_cycle(self):
        assert stage_graph.find_cycle({1: {2}, 2: {3}}, 1) is None

    def test_diamond_has_no_cycle(self):
        graph = {1: {2, 3}, 2: {4}, 3: {4}}
        assert stage_graph.find_cycle(graph, 1) is None

    def test_loop_back_to_start(self):
        cycle = stage_graph.find_cycle({1: {2}, 2: {3}, 3: {1}}, 1)
        assert cycle == [1, 2, 3, 1]

    def test_loop_not_through_start_is_reported(self):
        cycle = stage_graph.find_cycle({1: {2}, 2: {3}, 3: {2}}, 1)
        assert cycle == [2, 3, 2]

    def test_unknown_start_node(self):
        assert stage_graph.find_cycle({}, 42) is None


class TestOverlayEdges:

    def test_none_leaves_side_untouched(self):
        base = {1: {2}, 2: {3}}
        proposed = stage_graph.overlay_edges(base, 2)
        assert proposed[1] == {2}
        assert proposed[2] == {3}

    def test_replace_predecessors(self):
        base = {1: {3}, 2: set()}
        proposed = stage_graph.overlay_edges(base, 3, predecessor_ids=[2])
        assert 3 not in proposed[1]
        assert proposed[2] == {3}

    def test_empty_successor_list_clears(self):
        proposed = stage_graph.overlay_edges({1: {2, 3}}, 1, successor_ids=[])
        assert proposed[1] == set()

    def test_input_map_not_mutated(self):
        base = {1: {2}}
        stage_graph.overlay_edges(base, 1, successor_ids=[5])
        assert base == {1: {2}}


# ═════════════════════════════════════════════════════════════════════════════
# Service-level graph edits
# ═════════════════════════════════════════════════════════════════════════════


class TestStageGraphEdits:

    def test_closing_a_chain_is_rejected(self, admin, ctx_for, make_stage):
        ctx = ctx_for(admin)
        a = make_stage("A")
        b = ps.create_stage(ctx, {
            "name": "B", "order": 2, "estimated_duration_min": 30,
            "target_quantity": 10, "predecessor_ids": [a.id],
        })
        c = ps.create_stage(ctx, {
            "name": "C", "order": 3, "estimated_duration_min": 30,
            "target_quantity": 10, "predecessor_ids": [b.id],
        })
        before = _edges(admin.tenant_id)
        assert before == {(a.id, b.id), (b.id, c.id)}

        with pytest.raises(ValidationError) as exc:
            ps.update_stage(ctx, a.id, {"predecessor_ids": [c.id]})

        assert str(exc.value) == stage_graph.CYCLE_MESSAGE
        assert exc.value.details["cycle"][0] == exc.value.details["cycle"][-1]
        assert _edges(admin.tenant_id) == before

    def test_closing_via_successor_list_is_rejected(self, admin, ctx_for, make_stage, link):
        a, b, c = make_stage("A"), make_stage("B"), make_stage("C")
        link(a, b)
        link(b, c)

        with pytest.raises(ValidationError):
            ps.update_stage(ctx_for(admin), c.id, {"successor_ids": [a.id]})
        assert _edges(admin.tenant_id) == {(a.id, b.id), (b.id, c.id)}

    def test_self_reference_rejected(self, admin, ctx_for, make_stage):
        a = make_stage("A")
        with pytest.raises(ValidationError) as exc:
            ps.update_stage(ctx_for(admin), a.id, {"predecessor_ids": [a.id]})
        assert exc.value.details["cycle"] == [a.id, a.id]
        assert _edges(admin.tenant_id) == set()

    def test_diamond_accepted(self, admin, ctx_for, make_stage):
        ctx = ctx_for(admin)
        a, b, c = make_stage("A"), make_stage("B"), make_stage("C")
        ps.update_stage(ctx, b.id, {"predecessor_ids": [a.id]})
        ps.update_stage(ctx, c.id, {"predecessor_ids": [a.id]})
        d = ps.create_stage(ctx, {
            "name": "D", "order": 4, "estimated_duration_min": 30,
            "target_quantity": 10, "predecessor_ids": [b.id, c.id],
        })

        assert d.predecessor_ids == sorted([b.id, c.id])
        assert a.successor_ids == sorted([b.id, c.id])

    def test_new_stage_between_existing_stages(self, admin, ctx_for, make_stage, link):
        a, c = make_stage("A"), make_stage("C")
        link(a, c)
        b = ps.create_stage(ctx_for(admin), {
            "name": "B", "order": 2, "estimated_duration_min": 30, "target_quantity": 10,
            "predecessor_ids": [a.id], "successor_ids": [c.id],
        })
        assert _edges(admin.tenant_id) == {(a.id, c.id), (a.id, b.id), (b.id, c.id)}

    def test_new_stage_closing_a_loop_rejected(self, admin, ctx_for, make_stage, link):
        a, b = make_stage("A"), make_stage("B")
        link(a, b)
        with pytest.raises(ValidationError):
            ps.create_stage(ctx_for(admin), {
                "name": "X", "order": 3, "estimated_duration_min": 30, "target_quantity": 10,
                "predecessor_ids": [b.id], "successor_ids": [a.id],
            })
        assert ps.list_stages(ctx_for(admin))[1]["total"] == 2

    def test_cross_tenant_stage_is_not_found(
        self, admin, ctx_for, make_stage, other_company,
    ):
        mine = make_stage("Mine")
        foreign = make_stage("Foreign", tenant=other_company)

        with pytest.raises(NotFoundError):
            ps.update_stage(ctx_for(admin), mine.id, {"predecessor_ids": [foreign.id]})
        assert _edges(admin.tenant_id) == set()

    def test_unknown_stage_id_is_not_found(self, admin, ctx_for, make_stage):
        mine = make_stage("Mine")
        with pytest.raises(NotFoundError):
            ps.update_stage(ctx_for(admin), mine.id, {"successor_ids": [99999]})

    def test_field_update_skips_graph_check(self, admin, ctx_for, make_stage, monkeypatch):
        a = make_stage("A")

        def _boom(*args, **kwargs):
            raise AssertionError("graph check must not run")

        monkeypatch.setattr(stage_graph, "validate_stage_edges", _boom)
        stage = ps.update_stage(ctx_for(admin), a.id, {"name": "Cutting"})
        assert stage.name == "Cutting"

    def test_empty_list_clears_edges(self, admin, ctx_for, make_stage, link):
        a, b = make_stage("A"), make_stage("B")
        link(a, b)
        ps.update_stage(ctx_for(admin), b.id, {"predecessor_ids": []})
        assert _edges(admin.tenant_id) == set()

    def test_delete_stage_removes_edges(self, admin, ctx_for, make_stage, link):
        a, b, c = make_stage("A"), make_stage("B"), make_stage("C")
        link(a, b)
        link(b, c)

        ps.delete_stage(ctx_for(admin), b.id)
        assert _edges(admin.tenant_id) == set()
        assert a.successor_ids == []
