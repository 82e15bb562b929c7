"""
Role capability checks and role-based listing.

Covers:
  1. Admin roles hold every capability
  2. Supervisor reach: ANY for create, SUPERVISED for entity actions
  3. Employee reach: ASSIGNED only, no create/delete
  4. check_capability raises PermissionDenied
  5. Listing filters per role (stages, work orders)
"""

import pytest

from shopfloor.core.context import TenantContext
from shopfloor.core.roles import Capability, PermissionDenied, Role, check_capability, has_capability
from shopfloor.services import production_service as ps

ACTOR = 7
OTHER = 8


def _ctx(role):
    return TenantContext(tenant_id=1, actor_id=ACTOR, role=role)


class TestCapabilityMatrix:

    @pytest.mark.parametrize("role", [Role.ADMIN, Role.SUPER_ADMIN])
    @pytest.mark.parametrize("capability", list(Capability))
    def test_admin_holds_everything(self, role, capability):
        assert has_capability(_ctx(role), capability)

    def test_supervisor_creates_anything(self):
        ctx = _ctx(Role.SUPERVISOR)
        assert has_capability(ctx, Capability.STAGE_CREATE)
        assert has_capability(ctx, Capability.WORK_ORDER_CREATE)
        assert has_capability(ctx, Capability.TASK_CREATE)

    def test_supervisor_cannot_delete_stages(self):
        assert not has_capability(
            _ctx(Role.SUPERVISOR), Capability.STAGE_DELETE, supervisor_id=ACTOR,
        )

    def test_supervisor_updates_supervised_only(self):
        ctx = _ctx(Role.SUPERVISOR)
        assert has_capability(ctx, Capability.STAGE_UPDATE, supervisor_id=ACTOR)
        assert not has_capability(ctx, Capability.STAGE_UPDATE, supervisor_id=OTHER)
        assert not has_capability(ctx, Capability.STAGE_UPDATE)

    def test_supervisor_assignment_does_not_grant_progress(self):
        ctx = _ctx(Role.SUPERVISOR)
        assert not has_capability(
            ctx, Capability.STAGE_PROGRESS, supervisor_id=OTHER, assignee_ids=[ACTOR],
        )

    def test_employee_progress_requires_assignment(self):
        ctx = _ctx(Role.EMPLOYEE)
        assert has_capability(ctx, Capability.STAGE_PROGRESS, assignee_ids=[ACTOR, OTHER])
        assert not has_capability(ctx, Capability.STAGE_PROGRESS, assignee_ids=[OTHER])
        assert not has_capability(ctx, Capability.STAGE_PROGRESS, supervisor_id=ACTOR)

    @pytest.mark.parametrize("capability", [
        Capability.STAGE_CREATE, Capability.STAGE_UPDATE, Capability.STAGE_DELETE,
        Capability.WORK_ORDER_CREATE, Capability.WORK_ORDER_PROGRESS,
        Capability.TASK_CREATE, Capability.TASK_UPDATE,
    ])
    def test_employee_denied(self, capability):
        assert not has_capability(
            _ctx(Role.EMPLOYEE), capability, supervisor_id=ACTOR, assignee_ids=[ACTOR],
        )

    def test_check_capability_raises(self):
        with pytest.raises(PermissionDenied) as exc:
            check_capability(_ctx(Role.EMPLOYEE), Capability.STAGE_DELETE)
        assert exc.value.capability is Capability.STAGE_DELETE
        assert exc.value.actor_id == ACTOR

    def test_unknown_role_string_rejected(self):
        with pytest.raises(ValueError):
            Role("foreman")


class TestRoleListing:

    def test_employee_lists_assigned_stages(self, employee, ctx_for, make_stage):
        mine = make_stage("Mine", assignees=[employee])
        make_stage("Not mine")

        items, pagination = ps.list_stages(ctx_for(employee))

        assert [s.id for s in items] == [mine.id]
        assert pagination["total"] == 1

    def test_supervisor_lists_supervised_or_assigned(
        self, supervisor, ctx_for, make_stage,
    ):
        supervised = make_stage("Supervised", supervisor_id=supervisor.id)
        assigned = make_stage("Assigned", assignees=[supervisor])
        make_stage("Elsewhere")

        items, _ = ps.list_stages(ctx_for(supervisor))

        assert {s.id for s in items} == {supervised.id, assigned.id}

    def test_admin_lists_all(self, admin, ctx_for, make_stage):
        for name in ("A", "B", "C"):
            make_stage(name)
        _, pagination = ps.list_stages(ctx_for(admin))
        assert pagination["total"] == 3

    def test_employee_lists_assigned_work_orders(
        self, employee, ctx_for, make_stage, make_work_order,
    ):
        stage = make_stage("Cut")
        mine = make_work_order([stage], assignees=[employee])
        make_work_order([stage])

        items, _ = ps.list_work_orders(ctx_for(employee))
        assert [wo.id for wo in items] == [mine.id]

    def test_dashboard_respects_visibility(self, employee, ctx_for, make_stage):
        make_stage("Mine", assignees=[employee], status="completed")
        make_stage("Not mine", status="completed")

        summary = ps.production_dashboard(ctx_for(employee))["summary"]
        assert summary["total_stages"] == 1
        assert summary["completed_stages"] == 1
