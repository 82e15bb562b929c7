"""
Role-Based Access Control — closed role set and capability checks.

Every role question in the platform goes through ``has_capability`` /
``check_capability``. Admin roles pass every check; supervisors and
employees are granted capabilities with a reach:

    ANY         — no ownership condition
    SUPERVISED  — actor must be the entity's supervisor
    ASSIGNED    — actor must be one of the entity's assignees

Usage:
    from shopfloor.core.roles import Capability, check_capability

    check_capability(ctx, Capability.STAGE_PROGRESS,
                     supervisor_id=stage.supervisor_id,
                     assignee_ids=stage.assignee_ids)
"""

from enum import Enum


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    EMPLOYEE = "employee"

    @property
    def is_admin(self) -> bool:
        return self in ADMIN_ROLES


ADMIN_ROLES = frozenset({Role.SUPER_ADMIN, Role.ADMIN})


class Capability(str, Enum):
    STAGE_VIEW = "stage.view"
    STAGE_CREATE = "stage.create"
    STAGE_UPDATE = "stage.update"
    STAGE_DELETE = "stage.delete"
    STAGE_PROGRESS = "stage.progress"
    WORK_ORDER_VIEW = "work_order.view"
    WORK_ORDER_CREATE = "work_order.create"
    WORK_ORDER_PROGRESS = "work_order.progress"
    TASK_VIEW = "task.view"
    TASK_CREATE = "task.create"
    TASK_UPDATE = "task.update"
    TASK_PROGRESS = "task.progress"
    PRODUCT_VIEW = "product.view"
    PRODUCT_CREATE = "product.create"
    PRODUCT_UPDATE = "product.update"
    PRODUCT_DELETE = "product.delete"


class Reach(str, Enum):
    ANY = "any"
    SUPERVISED = "supervised"
    ASSIGNED = "assigned"


# Non-admin grants. Admin roles are not listed: they hold every capability.
CAPABILITY_MATRIX: dict[Role, dict[Capability, set[Reach]]] = {
    Role.SUPERVISOR: {
        Capability.STAGE_VIEW: {Reach.SUPERVISED},
        Capability.STAGE_CREATE: {Reach.ANY},
        Capability.STAGE_UPDATE: {Reach.SUPERVISED},
        Capability.STAGE_PROGRESS: {Reach.SUPERVISED},
        Capability.WORK_ORDER_VIEW: {Reach.SUPERVISED},
        Capability.WORK_ORDER_CREATE: {Reach.ANY},
        Capability.WORK_ORDER_PROGRESS: {Reach.SUPERVISED},
        Capability.TASK_VIEW: {Reach.SUPERVISED},
        Capability.TASK_CREATE: {Reach.ANY},
        Capability.TASK_UPDATE: {Reach.SUPERVISED},
        Capability.TASK_PROGRESS: {Reach.SUPERVISED},
        Capability.PRODUCT_VIEW: {Reach.ANY},
    },
    Role.EMPLOYEE: {
        Capability.STAGE_VIEW: {Reach.ASSIGNED},
        Capability.STAGE_PROGRESS: {Reach.ASSIGNED},
        Capability.WORK_ORDER_VIEW: {Reach.ASSIGNED},
        Capability.TASK_VIEW: {Reach.ASSIGNED},
        Capability.TASK_PROGRESS: {Reach.ASSIGNED},
        Capability.PRODUCT_VIEW: {Reach.ANY},
    },
}


class PermissionDenied(Exception):
    """Raised when the acting user lacks a capability for an entity."""

    def __init__(self, actor_id, capability: Capability):
        super().__init__(
            f"User {actor_id} does not have permission for '{capability.value}'"
        )
        self.actor_id = actor_id
        self.capability = capability


def has_capability(
    ctx,
    capability: Capability,
    *,
    supervisor_id: int | None = None,
    assignee_ids=(),
) -> bool:
    """
    Check if the actor in ``ctx`` holds ``capability`` for an entity.

    Args:
        ctx: TenantContext of the caller.
        capability: Capability being exercised.
        supervisor_id: Supervisor of the target entity, if any.
        assignee_ids: Users assigned to the target entity.

    Returns:
        True if any reach granted to the actor's role is satisfied.
    """
    if ctx.role.is_admin:
        return True

    reaches = CAPABILITY_MATRIX.get(ctx.role, {}).get(capability, set())
    for reach in reaches:
        if reach is Reach.ANY:
            return True
        if reach is Reach.SUPERVISED and supervisor_id is not None and supervisor_id == ctx.actor_id:
            return True
        if reach is Reach.ASSIGNED and ctx.actor_id in set(assignee_ids or ()):
            return True
    return False


def check_capability(
    ctx,
    capability: Capability,
    *,
    supervisor_id: int | None = None,
    assignee_ids=(),
) -> None:
    """Assert the capability; raise PermissionDenied if not held."""
    if not has_capability(
        ctx, capability, supervisor_id=supervisor_id, assignee_ids=assignee_ids,
    ):
        raise PermissionDenied(ctx.actor_id, capability)
