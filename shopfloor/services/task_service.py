"""
Tasks — Service Layer.

Business logic for:
    - Task number generation: TASK-<epoch-ms>-0001
    - Task CRUD:              tenant-scoped create / read / update
    - Task progress:          quantity state machine, fed into the work order
    - Quality checks:         sign-off of a named check
    - Statistics:             per-status counts, overdue, completion rate
"""

import logging
import time

from sqlalchemy import func, or_

from shopfloor.core.exceptions import NotFoundError, ValidationError
from shopfloor.core.roles import Role
from shopfloor.models import db
from shopfloor.models.auth import User
from shopfloor.models.base import utcnow
from shopfloor.models.production import ProductionStage, WorkOrder
from shopfloor.models.task import TASK_PRIORITIES, TASK_STATUSES, Task, TaskQualityCheck
from shopfloor.services.audit_service import record_audit
from shopfloor.services.helpers import validation as v
from shopfloor.services.helpers.scoped_queries import get_scoped, get_scoped_or_none
from shopfloor.utils.helpers import commit_or_raise, paginate

logger = logging.getLogger(__name__)


def generate_task_number() -> str:
    """Generate next task number: TASK-<epoch-ms>-0001 (globally unique)."""
    count = db.session.query(func.count(Task.id)).scalar() or 0
    return f"TASK-{int(time.time() * 1000)}-{count + 1:04d}"


def _visible_tasks(ctx):
    q = Task.query_for_tenant(ctx.tenant_id)
    if ctx.role is Role.EMPLOYEE:
        q = q.filter(Task.assigned_to_id == ctx.actor_id)
    elif ctx.role is Role.SUPERVISOR:
        q = q.filter(or_(Task.supervisor_id == ctx.actor_id, Task.assigned_to_id == ctx.actor_id))
    return q


def list_tasks(ctx, *, page=1, limit=10, status=None, priority=None,
               work_order_id=None, stage_id=None, assigned_to=None):
    """Paginated tasks visible to ``ctx``, newest first."""
    q = _visible_tasks(ctx)
    if status:
        q = q.filter(Task.status == status)
    if priority:
        q = q.filter(Task.priority == priority)
    if work_order_id:
        q = q.filter(Task.work_order_id == work_order_id)
    if stage_id:
        q = q.filter(Task.stage_id == stage_id)
    if assigned_to:
        q = q.filter(Task.assigned_to_id == assigned_to)
    q = q.order_by(Task.created_at.desc(), Task.id.desc())
    return paginate(q, page, limit)


def get_task(ctx, task_id: int) -> Task:
    return get_scoped(Task, task_id, tenant_id=ctx.tenant_id)


def _quality_checks(raw) -> list[TaskQualityCheck]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("quality_checks must be a list", details={"quality_checks": "list"})
    checks, seen = [], set()
    for item in raw:
        if isinstance(item, str):
            item = {"name": item}
        name = v.str_field(item, "name", max_length=100, required=True)
        if name in seen:
            raise ValidationError(
                f"Duplicate quality check: {name}", details={"quality_checks": "duplicate"},
            )
        seen.add(name)
        checks.append(TaskQualityCheck(
            name=name,
            description=v.str_field(item, "description", max_length=500, default=""),
            is_required=bool(item.get("is_required", True)),
        ))
    return checks


def create_task(ctx, data: dict) -> Task:
    """
    Create a task against a work order stage.

    Supervisors always supervise the tasks they create; admins may name a
    supervisor and default to themselves.
    """
    v.require_fields(
        data, "work_order_id", "stage_id", "name", "assigned_to_id",
        "target_quantity", "due_date", "estimated_duration_min",
    )
    name = v.str_field(data, "name", max_length=200, required=True)
    if len(name) < 2:
        raise ValidationError(
            "name must be between 2 and 200 characters", details={"name": "length"},
        )

    work_order = get_scoped(WorkOrder, v.int_field(data, "work_order_id"), tenant_id=ctx.tenant_id)
    stage = get_scoped(ProductionStage, v.int_field(data, "stage_id"), tenant_id=ctx.tenant_id)
    assignee = get_scoped(User, v.int_field(data, "assigned_to_id"), tenant_id=ctx.tenant_id)

    if ctx.role is Role.SUPERVISOR:
        supervisor_id = ctx.actor_id
    else:
        supervisor_id = v.int_field(data, "supervisor_id") or ctx.actor_id
        get_scoped(User, supervisor_id, tenant_id=ctx.tenant_id)

    task = Task(
        tenant_id=ctx.tenant_id,
        task_number=generate_task_number(),
        name=name,
        description=v.str_field(data, "description", max_length=1000, default=""),
        work_order_id=work_order.id,
        stage_id=stage.id,
        assigned_to_id=assignee.id,
        assigned_by_id=ctx.actor_id,
        supervisor_id=supervisor_id,
        priority=v.choice_field(data, "priority", TASK_PRIORITIES, default="medium"),
        target_quantity=v.int_field(data, "target_quantity", minimum=1),
        completed_quantity=0,
        due_date=v.datetime_field(data, "due_date", required=True),
        estimated_duration_min=v.int_field(data, "estimated_duration_min", minimum=1),
        notes=v.str_field(data, "notes", max_length=1000, default=""),
    )
    task.quality_checks = _quality_checks(data.get("quality_checks"))
    db.session.add(task)
    commit_or_raise()

    logger.info("Task created %s tenant=%s wo=%s", task.task_number, ctx.tenant_id, work_order.id)
    record_audit(ctx, entity_type="task", entity_id=task.id, action="create",
                 diff={"name": task.name, "assigned_to_id": task.assigned_to_id,
                       "work_order_id": task.work_order_id})
    return task


_UPDATABLE = ("name", "description", "priority", "status", "due_date", "assigned_to_id", "notes")


def update_task(ctx, task_id: int, data: dict) -> Task:
    """Update task details (name, description, priority, status, due date, assignee, notes)."""
    task = get_task(ctx, task_id)

    updates = {}
    if "name" in data:
        updates["name"] = v.str_field(data, "name", max_length=200, required=True)
    if "description" in data:
        updates["description"] = v.str_field(data, "description", max_length=1000, default="")
    if "notes" in data:
        updates["notes"] = v.str_field(data, "notes", max_length=1000, default="")
    if data.get("priority") is not None:
        updates["priority"] = v.choice_field(data, "priority", TASK_PRIORITIES)
    if data.get("status") is not None:
        updates["status"] = v.choice_field(data, "status", TASK_STATUSES)
    if data.get("due_date") is not None:
        updates["due_date"] = v.datetime_field(data, "due_date", required=True)
    if data.get("assigned_to_id") is not None:
        assignee = get_scoped(User, v.int_field(data, "assigned_to_id"), tenant_id=ctx.tenant_id)
        updates["assigned_to_id"] = assignee.id

    changes = {}
    for key in _UPDATABLE:
        if key in updates and getattr(task, key) != updates[key]:
            changes[key] = {"old": getattr(task, key), "new": updates[key]}
            setattr(task, key, updates[key])

    commit_or_raise()
    record_audit(ctx, entity_type="task", entity_id=task.id, action="update", diff=changes)
    return task


def update_task_progress(ctx, task_id: int, completed_quantity, notes: str | None = None) -> Task:
    """
    Apply a progress reading to a task, then feed the raw reading into the
    owning work order's entry for the task's stage. One commit covers both.

    Raises:
        ValidationError: Quantity missing, non-integer or negative.
        NotFoundError: Task not in the tenant.
    """
    quantity = v.quantity(completed_quantity)
    if notes is not None:
        notes = v.str_field({"notes": notes}, "notes", max_length=1000)

    task = get_task(ctx, task_id)
    previous_quantity = task.completed_quantity or 0

    now = utcnow()
    task.apply_progress(quantity, now=now)
    if notes:
        task.notes = notes

    work_order = get_scoped_or_none(WorkOrder, task.work_order_id, tenant_id=ctx.tenant_id)
    if work_order is not None:
        try:
            work_order.update_stage_progress(task.stage_id, quantity, now=now)
        except NotFoundError:
            logger.warning(
                "Task %s: work order %s has no entry for stage %s, skipping aggregation",
                task.id, work_order.id, task.stage_id,
            )

    commit_or_raise()

    record_audit(ctx, entity_type="task", entity_id=task.id, action="task.progress",
                 diff={"completed_quantity": {"old": previous_quantity, "new": quantity}})
    return task


def complete_quality_check(ctx, task_id: int, check_name: str, notes: str | None = None) -> Task:
    """
    Mark the named quality check of a task as completed by the caller.

    Raises:
        NotFoundError: Task not in the tenant, or no check named ``check_name``.
    """
    task = get_task(ctx, task_id)
    check = task.find_quality_check(check_name)
    if check is None:
        raise NotFoundError(resource="Quality check", resource_id=check_name)

    if notes is not None:
        notes = v.str_field({"notes": notes}, "notes", max_length=500)
    check.complete(ctx.actor_id, notes)
    commit_or_raise()

    record_audit(ctx, entity_type="task", entity_id=task.id, action="task.quality_check",
                 diff={"check": check_name, "notes": notes})
    return task


def task_stats(ctx) -> dict:
    """Per-status counts plus total / completed / overdue and completion rate."""
    q = _visible_tasks(ctx)
    rows = (
        q.with_entities(Task.status, func.count(Task.id))
        .group_by(Task.status)
        .all()
    )
    stats = [{"status": status, "count": count} for status, count in rows]

    total = sum(s["count"] for s in stats)
    completed = next((s["count"] for s in stats if s["status"] == "completed"), 0)
    overdue = q.filter(Task.due_date < utcnow(), Task.status != "completed").count()

    return {
        "stats": stats,
        "summary": {
            "total_tasks": total,
            "completed_tasks": completed,
            "overdue_tasks": overdue,
            "completion_rate": round(completed / total * 100) if total else 0,
        },
    }
