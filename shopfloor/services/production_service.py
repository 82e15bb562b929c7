"""
Production — Service Layer.

Business logic for:
    - Stage CRUD:             tenant-scoped create / read / update / delete
    - Stage graph edits:      predecessor / successor changes, cycle-guarded
    - Stage progress:         quantity state machine + successor activation
    - Work order numbers:     WO-<epoch-ms>-0001
    - Work order progress:    per-stage entry update + order aggregation
    - Dashboard:              per-status aggregates, efficiency, summaries

Every function takes the caller's TenantContext first. Role capability
checks happen in the blueprint layer; listing functions apply the role
visibility filter themselves.
"""

import logging
import time

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from shopfloor.core.exceptions import ConflictError, ValidationError
from shopfloor.core.roles import Role
from shopfloor.models import db
from shopfloor.models.auth import User
from shopfloor.models.production import (
    STAGE_STATUSES,
    WORK_ORDER_PRIORITIES,
    WORK_ORDER_STATUSES,
    ProductionStage,
    StageDependency,
    WorkOrder,
    WorkOrderStage,
)
from shopfloor.models.task import Task
from shopfloor.services import stage_graph
from shopfloor.services.audit_service import record_audit
from shopfloor.services.helpers import validation as v
from shopfloor.services.helpers.scoped_queries import (
    get_all_scoped,
    get_scoped,
)
from shopfloor.utils.helpers import commit_or_raise, paginate

logger = logging.getLogger(__name__)


# ── Role visibility ──────────────────────────────────────────────────────────


def visibility_filter(ctx, model):
    """
    SQL criterion limiting ``model`` rows to what ``ctx`` may list.

    Employees see rows assigned to them; supervisors see rows they
    supervise or are assigned to; admins see the whole tenant (None).
    """
    assigned = model.assignees.any(User.id == ctx.actor_id)
    if ctx.role is Role.EMPLOYEE:
        return assigned
    if ctx.role is Role.SUPERVISOR:
        return or_(model.supervisor_id == ctx.actor_id, assigned)
    return None


def _scoped_listing(ctx, model):
    q = model.query_for_tenant(ctx.tenant_id)
    criterion = visibility_filter(ctx, model)
    if criterion is not None:
        q = q.filter(criterion)
    return q


def _resolve_people(ctx, data: dict) -> dict:
    """Resolve supervisor_id / assigned_to inside the tenant."""
    people = {}
    if "supervisor_id" in data:
        supervisor_id = data.get("supervisor_id")
        if supervisor_id is not None:
            supervisor_id = v.int_field(data, "supervisor_id")
            get_scoped(User, supervisor_id, tenant_id=ctx.tenant_id)
        people["supervisor_id"] = supervisor_id
    assignee_ids = v.id_list_field(data, "assigned_to")
    if assignee_ids is not None:
        people["assignees"] = get_all_scoped(User, assignee_ids, tenant_id=ctx.tenant_id)
    return people


# ═════════════════════════════════════════════════════════════════════════════
# Production Stages
# ═════════════════════════════════════════════════════════════════════════════


def list_stages(ctx, *, page=1, limit=10, status=None, assigned_to=None):
    """Paginated stages visible to ``ctx``, ordered by ``order``."""
    q = _scoped_listing(ctx, ProductionStage)
    if status:
        q = q.filter(ProductionStage.status == status)
    if assigned_to:
        q = q.filter(ProductionStage.assignees.any(User.id == assigned_to))
    q = q.order_by(ProductionStage.order.asc(), ProductionStage.created_at.desc())
    return paginate(q, page, limit)


def get_stage(ctx, stage_id: int) -> ProductionStage:
    return get_scoped(ProductionStage, stage_id, tenant_id=ctx.tenant_id)


_NULLABLE_STAGE_FIELDS = {"actual_duration_min", "start_date", "end_date"}


def _stage_fields(data: dict, *, partial: bool) -> dict:
    if not partial:
        v.require_fields(data, "name", "order", "estimated_duration_min", "target_quantity")

    fields = {}
    if "name" in data or not partial:
        fields["name"] = v.str_field(data, "name", max_length=100, required=True)
    if "description" in data:
        fields["description"] = v.str_field(data, "description", max_length=500, default="")
    if "notes" in data:
        fields["notes"] = v.str_field(data, "notes", max_length=1000, default="")
    if "order" in data:
        fields["order"] = v.int_field(data, "order", minimum=1)
    if "estimated_duration_min" in data:
        fields["estimated_duration_min"] = v.int_field(data, "estimated_duration_min", minimum=1)
    if "actual_duration_min" in data:
        fields["actual_duration_min"] = v.int_field(data, "actual_duration_min", minimum=0)
    if "target_quantity" in data:
        fields["target_quantity"] = v.int_field(data, "target_quantity", minimum=1)
    if "status" in data:
        fields["status"] = v.choice_field(data, "status", STAGE_STATUSES)
    for stamp in ("start_date", "end_date"):
        if stamp in data:
            fields[stamp] = v.datetime_field(data, stamp)
    return {
        key: value for key, value in fields.items()
        if value is not None or key in _NULLABLE_STAGE_FIELDS
    }


def create_stage(ctx, data: dict) -> ProductionStage:
    """
    Create a production stage, optionally wired into the graph.

    ``predecessor_ids`` / ``successor_ids`` are validated (same tenant, no
    cycle) before the stage is written.

    Raises:
        ValidationError: Missing/invalid field or a dependency cycle.
        NotFoundError: A referenced user or stage is not in the tenant.
    """
    fields = _stage_fields(data, partial=False)
    people = _resolve_people(ctx, data)
    predecessor_ids = v.id_list_field(data, "predecessor_ids")
    successor_ids = v.id_list_field(data, "successor_ids")

    if predecessor_ids or successor_ids:
        stage_graph.validate_stage_edges(
            ctx.tenant_id, None,
            predecessor_ids=predecessor_ids, successor_ids=successor_ids,
        )

    stage = ProductionStage(tenant_id=ctx.tenant_id, **fields, **people)
    stage.completed_quantity = 0
    stage.wip_quantity = stage.target_quantity
    db.session.add(stage)
    db.session.flush()

    if predecessor_ids or successor_ids:
        stage_graph.replace_stage_edges(
            ctx.tenant_id, stage,
            predecessor_ids=predecessor_ids, successor_ids=successor_ids,
        )
    commit_or_raise()

    logger.info("Stage created id=%s tenant=%s name=%s", stage.id, ctx.tenant_id, stage.name)
    record_audit(ctx, entity_type="production_stage", entity_id=stage.id, action="create",
                 diff={"name": stage.name, "order": stage.order})
    return stage


def update_stage(ctx, stage_id: int, data: dict) -> ProductionStage:
    """
    Update stage fields. The cycle check runs only when
    ``predecessor_ids`` or ``successor_ids`` is part of the payload.

    A changed ``target_quantity`` re-runs the progress state machine on the
    recorded quantity, so ``completed_quantity`` never exceeds the target.
    If that completes the stage, its successors are activated as for a
    progress reading.
    """
    stage = get_stage(ctx, stage_id)
    previous_status = stage.status
    previous_end_date = stage.end_date
    fields = _stage_fields(data, partial=True)
    people = _resolve_people(ctx, data)
    predecessor_ids = v.id_list_field(data, "predecessor_ids")
    successor_ids = v.id_list_field(data, "successor_ids")
    edges_changed = predecessor_ids is not None or successor_ids is not None

    if edges_changed:
        stage_graph.validate_stage_edges(
            ctx.tenant_id, stage.id,
            predecessor_ids=predecessor_ids, successor_ids=successor_ids,
        )

    changes = {}
    for key, value in {**fields, **people}.items():
        old = getattr(stage, key)
        if key == "assignees":
            old, new = [u.id for u in old], [u.id for u in value]
        else:
            new = value
        if old != new:
            changes[key] = {"old": old, "new": new}
        setattr(stage, key, value)

    if "target_quantity" in changes and stage.completed_quantity:
        recorded = stage.completed_quantity
        stage.apply_progress(recorded)
        if previous_status == "completed" and stage.status == "completed":
            stage.end_date = previous_end_date
        if stage.completed_quantity != recorded:
            changes["completed_quantity"] = {"old": recorded, "new": stage.completed_quantity}
        if stage.status != previous_status:
            changes["status"] = {"old": previous_status, "new": stage.status}
    elif "target_quantity" in fields:
        stage.wip_quantity = max(0, stage.target_quantity - (stage.completed_quantity or 0))

    if edges_changed:
        stage_graph.replace_stage_edges(
            ctx.tenant_id, stage,
            predecessor_ids=predecessor_ids, successor_ids=successor_ids,
        )
        if predecessor_ids is not None:
            changes["predecessor_ids"] = {"new": predecessor_ids}
        if successor_ids is not None:
            changes["successor_ids"] = {"new": successor_ids}

    commit_or_raise()

    if previous_status != "completed" and stage.status == "completed":
        logger.info("Stage id=%s completed by target change tenant=%s", stage.id, ctx.tenant_id)
        changes["activated_successor_ids"] = activate_successors(ctx, stage)

    record_audit(ctx, entity_type="production_stage", entity_id=stage.id, action="update",
                 diff=changes)
    return stage


def _stage_references(stage_id: int) -> dict:
    """Count work order entries and tasks that point at ``stage_id``."""
    entries = (
        db.session.query(func.count(WorkOrderStage.id))
        .filter(WorkOrderStage.stage_id == stage_id)
        .scalar()
    )
    tasks = db.session.query(func.count(Task.id)).filter(Task.stage_id == stage_id).scalar()
    return {"work_order_entries": entries or 0, "tasks": tasks or 0}


def delete_stage(ctx, stage_id: int) -> None:
    """
    Delete a stage and the edge rows it participates in.

    Work orders and tasks keep their own history, so a stage they still
    reference cannot be deleted.

    Raises:
        ConflictError: The stage is in progress or still referenced.
    """
    stage = get_stage(ctx, stage_id)
    if stage.status == "in_progress":
        raise ConflictError(
            "Cannot delete stage that is in progress", resource="ProductionStage",
        )

    references = _stage_references(stage.id)
    if any(references.values()):
        raise ConflictError(
            "Cannot delete stage used by work orders or tasks "
            f"(entries={references['work_order_entries']}, tasks={references['tasks']})",
            resource="ProductionStage",
        )

    removed_edges = stage_graph.remove_stage_edges(ctx.tenant_id, stage.id)
    db.session.delete(stage)
    commit_or_raise()

    logger.info("Stage deleted id=%s tenant=%s edges_removed=%s", stage_id, ctx.tenant_id, removed_edges)
    record_audit(ctx, entity_type="production_stage", entity_id=stage_id, action="delete",
                 diff={"edges_removed": removed_edges})


# ── Progress ────────────────────────────────────────────────────────────────


def update_stage_progress(ctx, stage_id: int, completed_quantity, notes: str | None = None):
    """
    Apply a progress reading to a stage and commit it.

    When the reading completes the stage for the first time, the direct
    successors still ``planned`` are moved to ``in_progress`` afterwards.

    Returns:
        (stage, activated_successor_ids)

    Raises:
        ValidationError: Quantity missing, non-integer or negative.
        NotFoundError: Stage not in the tenant.
    """
    quantity = v.quantity(completed_quantity)
    if notes is not None:
        notes = v.str_field({"notes": notes}, "notes", max_length=1000)

    stage = get_stage(ctx, stage_id)
    previous_quantity = stage.completed_quantity or 0
    previous_status = stage.status

    stage.apply_progress(quantity)
    if notes:
        stage.notes = notes
    commit_or_raise()

    logger.info(
        "Stage progress id=%s tenant=%s qty=%s→%s status=%s→%s",
        stage.id, ctx.tenant_id, previous_quantity, stage.completed_quantity,
        previous_status, stage.status,
    )

    activated = []
    newly_completed = (
        stage.status == "completed" and previous_quantity < stage.target_quantity
    )
    if newly_completed:
        activated = activate_successors(ctx, stage)

    record_audit(
        ctx, entity_type="production_stage", entity_id=stage.id, action="stage.progress",
        diff={
            "completed_quantity": {"old": previous_quantity, "new": stage.completed_quantity},
            "status": {"old": previous_status, "new": stage.status},
            "activated_successor_ids": activated,
        },
    )
    return stage, activated


def _activate_successor(successor: ProductionStage) -> None:
    successor.status = "in_progress"
    db.session.commit()


def activate_successors(ctx, stage: ProductionStage) -> list[int]:
    """
    Move the direct successors of ``stage`` that are still ``planned`` to
    ``in_progress``. One level only; no start date is stamped.

    Each successor is committed on its own. A failed write is rolled back
    and logged, and the remaining successors are still processed.

    Returns:
        Ids of the successors that were activated.
    """
    successors = (
        ProductionStage.query_for_tenant(ctx.tenant_id)
        .join(StageDependency, StageDependency.successor_id == ProductionStage.id)
        .filter(
            StageDependency.predecessor_id == stage.id,
            StageDependency.tenant_id == ctx.tenant_id,
            ProductionStage.status == "planned",
        )
        .order_by(ProductionStage.order.asc(), ProductionStage.id.asc())
        .all()
    )
    successor_ids = [s.id for s in successors]

    activated = []
    for successor_id, successor in zip(successor_ids, successors):
        try:
            _activate_successor(successor)
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception(
                "Successor activation failed: stage=%s successor=%s tenant=%s",
                stage.id, successor_id, ctx.tenant_id,
            )
            continue
        activated.append(successor_id)

    for successor_id in activated:
        record_audit(ctx, entity_type="production_stage", entity_id=successor_id,
                     action="stage.activate", diff={"predecessor_id": stage.id}, system=True)
    return activated


# ═════════════════════════════════════════════════════════════════════════════
# Work Orders
# ═════════════════════════════════════════════════════════════════════════════


def generate_order_number() -> str:
    """Generate next work order number: WO-<epoch-ms>-0001 (globally unique)."""
    count = db.session.query(func.count(WorkOrder.id)).scalar() or 0
    return f"WO-{int(time.time() * 1000)}-{count + 1:04d}"


def list_work_orders(ctx, *, page=1, limit=10, status=None, priority=None, assigned_to=None):
    """Paginated work orders visible to ``ctx``, newest first."""
    q = _scoped_listing(ctx, WorkOrder)
    if status:
        q = q.filter(WorkOrder.status == status)
    if priority:
        q = q.filter(WorkOrder.priority == priority)
    if assigned_to:
        q = q.filter(WorkOrder.assignees.any(User.id == assigned_to))
    q = q.order_by(WorkOrder.created_at.desc(), WorkOrder.id.desc())
    return paginate(q, page, limit)


def get_work_order(ctx, work_order_id: int) -> WorkOrder:
    return get_scoped(WorkOrder, work_order_id, tenant_id=ctx.tenant_id)


def create_work_order(ctx, data: dict) -> WorkOrder:
    """
    Create a work order with its ordered stage entries.

    ``stages`` is a non-empty list of ``{"stage_id": int, "order"?: int}``;
    every stage must belong to the tenant.
    """
    v.require_fields(data, "product_name", "target_quantity", "start_date", "due_date", "stages")
    product_name = v.str_field(data, "product_name", max_length=200, required=True)
    target_quantity = v.int_field(data, "target_quantity", minimum=1)
    start_date = v.datetime_field(data, "start_date", required=True)
    due_date = v.datetime_field(data, "due_date", required=True)
    priority = v.choice_field(data, "priority", WORK_ORDER_PRIORITIES, default="medium")
    status = v.choice_field(data, "status", WORK_ORDER_STATUSES, default="draft")

    raw_stages = data.get("stages")
    if not isinstance(raw_stages, list) or not raw_stages:
        raise ValidationError(
            "At least one stage is required", details={"stages": "required"},
        )
    entries = []
    for position, raw in enumerate(raw_stages, start=1):
        if not isinstance(raw, dict):
            raw = {"stage_id": raw}
        stage_id = v.int_field(raw, "stage_id")
        if stage_id is None:
            raise ValidationError(
                "Each stage entry needs a stage_id", details={"stages": "stage_id required"},
            )
        entries.append((stage_id, v.int_field(raw, "order", minimum=1, default=position)))
    get_all_scoped(ProductionStage, [sid for sid, _ in entries], tenant_id=ctx.tenant_id)

    people = _resolve_people(ctx, data)

    work_order = WorkOrder(
        tenant_id=ctx.tenant_id,
        order_number=generate_order_number(),
        product_name=product_name,
        description=v.str_field(data, "description", max_length=1000, default=""),
        priority=priority,
        status=status,
        target_quantity=target_quantity,
        completed_quantity=0,
        start_date=start_date,
        due_date=due_date,
        created_by_id=ctx.actor_id,
        notes=v.str_field(data, "notes", max_length=1000, default=""),
        **people,
    )
    for stage_id, order in entries:
        work_order.stage_entries.append(WorkOrderStage(stage_id=stage_id, order=order))

    db.session.add(work_order)
    commit_or_raise()

    logger.info("Work order created %s tenant=%s", work_order.order_number, ctx.tenant_id)
    record_audit(ctx, entity_type="work_order", entity_id=work_order.id, action="create",
                 diff={"order_number": work_order.order_number})
    return work_order


def update_work_order_stage_progress(ctx, work_order_id: int, stage_id: int, completed_quantity) -> WorkOrder:
    """
    Record progress for one stage entry of a work order and re-aggregate.

    Raises:
        ValidationError: Quantity missing, non-integer or negative.
        NotFoundError: Work order not in the tenant, or no entry for ``stage_id``.
    """
    quantity = v.quantity(completed_quantity)
    work_order = get_work_order(ctx, work_order_id)
    previous_status = work_order.status

    work_order.update_stage_progress(stage_id, quantity)
    commit_or_raise()

    record_audit(
        ctx, entity_type="work_order", entity_id=work_order.id,
        action="work_order.stage_progress",
        diff={
            "stage_id": stage_id,
            "completed_quantity": quantity,
            "status": {"old": previous_status, "new": work_order.status},
        },
    )
    return work_order


# ═════════════════════════════════════════════════════════════════════════════
# Dashboard
# ═════════════════════════════════════════════════════════════════════════════


def _status_breakdown(ctx, model) -> list[dict]:
    q = db.session.query(
        model.status,
        func.count(model.id),
        func.coalesce(func.sum(model.target_quantity), 0),
        func.coalesce(func.sum(model.completed_quantity), 0),
    ).filter(model.tenant_id == ctx.tenant_id)
    criterion = visibility_filter(ctx, model)
    if criterion is not None:
        q = q.filter(criterion)
    return [
        {
            "status": status,
            "count": count,
            "total_target": total_target,
            "total_completed": total_completed,
        }
        for status, count, total_target, total_completed in q.group_by(model.status).all()
    ]


def production_dashboard(ctx) -> dict:
    """Aggregate stage / work order figures visible to ``ctx``."""
    stages = _scoped_listing(ctx, ProductionStage)
    work_orders = _scoped_listing(ctx, WorkOrder)

    active_stages = (
        stages.filter(ProductionStage.status == "in_progress")
        .order_by(ProductionStage.order.asc())
        .limit(10)
        .all()
    )
    recent_work_orders = (
        work_orders.order_by(WorkOrder.created_at.desc(), WorkOrder.id.desc()).limit(5).all()
    )

    total_stages = stages.count()
    completed_stages = stages.filter(ProductionStage.status == "completed").count()
    efficiency = (completed_stages / total_stages * 100) if total_stages else 0

    return {
        "stage_stats": _status_breakdown(ctx, ProductionStage),
        "work_order_stats": _status_breakdown(ctx, WorkOrder),
        "active_stages": [s.to_dict() for s in active_stages],
        "recent_work_orders": [wo.to_dict() for wo in recent_work_orders],
        "efficiency": round(efficiency, 2),
        "summary": {
            "total_stages": total_stages,
            "completed_stages": completed_stages,
            "in_progress_stages": stages.filter(ProductionStage.status == "in_progress").count(),
            "total_work_orders": work_orders.count(),
            "active_work_orders": work_orders.filter(WorkOrder.status == "active").count(),
        },
    }
