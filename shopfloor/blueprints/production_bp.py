"""Production blueprint — stages, stage graph, progress, work orders, dashboard.

Endpoint groups:
  Stages            GET/POST       /api/v1/production/stages
                    GET/PUT/DELETE /api/v1/production/stages/<id>
  Stage progress    POST           /api/v1/production/stages/<id>/progress
  Work orders       GET/POST       /api/v1/production/work-orders
                    GET            /api/v1/production/work-orders/<id>
  Order progress    POST           /api/v1/production/work-orders/<id>/stages/<stage_id>/progress
  Dashboard         GET            /api/v1/production/dashboard

The caller's TenantContext comes from the tenant-context middleware.
Capability checks run here; the service layer owns business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import shopfloor.services.production_service as ps
from shopfloor.core.roles import Capability, check_capability
from shopfloor.middleware.permission_required import current_context, require_capability
from shopfloor.utils.errors import E, api_error, register_error_handlers
from shopfloor.utils.helpers import parse_pagination

logger = logging.getLogger(__name__)

production_bp = Blueprint("production", __name__, url_prefix="/api/v1/production")

register_error_handlers(production_bp)


def _json_body() -> tuple[dict | None, tuple | None]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return data, None


# ═════════════════════════════════════════════════════════════════════════
# Stages
# ═════════════════════════════════════════════════════════════════════════


@production_bp.route("/stages", methods=["GET"])
def list_stages():
    """List stages visible to the caller.

    Query params: page, limit, status, assigned_to
    """
    page, limit = parse_pagination(request.args)
    items, pagination = ps.list_stages(
        current_context(),
        page=page, limit=limit,
        status=request.args.get("status"),
        assigned_to=request.args.get("assigned_to", type=int),
    )
    return jsonify({"items": [s.to_dict() for s in items], "pagination": pagination}), 200


@production_bp.route("/stages/<int:stage_id>", methods=["GET"])
def get_stage(stage_id):
    ctx = current_context()
    stage = ps.get_stage(ctx, stage_id)
    check_capability(ctx, Capability.STAGE_VIEW,
                     supervisor_id=stage.supervisor_id, assignee_ids=stage.assignee_ids)
    return jsonify(stage.to_dict(include_dependencies=True)), 200


@production_bp.route("/stages", methods=["POST"])
@require_capability(Capability.STAGE_CREATE)
def create_stage():
    """Create a stage.

    Body: {
        name, order, estimated_duration_min, target_quantity,
        description?, notes?, status?, supervisor_id?, assigned_to?,
        predecessor_ids?, successor_ids?
    }
    """
    data, err = _json_body()
    if err:
        return err
    stage = ps.create_stage(current_context(), data)
    return jsonify(stage.to_dict(include_dependencies=True)), 201


@production_bp.route("/stages/<int:stage_id>", methods=["PUT"])
def update_stage(stage_id):
    data, err = _json_body()
    if err:
        return err
    ctx = current_context()
    stage = ps.get_stage(ctx, stage_id)
    check_capability(ctx, Capability.STAGE_UPDATE, supervisor_id=stage.supervisor_id)
    stage = ps.update_stage(ctx, stage_id, data)
    return jsonify(stage.to_dict(include_dependencies=True)), 200


@production_bp.route("/stages/<int:stage_id>", methods=["DELETE"])
@require_capability(Capability.STAGE_DELETE)
def delete_stage(stage_id):
    ps.delete_stage(current_context(), stage_id)
    return jsonify({"message": "Production stage deleted"}), 200


@production_bp.route("/stages/<int:stage_id>/progress", methods=["POST"])
def update_stage_progress(stage_id):
    """Record a completed-quantity reading.

    Body: { completed_quantity, notes? }
    Returns: { stage, activated_successor_ids }
    """
    data, err = _json_body()
    if err:
        return err
    ctx = current_context()
    stage = ps.get_stage(ctx, stage_id)
    check_capability(ctx, Capability.STAGE_PROGRESS,
                     supervisor_id=stage.supervisor_id, assignee_ids=stage.assignee_ids)

    stage, activated = ps.update_stage_progress(
        ctx, stage_id, data.get("completed_quantity"), notes=data.get("notes"),
    )
    return jsonify({"stage": stage.to_dict(), "activated_successor_ids": activated}), 200


# ═════════════════════════════════════════════════════════════════════════
# Work orders
# ═════════════════════════════════════════════════════════════════════════


@production_bp.route("/work-orders", methods=["GET"])
def list_work_orders():
    """Query params: page, limit, status, priority, assigned_to"""
    page, limit = parse_pagination(request.args)
    items, pagination = ps.list_work_orders(
        current_context(),
        page=page, limit=limit,
        status=request.args.get("status"),
        priority=request.args.get("priority"),
        assigned_to=request.args.get("assigned_to", type=int),
    )
    return jsonify({"items": [wo.to_dict() for wo in items], "pagination": pagination}), 200


@production_bp.route("/work-orders", methods=["POST"])
@require_capability(Capability.WORK_ORDER_CREATE)
def create_work_order():
    """Create a work order.

    Body: {
        product_name, target_quantity, start_date, due_date,
        stages: [{stage_id, order?}, ...],
        description?, priority?, supervisor_id?, assigned_to?, notes?
    }
    """
    data, err = _json_body()
    if err:
        return err
    work_order = ps.create_work_order(current_context(), data)
    return jsonify(work_order.to_dict()), 201


@production_bp.route("/work-orders/<int:work_order_id>", methods=["GET"])
def get_work_order(work_order_id):
    ctx = current_context()
    work_order = ps.get_work_order(ctx, work_order_id)
    check_capability(ctx, Capability.WORK_ORDER_VIEW,
                     supervisor_id=work_order.supervisor_id,
                     assignee_ids=work_order.assignee_ids)
    return jsonify(work_order.to_dict()), 200


@production_bp.route(
    "/work-orders/<int:work_order_id>/stages/<int:stage_id>/progress", methods=["POST"],
)
def update_work_order_stage_progress(work_order_id, stage_id):
    """Body: { completed_quantity }"""
    data, err = _json_body()
    if err:
        return err
    ctx = current_context()
    work_order = ps.get_work_order(ctx, work_order_id)
    check_capability(ctx, Capability.WORK_ORDER_PROGRESS,
                     supervisor_id=work_order.supervisor_id,
                     assignee_ids=work_order.assignee_ids)
    work_order = ps.update_work_order_stage_progress(
        ctx, work_order_id, stage_id, data.get("completed_quantity"),
    )
    return jsonify(work_order.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Dashboard
# ═════════════════════════════════════════════════════════════════════════


@production_bp.route("/dashboard", methods=["GET"])
def dashboard():
    return jsonify(ps.production_dashboard(current_context())), 200
