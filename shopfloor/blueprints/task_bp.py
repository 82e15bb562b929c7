"""Task blueprint — task CRUD, progress, quality checks, statistics.

Endpoint groups:
  Tasks             GET/POST  /api/v1/tasks
                    GET/PUT   /api/v1/tasks/<id>
  Progress          POST      /api/v1/tasks/<id>/progress
  Quality checks    POST      /api/v1/tasks/<id>/quality-checks/<name>/complete
  Statistics        GET       /api/v1/tasks/stats
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import shopfloor.services.task_service as ts
from shopfloor.core.roles import Capability, check_capability
from shopfloor.middleware.permission_required import current_context, require_capability
from shopfloor.utils.errors import E, api_error, register_error_handlers
from shopfloor.utils.helpers import parse_pagination

logger = logging.getLogger(__name__)

task_bp = Blueprint("tasks", __name__, url_prefix="/api/v1/tasks")

register_error_handlers(task_bp)


def _json_body(required: bool = True) -> tuple[dict | None, tuple | None]:
    data = request.get_json(silent=True)
    if data is None and not required:
        return {}, None
    if not isinstance(data, dict):
        return None, api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    return data, None


def _load_checked(task_id: int, capability: Capability):
    ctx = current_context()
    task = ts.get_task(ctx, task_id)
    check_capability(ctx, capability,
                     supervisor_id=task.supervisor_id, assignee_ids=task.assignee_ids)
    return ctx, task


@task_bp.route("", methods=["GET"])
def list_tasks():
    """Query params: page, limit, status, priority, work_order_id, stage_id, assigned_to"""
    page, limit = parse_pagination(request.args)
    items, pagination = ts.list_tasks(
        current_context(),
        page=page, limit=limit,
        status=request.args.get("status"),
        priority=request.args.get("priority"),
        work_order_id=request.args.get("work_order_id", type=int),
        stage_id=request.args.get("stage_id", type=int),
        assigned_to=request.args.get("assigned_to", type=int),
    )
    return jsonify({"items": [t.to_dict() for t in items], "pagination": pagination}), 200


@task_bp.route("/stats", methods=["GET"])
def task_stats():
    return jsonify(ts.task_stats(current_context())), 200


@task_bp.route("/<int:task_id>", methods=["GET"])
def get_task(task_id):
    _, task = _load_checked(task_id, Capability.TASK_VIEW)
    return jsonify(task.to_dict()), 200


@task_bp.route("", methods=["POST"])
@require_capability(Capability.TASK_CREATE)
def create_task():
    """Create a task.

    Body: {
        work_order_id, stage_id, name, assigned_to_id, target_quantity,
        due_date, estimated_duration_min,
        description?, priority?, supervisor_id?, notes?,
        quality_checks?: [{name, description?, is_required?}, ...]
    }
    """
    data, err = _json_body()
    if err:
        return err
    task = ts.create_task(current_context(), data)
    return jsonify(task.to_dict()), 201


@task_bp.route("/<int:task_id>", methods=["PUT"])
def update_task(task_id):
    data, err = _json_body()
    if err:
        return err
    ctx, _ = _load_checked(task_id, Capability.TASK_UPDATE)
    task = ts.update_task(ctx, task_id, data)
    return jsonify(task.to_dict()), 200


@task_bp.route("/<int:task_id>/progress", methods=["POST"])
def update_task_progress(task_id):
    """Body: { completed_quantity, notes? }"""
    data, err = _json_body()
    if err:
        return err
    ctx, _ = _load_checked(task_id, Capability.TASK_PROGRESS)
    task = ts.update_task_progress(
        ctx, task_id, data.get("completed_quantity"), notes=data.get("notes"),
    )
    return jsonify(task.to_dict()), 200


@task_bp.route("/<int:task_id>/quality-checks/<string:check_name>/complete", methods=["POST"])
def complete_quality_check(task_id, check_name):
    """Body (optional): { notes? }"""
    data, err = _json_body(required=False)
    if err:
        return err
    ctx, _ = _load_checked(task_id, Capability.TASK_PROGRESS)
    task = ts.complete_quality_check(ctx, task_id, check_name, notes=data.get("notes"))
    return jsonify(task.to_dict()), 200
