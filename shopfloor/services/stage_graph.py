"""
Stage dependency graph — acyclicity guard and edge persistence.

The graph of one tenant is held as an id adjacency (successor map) loaded
with a single tenant-filtered query. Proposed edge changes for one stage
are overlaid on that map and a depth-first walk from the stage decides
whether its successors lead back to it. Nothing is written until the walk
finishes clean.

Usage:
    from shopfloor.services import stage_graph

    stage_graph.validate_stage_edges(
        tenant_id, stage.id,
        predecessor_ids=[1, 2], successor_ids=[7],
    )
    stage_graph.replace_stage_edges(tenant_id, stage, predecessor_ids=[1, 2])
"""

import logging
from collections import defaultdict

from sqlalchemy import or_

from shopfloor.core.exceptions import ValidationError
from shopfloor.models import db
from shopfloor.models.production import ProductionStage, StageDependency
from shopfloor.services.helpers.scoped_queries import get_all_scoped

logger = logging.getLogger(__name__)

# Node id used for a stage that has not been flushed yet (real ids start at 1).
UNSAVED_STAGE = 0

CYCLE_MESSAGE = "circular dependency detected"


def load_successor_map(tenant_id: int) -> dict[int, set[int]]:
    """Return ``{predecessor_id: {successor_id, ...}}`` for one tenant."""
    rows = (
        db.session.query(StageDependency.predecessor_id, StageDependency.successor_id)
        .filter(StageDependency.tenant_id == tenant_id)
        .all()
    )
    successors = defaultdict(set)
    for pred_id, succ_id in rows:
        successors[pred_id].add(succ_id)
    return successors


def overlay_edges(
    successors: dict[int, set[int]],
    stage_id: int,
    *,
    predecessor_ids=None,
    successor_ids=None,
) -> dict[int, set[int]]:
    """
    Return a copy of ``successors`` with the edges of ``stage_id`` replaced.

    ``None`` leaves that side of the stage untouched; a list (even empty)
    replaces it.
    """
    proposed = defaultdict(set, {node: set(targets) for node, targets in successors.items()})

    if successor_ids is not None:
        proposed[stage_id] = set(successor_ids)

    if predecessor_ids is not None:
        for targets in proposed.values():
            targets.discard(stage_id)
        for pred_id in predecessor_ids:
            proposed[pred_id].add(stage_id)

    return proposed


def find_cycle(successors: dict[int, set[int]], start: int) -> list[int] | None:
    """
    Depth-first walk over successor edges from ``start``.

    Keeps an on-path set and an explored set; reaching a node that is still
    on the current path closes a cycle. Returns the cycle as a node list
    (first node repeated at the end) or None.
    """
    path = [start]
    on_path = {start}
    explored = set()
    stack = [iter(sorted(successors.get(start, ())))]

    while stack:
        for child in stack[-1]:
            if child in on_path:
                return path[path.index(child):] + [child]
            if child in explored:
                continue
            path.append(child)
            on_path.add(child)
            stack.append(iter(sorted(successors.get(child, ()))))
            break
        else:
            stack.pop()
            done = path.pop()
            on_path.discard(done)
            explored.add(done)

    return None


def validate_stage_edges(
    tenant_id: int,
    stage_id: int | None,
    *,
    predecessor_ids=None,
    successor_ids=None,
) -> None:
    """
    Check a proposed edge change for ``stage_id`` before anything is written.

    Raises:
        ValidationError: The stage references itself, or the change closes a cycle.
        NotFoundError: A referenced stage is missing or belongs to another tenant.
    """
    node = stage_id if stage_id is not None else UNSAVED_STAGE

    for ids in (predecessor_ids, successor_ids):
        if ids is not None and stage_id is not None and stage_id in ids:
            raise ValidationError(CYCLE_MESSAGE, details={"cycle": [stage_id, stage_id]})

    referenced = list(predecessor_ids or ()) + list(successor_ids or ())
    get_all_scoped(ProductionStage, referenced, tenant_id=tenant_id)

    proposed = overlay_edges(
        load_successor_map(tenant_id), node,
        predecessor_ids=predecessor_ids, successor_ids=successor_ids,
    )
    cycle = find_cycle(proposed, node)
    if cycle:
        logger.info("Rejected stage edges for stage=%s tenant=%s: cycle %s", stage_id, tenant_id, cycle)
        raise ValidationError(CYCLE_MESSAGE, details={"cycle": cycle})


def replace_stage_edges(
    tenant_id: int,
    stage: ProductionStage,
    *,
    predecessor_ids=None,
    successor_ids=None,
) -> None:
    """Rewrite the edge rows of ``stage`` (no commit). Validate first."""
    if successor_ids is not None:
        StageDependency.query.filter_by(
            tenant_id=tenant_id, predecessor_id=stage.id,
        ).delete(synchronize_session=False)
        for succ_id in dict.fromkeys(successor_ids):
            db.session.add(StageDependency(
                tenant_id=tenant_id, predecessor_id=stage.id, successor_id=succ_id,
            ))

    if predecessor_ids is not None:
        StageDependency.query.filter_by(
            tenant_id=tenant_id, successor_id=stage.id,
        ).delete(synchronize_session=False)
        for pred_id in dict.fromkeys(predecessor_ids):
            db.session.add(StageDependency(
                tenant_id=tenant_id, predecessor_id=pred_id, successor_id=stage.id,
            ))


def remove_stage_edges(tenant_id: int, stage_id: int) -> int:
    """Delete every edge row touching ``stage_id`` (no commit). Returns row count."""
    return StageDependency.query.filter(
        StageDependency.tenant_id == tenant_id,
        or_(
            StageDependency.predecessor_id == stage_id,
            StageDependency.successor_id == stage_id,
        ),
    ).delete(synchronize_session=False)
