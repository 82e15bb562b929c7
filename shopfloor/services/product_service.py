"""
Products — Service Layer.

Business logic for:
    - Product CRUD:     tenant-scoped, SKU unique per tenant
    - Process route:    one production stage created per route step
    - Catalog figures:  per-status counts, distinct categories

Products are tenant-wide reference data: every role may read them, and
the blueprint restricts writes to admins.
"""

import logging

from sqlalchemy import func

from shopfloor.core.exceptions import ConflictError, ValidationError
from shopfloor.models import db
from shopfloor.models.product import PRODUCT_STATUSES, Product, ProductProcessStage
from shopfloor.models.production import ProductionStage
from shopfloor.services.audit_service import record_audit
from shopfloor.services.helpers import validation as v
from shopfloor.services.helpers.scoped_queries import get_scoped
from shopfloor.utils.helpers import commit_or_raise, paginate

logger = logging.getLogger(__name__)


def list_products(ctx, *, page=1, limit=10, status=None, category=None):
    """Paginated products of the tenant, newest first."""
    q = Product.query_for_tenant(ctx.tenant_id)
    if status:
        q = q.filter(Product.status == status)
    if category:
        q = q.filter(Product.category == category)
    q = q.order_by(Product.created_at.desc(), Product.id.desc())
    return paginate(q, page, limit)


def get_product(ctx, product_id: int) -> Product:
    return get_scoped(Product, product_id, tenant_id=ctx.tenant_id)


def _bounded_str(data: dict, field: str, *, min_length: int, max_length: int, required=True):
    value = v.str_field(data, field, max_length=max_length, required=required)
    if value is not None and len(value) < min_length:
        raise ValidationError(
            f"{field} must be between {min_length} and {max_length} characters",
            details={field: "length"},
        )
    return value


def _specifications(data: dict):
    value = data.get("specifications")
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError(
            "specifications must be an object", details={"specifications": "object"},
        )
    return value


def _skills(raw) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("required_skills must be a list", details={"required_skills": "list"})
    return [str(skill).strip() for skill in raw if str(skill).strip()]


def _route_checks(raw) -> list[dict]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValidationError("quality_checks must be a list", details={"quality_checks": "list"})
    checks = []
    for item in raw:
        if isinstance(item, str):
            item = {"name": item}
        if not isinstance(item, dict):
            raise ValidationError(
                "quality_checks entries must be objects", details={"quality_checks": "object"},
            )
        checks.append({
            "name": v.str_field(item, "name", max_length=100, required=True),
            "description": v.str_field(item, "description", max_length=500, default=""),
            "required": bool(item.get("required", True)),
        })
    return checks


def _process_route(raw) -> list[dict]:
    """
    Validate the ``process_stages`` payload.

    Orders must be unique and the lowest must be 1.
    """
    if not isinstance(raw, list) or not raw:
        raise ValidationError(
            "At least one process stage is required", details={"process_stages": "required"},
        )

    steps = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValidationError(
                "process_stages entries must be objects", details={"process_stages": "object"},
            )
        v.require_fields(item, "name", "order", "estimated_duration_min")
        steps.append({
            "name": _bounded_str(item, "name", min_length=2, max_length=100),
            "order": v.int_field(item, "order", minimum=1),
            "description": v.str_field(item, "description", max_length=500, default=""),
            "estimated_duration_min": v.int_field(item, "estimated_duration_min", minimum=1),
            "target_quantity": v.int_field(item, "target_quantity", minimum=1, default=1),
            "required_skills": _skills(item.get("required_skills")),
            "quality_checks": _route_checks(item.get("quality_checks")),
        })

    orders = [step["order"] for step in steps]
    if len(set(orders)) != len(orders):
        raise ValidationError(
            "Process stages must have unique order numbers",
            details={"process_stages": "duplicate order"},
        )
    if min(orders) != 1:
        raise ValidationError(
            "Process stages order must start from 1",
            details={"process_stages": "order must start at 1"},
        )
    return sorted(steps, key=lambda step: step["order"])


def _ensure_sku_free(ctx, sku: str, *, exclude_id: int | None = None) -> None:
    q = Product.query_for_tenant(ctx.tenant_id).filter(Product.sku == sku)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    if q.first() is not None:
        raise ConflictError.duplicate("Product", "sku", sku)


def create_product(ctx, data: dict) -> Product:
    """
    Create a product and one planned production stage per route step.

    Raises:
        ValidationError: Missing/invalid field or a malformed route.
        ConflictError: The SKU is already used in the tenant.
    """
    v.require_fields(data, "name", "sku", "category", "process_stages")
    name = _bounded_str(data, "name", min_length=2, max_length=200)
    sku = _bounded_str(data, "sku", min_length=2, max_length=50)
    category = _bounded_str(data, "category", min_length=2, max_length=100)
    steps = _process_route(data.get("process_stages"))
    _ensure_sku_free(ctx, sku)

    product = Product(
        tenant_id=ctx.tenant_id,
        name=name,
        description=v.str_field(data, "description", max_length=1000, default=""),
        sku=sku,
        category=category,
        specifications=_specifications(data),
        status=v.choice_field(data, "status", PRODUCT_STATUSES, default="active"),
        created_by_id=ctx.actor_id,
    )

    for step in steps:
        stage = ProductionStage(
            tenant_id=ctx.tenant_id,
            name=step["name"],
            description=step["description"],
            order=step["order"],
            status="planned",
            estimated_duration_min=step["estimated_duration_min"],
            target_quantity=step["target_quantity"],
            completed_quantity=0,
            wip_quantity=step["target_quantity"],
        )
        db.session.add(stage)
        product.process_stages.append(ProductProcessStage(
            stage=stage,
            order=step["order"],
            name=step["name"],
            description=step["description"],
            estimated_duration_min=step["estimated_duration_min"],
            required_skills=step["required_skills"],
            quality_checks=step["quality_checks"],
        ))

    db.session.add(product)
    commit_or_raise()

    logger.info(
        "Product created id=%s tenant=%s sku=%s stages=%s",
        product.id, ctx.tenant_id, product.sku, len(steps),
    )
    record_audit(ctx, entity_type="product", entity_id=product.id, action="create",
                 diff={"name": product.name, "sku": product.sku, "stage_count": len(steps)})
    return product


def update_product(ctx, product_id: int, data: dict) -> Product:
    """Update catalog fields. The process route is fixed once created."""
    product = get_product(ctx, product_id)

    updates = {}
    if "name" in data:
        updates["name"] = _bounded_str(data, "name", min_length=2, max_length=200)
    if "description" in data:
        updates["description"] = v.str_field(data, "description", max_length=1000, default="")
    if "category" in data:
        updates["category"] = _bounded_str(data, "category", min_length=2, max_length=100)
    if "sku" in data:
        updates["sku"] = _bounded_str(data, "sku", min_length=2, max_length=50)
        _ensure_sku_free(ctx, updates["sku"], exclude_id=product.id)
    if "specifications" in data:
        updates["specifications"] = _specifications(data)
    if data.get("status") is not None:
        updates["status"] = v.choice_field(data, "status", PRODUCT_STATUSES)

    changes = {}
    for key, value in updates.items():
        if getattr(product, key) != value:
            changes[key] = {"old": getattr(product, key), "new": value}
            setattr(product, key, value)

    commit_or_raise()
    record_audit(ctx, entity_type="product", entity_id=product.id, action="update", diff=changes)
    return product


def delete_product(ctx, product_id: int) -> None:
    """Delete a product and its route. Spawned production stages stay."""
    product = get_product(ctx, product_id)
    name, sku = product.name, product.sku
    db.session.delete(product)
    commit_or_raise()

    logger.info("Product deleted id=%s tenant=%s sku=%s", product_id, ctx.tenant_id, sku)
    record_audit(ctx, entity_type="product", entity_id=product_id, action="delete",
                 diff={"name": name, "sku": sku})


def product_categories(ctx) -> list[str]:
    rows = (
        db.session.query(Product.category)
        .filter(Product.tenant_id == ctx.tenant_id)
        .distinct()
        .order_by(Product.category.asc())
        .all()
    )
    return [category for (category,) in rows]


def product_stats(ctx) -> dict:
    """Per-status counts plus total / active / inactive."""
    rows = (
        db.session.query(Product.status, func.count(Product.id))
        .filter(Product.tenant_id == ctx.tenant_id)
        .group_by(Product.status)
        .all()
    )
    stats = [{"status": status, "count": count} for status, count in rows]
    total = sum(s["count"] for s in stats)
    active = next((s["count"] for s in stats if s["status"] == "active"), 0)
    return {
        "stats": stats,
        "summary": {
            "total_products": total,
            "active_products": active,
            "inactive_products": total - active,
        },
    }
