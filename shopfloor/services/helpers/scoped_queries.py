"""
Tenant-scoped query helpers.

Every get-by-id in the platform MUST use these helpers instead of
Model.query.get(pk) or db.session.get(Model, pk). Direct .get() calls
bypass tenant isolation.

Usage:
    stage = get_scoped(ProductionStage, stage_id, tenant_id=ctx.tenant_id)

    # When None is an acceptable outcome (optional FK lookups)
    user = get_scoped_or_none(User, user_id, tenant_id=ctx.tenant_id)

    # Bulk: every id must resolve inside the tenant
    stages = get_all_scoped(ProductionStage, [1, 2, 3], tenant_id=ctx.tenant_id)
"""

import logging

from sqlalchemy import select

from shopfloor.core.exceptions import NotFoundError
from shopfloor.models import db

logger = logging.getLogger(__name__)


def _require_scope(model, pk, tenant_id):
    if tenant_id is None:
        raise ValueError(
            f"{model.__name__} id={pk} requires a tenant_id scope filter. "
            "Unscoped lookups are forbidden — they bypass tenant isolation."
        )
    if not hasattr(model, "tenant_id"):
        raise ValueError(
            f"{model.__name__} has no tenant_id column. "
            "Refusing to perform an unscoped lookup."
        )


def get_scoped(model, pk: int, *, tenant_id: int | None = None):
    """Fetch a single entity by PK with mandatory tenant filter.

    Cross-tenant access is indistinguishable from a missing record: both
    raise NotFoundError → HTTP 404.

    Args:
        model: SQLAlchemy model class with ``id`` and ``tenant_id`` columns.
        pk: Primary key value to look up.
        tenant_id: Tenant the entity must belong to.

    Returns:
        The model instance if found within the tenant.

    Raises:
        ValueError: If no tenant_id is provided or the model is not tenant-scoped.
        NotFoundError: If the entity does not exist OR belongs to another tenant.
    """
    _require_scope(model, pk, tenant_id)

    stmt = select(model).where(model.id == pk, model.tenant_id == tenant_id)
    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in tenant %s",
            model.__name__, pk, tenant_id,
        )
        raise NotFoundError(resource=model.__name__, resource_id=pk)

    return result


def get_scoped_or_none(model, pk: int, *, tenant_id: int | None = None):
    """Same as get_scoped but returns None instead of raising NotFoundError."""
    try:
        return get_scoped(model, pk, tenant_id=tenant_id)
    except NotFoundError:
        return None


def get_all_scoped(model, pks, *, tenant_id: int | None = None) -> list:
    """Fetch several entities by PK; every one must exist inside the tenant.

    Returns instances in the order of ``pks`` (duplicates collapsed).

    Raises:
        NotFoundError: For the first id that is missing or foreign.
    """
    wanted = list(dict.fromkeys(pks or ()))
    if not wanted:
        return []
    _require_scope(model, wanted, tenant_id)

    stmt = select(model).where(model.id.in_(wanted), model.tenant_id == tenant_id)
    found = {obj.id: obj for obj in db.session.execute(stmt).scalars()}

    for pk in wanted:
        if pk not in found:
            raise NotFoundError(resource=model.__name__, resource_id=pk)
    return [found[pk] for pk in wanted]
