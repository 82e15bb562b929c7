"""
Audit service — fire-and-forget audit trail writes.

``record_audit`` runs after the business mutation has been committed. It
writes the row in its own commit; any failure is logged and swallowed so
the already-committed mutation is never undone and the caller never sees
an audit error.
"""

import logging

from shopfloor.models import db
from shopfloor.models.audit import AuditLog, write_audit

logger = logging.getLogger(__name__)


def record_audit(
    ctx,
    *,
    entity_type: str,
    entity_id,
    action: str,
    diff: dict | None = None,
    system: bool = False,
) -> AuditLog | None:
    """
    Append an audit row for ``ctx``'s tenant and commit it.

    Args:
        ctx: TenantContext of the caller.
        entity_type: production_stage | work_order | task | ...
        entity_id: PK of the affected entity.
        action: stage.progress | create | update | ...
        diff: Field-level change payload.
        system: Record without an actor (engine-triggered side effects).

    Returns:
        The committed AuditLog, or None if the write failed.
    """
    try:
        log = write_audit(
            tenant_id=ctx.tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_user_id=None if system else ctx.actor_id,
            diff=diff,
        )
        db.session.commit()
        return log
    except Exception:
        db.session.rollback()
        logger.exception(
            "Audit write failed: %s %s/%s (tenant=%s)",
            action, entity_type, entity_id, ctx.tenant_id,
        )
        return None


def list_audit(ctx, *, entity_type: str | None = None, entity_id=None, limit: int = 50) -> list[AuditLog]:
    """Most recent audit rows of the tenant, newest first."""
    q = AuditLog.query.filter_by(tenant_id=ctx.tenant_id)
    if entity_type:
        q = q.filter_by(entity_type=entity_type)
    if entity_id is not None:
        q = q.filter_by(entity_id=str(entity_id))
    return q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()
