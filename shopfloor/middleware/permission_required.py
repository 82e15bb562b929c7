"""
Permission Decorators — capability checks for route protection.

``require_capability`` guards endpoints whose capability does not depend
on a specific entity (create / delete). Entity-level checks (supervisor or
assignee reach) run inside the handler via ``check_capability`` once the
entity is loaded.

Usage:
    @bp.route("/production/stages", methods=["POST"])
    @require_capability(Capability.STAGE_CREATE)
    def create_stage():
        ...
"""

import functools
import logging

from flask import g

from shopfloor.core.roles import Capability, has_capability
from shopfloor.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def current_context():
    """TenantContext of the authenticated caller (set by tenant_context middleware)."""
    return g.tenant_ctx


def require_capability(capability: Capability):
    """
    Decorator: require the caller to hold ``capability`` without an
    ownership condition. Admin roles always pass.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            ctx = getattr(g, "tenant_ctx", None)
            if ctx is None:
                return api_error(E.UNAUTHORIZED, "Authentication required")

            if not has_capability(ctx, capability):
                logger.warning(
                    "User %s denied: missing capability '%s' on %s",
                    ctx.actor_id, capability.value, f.__name__,
                )
                return api_error(
                    E.FORBIDDEN, "Permission denied",
                    details={"required": capability.value},
                )

            return f(*args, **kwargs)
        return decorated
    return decorator
