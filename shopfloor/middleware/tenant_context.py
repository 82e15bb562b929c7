"""
Tenant Context Middleware — Enforces authentication and tenant isolation.

For every API request outside the skip list:
  1. g.jwt_user_id / g.jwt_tenant_id are already set by jwt_auth middleware
  2. Missing or bad token → 401
  3. User must exist inside the token's tenant and be active → else 401 / 403
  4. Company (tenant) must be active → else 403
  5. Sets g.tenant, g.current_user and g.tenant_ctx (TenantContext) for handlers

Roles are read from the user row, not the token, so a role change takes
effect on the next request.

Chain order:
  jwt_auth.py  →  tenant_context.py  →  route handler
"""

import logging

from flask import g, request

from shopfloor.core.context import TenantContext
from shopfloor.models import db
from shopfloor.models.auth import Company, User
from shopfloor.services.helpers.scoped_queries import get_scoped_or_none
from shopfloor.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip tenant context (unauthenticated paths only)
TENANT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_tenant_context(app):
    """Register tenant context middleware as a before_request hook."""

    @app.before_request
    def _tenant_context():
        g.tenant = None
        g.current_user = None
        g.tenant_ctx = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in TENANT_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None
        if request.method == "OPTIONS":
            return None

        user_id = getattr(g, "jwt_user_id", None)
        tenant_id = getattr(g, "jwt_tenant_id", None)
        if user_id is None or tenant_id is None:
            if getattr(g, "jwt_error", None) == "expired":
                return api_error(E.UNAUTHORIZED, "Token expired")
            return api_error(E.UNAUTHORIZED, "Authentication required")

        user = get_scoped_or_none(User, user_id, tenant_id=tenant_id)
        if user is None:
            logger.warning("JWT user %s not found in tenant %s", user_id, tenant_id)
            return api_error(E.UNAUTHORIZED, "User not found")
        if user.status != "active":
            return api_error(E.FORBIDDEN, "User account is not active")

        company = db.session.get(Company, tenant_id)
        if company is None or not company.is_active:
            logger.warning("JWT tenant_id %s is missing or deactivated", tenant_id)
            return api_error(E.TENANT_INACTIVE, "Company account is not active")

        g.tenant = company
        g.current_user = user
        g.tenant_ctx = TenantContext.for_user(user)
        return None

    logger.info("Tenant context middleware installed")
