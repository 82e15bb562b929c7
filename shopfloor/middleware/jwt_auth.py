"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_*.

Sets:
    g.jwt_user_id, g.jwt_tenant_id, g.jwt_role  — decoded claims (or None)
    g.jwt_error                                  — "expired" | "invalid" | None

This hook never rejects a request itself; tenant_context.py decides
whether the request may proceed.

Chain order:
  jwt_auth.py  →  tenant_context.py  →  route handler
"""

import logging

import jwt as pyjwt
from flask import g, request

from shopfloor.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_tenant_id = None
        g.jwt_role = None
        g.jwt_error = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            g.jwt_error = "expired"
            return
        except pyjwt.InvalidTokenError as exc:
            logger.info("Rejected JWT on %s: %s", path, exc)
            g.jwt_error = "invalid"
            return

        g.jwt_user_id = payload["sub"]
        g.jwt_tenant_id = payload.get("tenant_id")
        g.jwt_role = payload.get("role")
