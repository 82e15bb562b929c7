"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in shopfloor/__init__.py with no default
limits; this module applies granular limits per route category, keyed by
tenant when a tenant context exists and by remote IP otherwise.

Usage:
    from shopfloor.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def rate_limit_key():
    """Rate limit key: tenant id if available, else remote IP."""
    ctx = getattr(g, "tenant_ctx", None)
    if ctx is not None:
        return f"tenant:{ctx.tenant_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits:
        - Production / product / task:  60/minute for writes, 200/minute for reads
        - Health check:                 unlimited (no default limits)

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("production", "products", "tasks"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=rate_limit_key,
                          methods=["POST", "PUT", "PATCH", "DELETE"])(bp)
            limiter.limit(READ_LIMIT, key_func=rate_limit_key, methods=["GET"])(bp)

    app.logger.info("Rate limiter configured — write: %s, read: %s", WRITE_LIMIT, READ_LIMIT)
