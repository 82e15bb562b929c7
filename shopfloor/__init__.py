"""
Shopfloor Platform
Flask Application Factory.

Usage:
    from shopfloor import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from shopfloor.config import config
from shopfloor.core.exceptions import ConflictError, ValidationError
from shopfloor.middleware.jwt_auth import init_jwt_middleware
from shopfloor.middleware.logging_config import configure_logging
from shopfloor.middleware.rate_limiter import init_rate_limits
from shopfloor.middleware.security_headers import init_security_headers
from shopfloor.middleware.tenant_context import init_tenant_context
from shopfloor.middleware.timing import init_request_timing
from shopfloor.models import db
from shopfloor.utils.errors import E, api_error

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL") or "memory://",  # Redis in production, memory for dev
)


def _ensure_sqlite_dir(uri):
    if uri and uri.startswith("sqlite:///") and ":memory:" not in uri:
        os.makedirs(os.path.dirname(uri[len("sqlite:///"):]), exist_ok=True)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    _ensure_sqlite_dir(app.config.get("SQLALCHEMY_DATABASE_URI"))
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Security headers (CSP, HSTS, X-Frame-Options, etc.) ─────────────
    init_security_headers(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── JWT auth → tenant context (sets g.tenant_ctx) ────────────────────
    init_jwt_middleware(app)
    init_tenant_context(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.content_length and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so create_all / Alembic see them ───────────────
    from shopfloor.models import audit as _audit_models           # noqa: F401
    from shopfloor.models import auth as _auth_models             # noqa: F401
    from shopfloor.models import product as _product_models       # noqa: F401
    from shopfloor.models import production as _production_models  # noqa: F401
    from shopfloor.models import task as _task_models             # noqa: F401

    # ── Blueprints ───────────────────────────────────────────────────────
    from shopfloor.blueprints.product_bp import product_bp
    from shopfloor.blueprints.production_bp import production_bp
    from shopfloor.blueprints.task_bp import task_bp

    app.register_blueprint(production_bp)
    app.register_blueprint(product_bp)
    app.register_blueprint(task_bp)

    _register_cli(app)

    # ── Health check ─────────────────────────────────────────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Shopfloor Platform"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": E.NOT_FOUND, "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return api_error(E.VALIDATION_CONSTRAINT, e.description or "Request body too large", status=413)

    @app.errorhandler(415)
    def unsupported_media(e):
        return api_error(E.VALIDATION_INVALID, e.description or "Unsupported media type", status=415)

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error on %s %s: %s", request.method, request.path, e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    if not app.config.get("TESTING"):
        with app.app_context():
            db.create_all()

    return app


def _register_cli(app):
    """Provisioning commands: flask create-company / create-user / issue-token."""
    from shopfloor.models.auth import Company, User
    from shopfloor.services import jwt_service, user_service

    def _company_or_fail(slug):
        company = Company.query.filter_by(slug=slug).first()
        if company is None:
            raise click.ClickException(f"Company '{slug}' not found")
        return company

    @app.cli.command("create-company")
    @click.argument("name")
    @click.option("--slug", default=None, help="URL-safe identifier (default: from name)")
    @click.option("--industry", default="manufacturing")
    def create_company_cmd(name, slug, industry):
        """Create a company (tenant)."""
        try:
            company = user_service.create_company(name, slug=slug, industry=industry)
        except (ValidationError, ConflictError) as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(f"Created company id={company.id} slug={company.slug}")

    @app.cli.command("create-user")
    @click.option("--company", "company_slug", required=True, help="Company slug")
    @click.option("--email", required=True)
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--first-name", required=True)
    @click.option("--last-name", required=True)
    @click.option(
        "--role", default="employee",
        type=click.Choice(["super_admin", "admin", "supervisor", "employee"]),
    )
    def create_user_cmd(company_slug, email, password, first_name, last_name, role):
        """Create a user inside a company (bcrypt-hashed password)."""
        company = _company_or_fail(company_slug)
        try:
            user = user_service.create_user(
                company.id, email, password,
                first_name=first_name, last_name=last_name, role=role,
            )
        except (ValidationError, ConflictError) as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(f"Created user id={user.id} email={user.email} role={user.role}")

    @app.cli.command("issue-token")
    @click.option("--company", "company_slug", required=True, help="Company slug")
    @click.option("--email", required=True)
    @click.option("--expires", type=int, default=None, help="Lifetime in seconds")
    def issue_token_cmd(company_slug, email, expires):
        """Print an access token for a user (development helper)."""
        company = _company_or_fail(company_slug)
        user = User.query.filter_by(tenant_id=company.id, email=email.strip().lower()).first()
        if user is None:
            raise click.ClickException(f"User '{email}' not found in '{company_slug}'")
        click.echo(jwt_service.token_for_user(user, expires_in=expires)["access_token"])
