"""
Company & user provisioning — used by the CLI commands and tests.

Self-service registration and login are handled outside this service.
"""

import logging
import re

from shopfloor.core.exceptions import ConflictError, ValidationError
from shopfloor.core.roles import Role
from shopfloor.models import db
from shopfloor.models.auth import COMPANY_STATUSES, Company, User
from shopfloor.utils.crypto import check_password_policy, hash_password
from shopfloor.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    return _SLUG_RE.sub("-", name.lower()).strip("-")


def create_company(name: str, *, slug: str | None = None, industry: str = "manufacturing",
                   status: str = "active") -> Company:
    """Create a tenant. Slug defaults to the slugified name."""
    if not name or not name.strip():
        raise ValidationError("name is required", details={"name": "required"})
    if status not in COMPANY_STATUSES:
        raise ValidationError(f"Invalid status: {status}", details={"status": "invalid"})

    slug = slug or slugify(name)
    if Company.query.filter_by(slug=slug).first():
        raise ConflictError.duplicate("Company", "slug", slug)

    company = Company(name=name.strip(), slug=slug, industry=industry, status=status)
    db.session.add(company)
    commit_or_raise()
    logger.info("Company created id=%s slug=%s", company.id, slug)
    return company


def create_user(tenant_id: int, email: str, password: str | None, *, first_name: str,
                last_name: str, role: str = Role.EMPLOYEE.value, **extra) -> User:
    """Create a user inside a tenant with a bcrypt password hash."""
    try:
        role = Role(role).value
    except ValueError as exc:
        raise ValidationError(f"Invalid role: {role}", details={"role": "invalid"}) from exc

    if password is not None:
        check_password_policy(password)

    email = (email or "").strip().lower()
    if "@" not in email:
        raise ValidationError("A valid email is required", details={"email": "invalid"})
    if User.query.filter_by(tenant_id=tenant_id, email=email).first():
        raise ConflictError.duplicate("User", "email", email)

    user = User(
        tenant_id=tenant_id,
        email=email,
        password_hash=hash_password(password) if password else None,
        first_name=first_name,
        last_name=last_name,
        role=role,
        department=extra.get("department"),
        position=extra.get("position"),
    )
    db.session.add(user)
    commit_or_raise()
    logger.info("User created id=%s tenant=%s role=%s", user.id, tenant_id, role)
    return user
