"""
Auth Models — companies (tenants) and users.

A Company is the tenant boundary: every production entity carries a
tenant_id pointing here. Users belong to exactly one company and hold
exactly one role from shopfloor.core.roles.Role.
"""

from shopfloor.core.roles import Role
from shopfloor.models import db
from shopfloor.models.base import iso, utcnow

COMPANY_STATUSES = {"active", "inactive", "pending", "suspended"}

USER_STATUSES = {"active", "inactive", "suspended", "pending"}


# ═══════════════════════════════════════════════════════════════
# 1. COMPANIES
# ═══════════════════════════════════════════════════════════════
class Company(db.Model):
    __tablename__ = "companies"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    industry = db.Column(db.String(100), default="manufacturing")
    status = db.Column(db.String(20), default="active", nullable=False)
    plan = db.Column(db.String(50), default="trial")
    settings = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('active','inactive','pending','suspended')",
            name="ck_company_status",
        ),
    )

    users = db.relationship("User", back_populates="company", lazy="dynamic")

    @property
    def is_active(self):
        return self.status == "active"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "industry": self.industry,
            "status": self.status,
            "plan": self.plan,
            "settings": self.settings or {},
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Company {self.id}: {self.slug} [{self.status}]>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("companies.id", ondelete="CASCADE"), nullable=False
    )
    email = db.Column(db.String(200), nullable=False)
    password_hash = db.Column(db.String(256))
    first_name = db.Column(db.String(50), nullable=False)
    last_name = db.Column(db.String(50), nullable=False)
    role = db.Column(db.String(20), default=Role.EMPLOYEE.value, nullable=False)
    status = db.Column(db.String(20), default="active", nullable=False)
    department = db.Column(db.String(100))
    position = db.Column(db.String(100))
    last_login_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Same email can exist in different companies
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        db.Index("ix_users_tenant_id", "tenant_id"),
        db.CheckConstraint(
            "role IN ('super_admin','admin','supervisor','employee')",
            name="ck_user_role",
        ),
    )

    company = db.relationship("Company", back_populates="users")

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def role_enum(self) -> Role:
        return Role(self.role)

    def to_summary(self):
        """Short form embedded in stage / work order / task payloads."""
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "role": self.role,
            "status": self.status,
            "department": self.department,
            "position": self.position,
            "last_login_at": iso(self.last_login_at),
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email} [{self.role}]>"
