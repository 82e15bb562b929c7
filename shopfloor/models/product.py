"""
Shopfloor Platform
Product catalog models.

Models:
    - Product:               sellable item with a SKU and a process route
    - ProductProcessStage:   ordered route step, linked to the production stage it spawned

Architecture:
    Company ──1:N──▶ Product ──1:N──▶ ProductProcessStage ──N:1──▶ ProductionStage

Lifecycle:
    Product:  active | inactive | discontinued   (set explicitly, no transitions)
"""

from shopfloor.models import db
from shopfloor.models.base import TenantModel, iso, utcnow

PRODUCT_STATUSES = {"active", "inactive", "discontinued"}


class Product(TenantModel):
    """Catalog entry. SKU is unique inside a tenant."""

    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(1000), default="")
    sku = db.Column(db.String(50), nullable=False)
    category = db.Column(db.String(100), nullable=False, index=True)
    specifications = db.Column(db.JSON, default=dict)
    status = db.Column(
        db.String(20), default="active", nullable=False,
        comment="active | inactive | discontinued",
    )

    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sku", name="uq_product_tenant_sku"),
        db.CheckConstraint(
            "status IN ('active','inactive','discontinued')",
            name="ck_product_status",
        ),
        TenantModel.tenant_composite_index("products", "status"),
    )

    process_stages = db.relationship(
        "ProductProcessStage", backref="product",
        cascade="all, delete-orphan", order_by="ProductProcessStage.order",
        lazy="selectin",
    )
    created_by = db.relationship("User", foreign_keys=[created_by_id])

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def total_estimated_duration_min(self) -> int:
        return sum(step.estimated_duration_min for step in self.process_stages)

    @property
    def stage_count(self) -> int:
        return len(self.process_stages)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "sku": self.sku,
            "category": self.category,
            "specifications": self.specifications or {},
            "status": self.status,
            "process_stages": [step.to_dict() for step in self.process_stages],
            "stage_count": self.stage_count,
            "total_estimated_duration_min": self.total_estimated_duration_min,
            "created_by_id": self.created_by_id,
            "created_by": self.created_by.to_summary() if self.created_by else None,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Product {self.id}: {self.sku} {self.name[:40]} [{self.status}]>"


class ProductProcessStage(db.Model):
    """One step of a product's process route."""

    __tablename__ = "product_process_stages"

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer, db.ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    stage_id = db.Column(
        db.Integer, db.ForeignKey("production_stages.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    order = db.Column(db.Integer, nullable=False)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), default="")
    estimated_duration_min = db.Column(db.Integer, nullable=False)
    required_skills = db.Column(db.JSON, default=list)
    quality_checks = db.Column(
        db.JSON, default=list,
        comment="[{name, description, required}]",
    )

    __table_args__ = (
        db.UniqueConstraint("product_id", "order", name="uq_product_stage_order"),
        db.CheckConstraint('"order" >= 1', name="ck_product_stage_order_positive"),
    )

    stage = db.relationship("ProductionStage")

    def to_dict(self):
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "stage": self.stage.to_summary() if self.stage else None,
            "order": self.order,
            "name": self.name,
            "description": self.description,
            "estimated_duration_min": self.estimated_duration_min,
            "required_skills": self.required_skills or [],
            "quality_checks": self.quality_checks or [],
        }
