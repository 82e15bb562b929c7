"""
Shopfloor Platform
Production domain models.

Models:
    - ProductionStage:   one step of a manufacturing process with a quantity target
    - StageDependency:   predecessor → successor edge between two stages
    - WorkOrder:         production run against a target quantity
    - WorkOrderStage:    per-stage execution entry embedded in a work order

Architecture:
    Company ──1:N──▶ ProductionStage
    ProductionStage ──N:M──▶ ProductionStage  (via StageDependency, acyclic per tenant)
    Company ──1:N──▶ WorkOrder ──1:N──▶ WorkOrderStage ──N:1──▶ ProductionStage

Lifecycle states:
    ProductionStage:  planned → in_progress → completed   (on_hold / cancelled set externally)
    WorkOrder:        draft → active → completed           (paused / cancelled set externally)
    WorkOrderStage:   pending → in_progress → completed    (skipped set externally)
"""

from shopfloor.core.exceptions import NotFoundError
from shopfloor.models import db
from shopfloor.models.base import TenantModel, iso, utcnow


# ── Constants ────────────────────────────────────────────────────────────────

STAGE_STATUSES = {"planned", "in_progress", "completed", "on_hold", "cancelled"}

WORK_ORDER_STATUSES = {"draft", "active", "paused", "completed", "cancelled"}

WORK_ORDER_PRIORITIES = {"low", "medium", "high", "urgent"}

WORK_ORDER_STAGE_STATUSES = {"pending", "in_progress", "completed", "skipped"}


stage_assignees = db.Table(
    "stage_assignees",
    db.Column(
        "stage_id", db.Integer,
        db.ForeignKey("production_stages.id", ondelete="CASCADE"), primary_key=True,
    ),
    db.Column(
        "user_id", db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
    ),
)

work_order_assignees = db.Table(
    "work_order_assignees",
    db.Column(
        "work_order_id", db.Integer,
        db.ForeignKey("work_orders.id", ondelete="CASCADE"), primary_key=True,
    ),
    db.Column(
        "user_id", db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
    ),
)


# ═════════════════════════════════════════════════════════════════════════════
# 1. ProductionStage
# ═════════════════════════════════════════════════════════════════════════════


class ProductionStage(TenantModel):
    """
    One step in a manufacturing process.
    Quantities drive the status: see apply_progress().
    """

    __tablename__ = "production_stages"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), default="")
    order = db.Column(
        db.Integer, nullable=False,
        comment="Display / execution ordering key, not unique",
    )
    status = db.Column(
        db.String(30), default="planned", nullable=False,
        comment="planned | in_progress | completed | on_hold | cancelled",
    )

    estimated_duration_min = db.Column(db.Integer, nullable=False)
    actual_duration_min = db.Column(db.Integer, nullable=True)
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    supervisor_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    notes = db.Column(db.String(1000), default="")

    # Progress tracking
    target_quantity = db.Column(db.Integer, nullable=False)
    completed_quantity = db.Column(db.Integer, default=0, nullable=False)
    wip_quantity = db.Column(db.Integer, default=0, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('planned','in_progress','completed','on_hold','cancelled')",
            name="ck_stage_status",
        ),
        db.CheckConstraint('"order" >= 1', name="ck_stage_order_positive"),
        db.CheckConstraint("target_quantity >= 1", name="ck_stage_target_min"),
        db.CheckConstraint("completed_quantity >= 0", name="ck_stage_completed_min"),
        db.CheckConstraint("wip_quantity >= 0", name="ck_stage_wip_min"),
        db.CheckConstraint("estimated_duration_min >= 1", name="ck_stage_duration_min"),
        TenantModel.tenant_composite_index("production_stages", "order"),
    )

    # ── Relationships ────────────────────────────────────────────────────
    predecessor_links = db.relationship(
        "StageDependency",
        foreign_keys="StageDependency.successor_id",
        backref="successor_stage",
        lazy="dynamic",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    successor_links = db.relationship(
        "StageDependency",
        foreign_keys="StageDependency.predecessor_id",
        backref="predecessor_stage",
        lazy="dynamic",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    assignees = db.relationship("User", secondary=stage_assignees, lazy="selectin")
    supervisor = db.relationship("User", foreign_keys=[supervisor_id])

    # ── Derived values ───────────────────────────────────────────────────

    @property
    def predecessor_ids(self) -> list[int]:
        return sorted(link.predecessor_id for link in self.predecessor_links)

    @property
    def successor_ids(self) -> list[int]:
        return sorted(link.successor_id for link in self.successor_links)

    @property
    def assignee_ids(self) -> list[int]:
        return [u.id for u in self.assignees]

    @property
    def progress_percentage(self) -> float:
        if not self.target_quantity:
            return 0.0
        return (self.completed_quantity or 0) / self.target_quantity * 100

    @property
    def remaining_quantity(self) -> int:
        return max(0, self.target_quantity - (self.completed_quantity or 0))

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    # ── Progress state machine ───────────────────────────────────────────

    def apply_progress(self, completed_quantity: int, now=None) -> None:
        """
        Apply a completed-quantity reading to this stage (no commit).

        Quantity is clamped to the target. Reaching the target completes the
        stage and (re)stamps end_date; any positive quantity below target puts
        it in progress and stamps start_date once. Zero leaves status alone.
        Negative quantities must be rejected by the caller.
        """
        now = now or utcnow()
        self.completed_quantity = min(completed_quantity, self.target_quantity)
        self.wip_quantity = max(0, self.target_quantity - self.completed_quantity)

        if self.completed_quantity >= self.target_quantity:
            self.status = "completed"
            self.end_date = now
        elif self.completed_quantity > 0:
            self.status = "in_progress"
            if not self.start_date:
                self.start_date = now

    def to_summary(self):
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "completed_quantity": self.completed_quantity,
        }

    def to_dict(self, include_dependencies=False):
        result = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "order": self.order,
            "status": self.status,
            "estimated_duration_min": self.estimated_duration_min,
            "actual_duration_min": self.actual_duration_min,
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "supervisor_id": self.supervisor_id,
            "supervisor": self.supervisor.to_summary() if self.supervisor else None,
            "assigned_to": [u.to_summary() for u in self.assignees],
            "notes": self.notes,
            "target_quantity": self.target_quantity,
            "completed_quantity": self.completed_quantity,
            "wip_quantity": self.wip_quantity,
            "progress_percentage": round(self.progress_percentage, 2),
            "remaining_quantity": self.remaining_quantity,
            "predecessor_ids": self.predecessor_ids,
            "successor_ids": self.successor_ids,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if include_dependencies:
            result["predecessors"] = [
                link.predecessor_stage.to_summary() for link in self.predecessor_links
            ]
            result["successors"] = [
                link.successor_stage.to_summary() for link in self.successor_links
            ]
        return result

    def __repr__(self):
        return f"<ProductionStage {self.id}: #{self.order} {self.name[:40]} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. StageDependency
# ═════════════════════════════════════════════════════════════════════════════


class StageDependency(TenantModel):
    """
    Predecessor → Successor edge between production stages of one tenant.
    Acyclicity is enforced by services.stage_graph before rows are written.
    """

    __tablename__ = "stage_dependencies"

    id = db.Column(db.Integer, primary_key=True)
    predecessor_id = db.Column(
        db.Integer, db.ForeignKey("production_stages.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    successor_id = db.Column(
        db.Integer, db.ForeignKey("production_stages.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        db.UniqueConstraint("predecessor_id", "successor_id", name="uq_stage_dep"),
        db.CheckConstraint("predecessor_id != successor_id", name="ck_stage_dep_no_self_loop"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "predecessor_id": self.predecessor_id,
            "successor_id": self.successor_id,
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<StageDependency {self.predecessor_id} → {self.successor_id}>"


# ═════════════════════════════════════════════════════════════════════════════
# 3. WorkOrder
# ═════════════════════════════════════════════════════════════════════════════


class WorkOrder(TenantModel):
    """
    Production run against a target quantity.
    Order number format: WO-<epoch-ms>-0001 (generated in the service layer).
    """

    __tablename__ = "work_orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(60), unique=True, nullable=False)
    product_name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(1000), default="")
    priority = db.Column(db.String(10), default="medium", nullable=False)
    status = db.Column(
        db.String(20), default="draft", nullable=False,
        comment="draft | active | paused | completed | cancelled",
    )

    target_quantity = db.Column(db.Integer, nullable=False)
    completed_quantity = db.Column(
        db.Float, default=0, nullable=False,
        comment="Mean of stage entry quantities, capped at target",
    )

    start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    actual_end_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    supervisor_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    notes = db.Column(db.String(1000), default="")

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('draft','active','paused','completed','cancelled')",
            name="ck_work_order_status",
        ),
        db.CheckConstraint(
            "priority IN ('low','medium','high','urgent')",
            name="ck_work_order_priority",
        ),
        db.CheckConstraint("target_quantity >= 1", name="ck_work_order_target_min"),
        db.CheckConstraint("completed_quantity >= 0", name="ck_work_order_completed_min"),
        TenantModel.tenant_composite_index("work_orders", "status"),
    )

    stage_entries = db.relationship(
        "WorkOrderStage", backref="work_order",
        cascade="all, delete-orphan", order_by="WorkOrderStage.order",
        lazy="selectin",
    )
    assignees = db.relationship("User", secondary=work_order_assignees, lazy="selectin")
    supervisor = db.relationship("User", foreign_keys=[supervisor_id])
    created_by = db.relationship("User", foreign_keys=[created_by_id])

    @property
    def assignee_ids(self) -> list[int]:
        return [u.id for u in self.assignees]

    @property
    def progress_percentage(self) -> float:
        if not self.target_quantity:
            return 0.0
        return (self.completed_quantity or 0) / self.target_quantity * 100

    def find_entry(self, stage_id: int):
        """Return the stage entry referencing ``stage_id`` or None."""
        for entry in self.stage_entries:
            if entry.stage_id == stage_id:
                return entry
        return None

    def update_stage_progress(self, stage_id: int, completed_quantity: int, now=None) -> None:
        """
        Record ``completed_quantity`` on the entry for ``stage_id`` and
        recompute the order totals (no commit).

        Entry completion is judged against the work order's target, and the
        overall quantity is the mean of the entry quantities capped at the
        target.

        Raises:
            NotFoundError: If no entry references ``stage_id``.
        """
        entry = self.find_entry(stage_id)
        if entry is None:
            raise NotFoundError(resource="WorkOrderStage", resource_id=stage_id)

        now = now or utcnow()
        entry.completed_quantity = completed_quantity

        if entry.status == "pending" and completed_quantity > 0:
            entry.status = "in_progress"
            entry.start_date = now

        if completed_quantity >= self.target_quantity:
            entry.status = "completed"
            entry.end_date = now

        total = sum(e.completed_quantity or 0 for e in self.stage_entries)
        self.completed_quantity = min(total / len(self.stage_entries), self.target_quantity)

        if all(e.status == "completed" for e in self.stage_entries):
            self.status = "completed"
            self.actual_end_date = now
        elif self.completed_quantity > 0 and self.status == "draft":
            self.status = "active"

    def to_summary(self):
        return {
            "id": self.id,
            "order_number": self.order_number,
            "product_name": self.product_name,
            "status": self.status,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "order_number": self.order_number,
            "product_name": self.product_name,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "target_quantity": self.target_quantity,
            "completed_quantity": self.completed_quantity,
            "progress_percentage": round(self.progress_percentage, 2),
            "start_date": iso(self.start_date),
            "due_date": iso(self.due_date),
            "actual_end_date": iso(self.actual_end_date),
            "created_by_id": self.created_by_id,
            "supervisor_id": self.supervisor_id,
            "supervisor": self.supervisor.to_summary() if self.supervisor else None,
            "assigned_to": [u.to_summary() for u in self.assignees],
            "notes": self.notes,
            "stages": [entry.to_dict() for entry in self.stage_entries],
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<WorkOrder {self.id}: {self.order_number} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 4. WorkOrderStage
# ═════════════════════════════════════════════════════════════════════════════


class WorkOrderStage(db.Model):
    """Execution entry for one production stage inside a work order."""

    __tablename__ = "work_order_stages"

    id = db.Column(db.Integer, primary_key=True)
    work_order_id = db.Column(
        db.Integer, db.ForeignKey("work_orders.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    stage_id = db.Column(
        db.Integer, db.ForeignKey("production_stages.id"),
        nullable=False, index=True,
    )
    order = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), default="pending", nullable=False)
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_quantity = db.Column(db.Integer, default=0, nullable=False)
    notes = db.Column(db.String(500), default="")

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending','in_progress','completed','skipped')",
            name="ck_work_order_stage_status",
        ),
        db.CheckConstraint("completed_quantity >= 0", name="ck_work_order_stage_completed_min"),
    )

    stage = db.relationship("ProductionStage")

    def to_dict(self):
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "stage_name": self.stage.name if self.stage else None,
            "order": self.order,
            "status": self.status,
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "completed_quantity": self.completed_quantity,
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<WorkOrderStage wo={self.work_order_id} stage={self.stage_id} [{self.status}]>"
