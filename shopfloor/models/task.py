"""
Shopfloor Platform
Task domain model.

Models:
    - Task:               unit of work against a work order stage
    - TaskQualityCheck:   named check that must be signed off on a task

Lifecycle:
    pending → in_progress → completed      (paused / cancelled set externally)
"""

from shopfloor.models import db
from shopfloor.models.base import TenantModel, iso, utcnow

TASK_STATUSES = {"pending", "in_progress", "completed", "paused", "cancelled"}

TASK_PRIORITIES = {"low", "medium", "high", "urgent"}


class Task(TenantModel):
    """
    Unit of work assigned to one employee.
    Task number format: TASK-<epoch-ms>-0001 (generated in the service layer).
    """

    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    task_number = db.Column(db.String(60), unique=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(1000), default="")

    work_order_id = db.Column(
        db.Integer, db.ForeignKey("work_orders.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    stage_id = db.Column(
        db.Integer, db.ForeignKey("production_stages.id"),
        nullable=False, index=True,
    )
    assigned_to_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    assigned_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    supervisor_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    status = db.Column(db.String(20), default="pending", nullable=False)
    priority = db.Column(db.String(10), default="medium", nullable=False)

    target_quantity = db.Column(db.Integer, nullable=False)
    completed_quantity = db.Column(db.Integer, default=0, nullable=False)

    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    actual_end_date = db.Column(db.DateTime(timezone=True), nullable=True)
    estimated_duration_min = db.Column(db.Integer, nullable=False)
    actual_duration_min = db.Column(db.Integer, nullable=True)

    notes = db.Column(db.String(1000), default="")

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('pending','in_progress','completed','paused','cancelled')",
            name="ck_task_status",
        ),
        db.CheckConstraint(
            "priority IN ('low','medium','high','urgent')",
            name="ck_task_priority",
        ),
        db.CheckConstraint("target_quantity >= 1", name="ck_task_target_min"),
        db.CheckConstraint("completed_quantity >= 0", name="ck_task_completed_min"),
        TenantModel.tenant_composite_index("tasks", "status"),
    )

    quality_checks = db.relationship(
        "TaskQualityCheck", backref="task",
        cascade="all, delete-orphan", order_by="TaskQualityCheck.id",
        lazy="selectin",
    )
    work_order = db.relationship("WorkOrder")
    stage = db.relationship("ProductionStage")
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_id])
    supervisor = db.relationship("User", foreign_keys=[supervisor_id])

    @property
    def assignee_ids(self) -> list[int]:
        return [self.assigned_to_id] if self.assigned_to_id else []

    @property
    def progress_percentage(self) -> float:
        if not self.target_quantity:
            return 0.0
        return (self.completed_quantity or 0) / self.target_quantity * 100

    def is_overdue(self, now=None) -> bool:
        if self.status == "completed" or not self.due_date:
            return False
        now = now or utcnow()
        due = self.due_date
        if due.tzinfo is None:
            now = now.replace(tzinfo=None)
        return due < now

    def apply_progress(self, completed_quantity: int, now=None) -> None:
        """Clamp to target, then complete or start the task (no commit)."""
        now = now or utcnow()
        self.completed_quantity = min(completed_quantity, self.target_quantity)

        if self.completed_quantity >= self.target_quantity:
            self.status = "completed"
            self.actual_end_date = now
            if self.start_date:
                start = self.start_date
                if start.tzinfo is None:
                    start = start.replace(tzinfo=now.tzinfo)
                self.actual_duration_min = round((now - start).total_seconds() / 60)
        elif self.completed_quantity > 0 and self.status == "pending":
            self.status = "in_progress"
            self.start_date = now

    def find_quality_check(self, name: str):
        for check in self.quality_checks:
            if check.name == name:
                return check
        return None

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "task_number": self.task_number,
            "name": self.name,
            "description": self.description,
            "work_order_id": self.work_order_id,
            "work_order": self.work_order.to_summary() if self.work_order else None,
            "stage_id": self.stage_id,
            "stage": self.stage.to_summary() if self.stage else None,
            "assigned_to_id": self.assigned_to_id,
            "assigned_to": self.assigned_to.to_summary() if self.assigned_to else None,
            "assigned_by_id": self.assigned_by_id,
            "supervisor_id": self.supervisor_id,
            "status": self.status,
            "priority": self.priority,
            "target_quantity": self.target_quantity,
            "completed_quantity": self.completed_quantity,
            "progress_percentage": round(self.progress_percentage, 2),
            "start_date": iso(self.start_date),
            "due_date": iso(self.due_date),
            "actual_end_date": iso(self.actual_end_date),
            "estimated_duration_min": self.estimated_duration_min,
            "actual_duration_min": self.actual_duration_min,
            "is_overdue": self.is_overdue(),
            "notes": self.notes,
            "quality_checks": [c.to_dict() for c in self.quality_checks],
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Task {self.id}: {self.task_number} [{self.status}]>"


class TaskQualityCheck(db.Model):
    __tablename__ = "task_quality_checks"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), default="")
    is_required = db.Column(db.Boolean, default=True, nullable=False)
    is_completed = db.Column(db.Boolean, default=False, nullable=False)
    completed_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.String(500), default="")

    __table_args__ = (
        db.UniqueConstraint("task_id", "name", name="uq_task_quality_check_name"),
    )

    def complete(self, user_id: int, notes: str | None = None, now=None) -> None:
        self.is_completed = True
        self.completed_by_id = user_id
        self.completed_at = now or utcnow()
        if notes:
            self.notes = notes

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_required": self.is_required,
            "is_completed": self.is_completed,
            "completed_by_id": self.completed_by_id,
            "completed_at": iso(self.completed_at),
            "notes": self.notes,
        }
