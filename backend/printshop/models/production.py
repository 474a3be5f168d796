from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z


JOB_PENDING = "PENDING"
JOB_ACCEPTED = "ACCEPTED"
JOB_ASSIGNED = "ASSIGNED"
JOB_IN_PROGRESS = "IN_PROGRESS"
JOB_QA_REVIEW = "QA_REVIEW"
JOB_COMPLETED = "COMPLETED"
JOB_REJECTED = "REJECTED"
JOB_CANCELLED = "CANCELLED"

JOB_STATUSES = (
    JOB_PENDING,
    JOB_ACCEPTED,
    JOB_ASSIGNED,
    JOB_IN_PROGRESS,
    JOB_QA_REVIEW,
    JOB_COMPLETED,
    JOB_REJECTED,
    JOB_CANCELLED,
)

# Jobs past PENDING that are still being worked on
ACTIVE_JOB_STATUSES = (JOB_ACCEPTED, JOB_ASSIGNED, JOB_IN_PROGRESS, JOB_QA_REVIEW)

PRIORITY_LOW = "low"
PRIORITY_NORMAL = "normal"
PRIORITY_HIGH = "high"
PRIORITY_URGENT = "urgent"
JOB_PRIORITIES = (PRIORITY_LOW, PRIORITY_NORMAL, PRIORITY_HIGH, PRIORITY_URGENT)


class ServiceJob(db.Model):
    """
    Production job for exactly one order item.

    rework_count goes up every time QA sends the job back to IN_PROGRESS.
    started_at is stamped on the first entry to IN_PROGRESS only.
    """
    __tablename__ = "service_jobs"
    __table_args__ = (
        db.Index("ix_service_jobs_status_due", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    job_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, unique=True)

    status = db.Column(db.String(16), nullable=False, default=JOB_PENDING, index=True)
    assigned_to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    priority = db.Column(db.String(8), nullable=False, default=PRIORITY_NORMAL, index=True)

    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    rework_count = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("service_jobs", lazy=True, order_by="ServiceJob.id"))
    order_item = db.relationship("OrderItem", backref=db.backref("service_job", uselist=False, lazy=True))
    assigned_to = db.relationship("User", foreign_keys=[assigned_to_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_number": self.job_number,
            "order_id": self.order_id,
            "order_item_id": self.order_item_id,
            "status": self.status,
            "assigned_to_user_id": self.assigned_to_user_id,
            "priority": self.priority,
            "due_date": to_utc_z(self.due_date),
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "rework_count": self.rework_count,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class ServiceStatusHistory(db.Model):
    """
    Append-only log of job transitions.

    from_status is NULL only for the creation row.
    """
    __tablename__ = "service_status_history"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    service_job_id = db.Column(db.Integer, db.ForeignKey("service_jobs.id"), nullable=False, index=True)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=False)
    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    service_job = db.relationship(
        "ServiceJob",
        backref=db.backref("status_history", lazy=True, order_by="ServiceStatusHistory.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "service_job_id": self.service_job_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_by_user_id": self.changed_by_user_id,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }


class ServiceJobComment(db.Model):
    """Free-text note on a job. Immutable once posted."""
    __tablename__ = "service_job_comments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    service_job_id = db.Column(db.Integer, db.ForeignKey("service_jobs.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    body = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    service_job = db.relationship(
        "ServiceJob",
        backref=db.backref("comments", lazy=True, order_by="ServiceJobComment.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "service_job_id": self.service_job_id,
            "user_id": self.user_id,
            "body": self.body,
            "created_at": to_utc_z(self.created_at),
        }
