from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z


APPROVAL_DISCOUNT = "discount"
APPROVAL_CREDIT_OVERRIDE = "credit_override"
APPROVAL_CANCELLATION = "cancellation"
APPROVAL_TYPES = (APPROVAL_DISCOUNT, APPROVAL_CREDIT_OVERRIDE, APPROVAL_CANCELLATION)

APPROVAL_PENDING = "pending"
APPROVAL_APPROVED = "approved"
APPROVAL_REJECTED = "rejected"
APPROVAL_STATUSES = (APPROVAL_PENDING, APPROVAL_APPROVED, APPROVAL_REJECTED)


class ApprovalRequest(db.Model):
    """
    Exception request raised when a counter action exceeds local authority.

    pending -> approved | rejected, then terminal. An approved request
    authorizes exactly one retry of the original action; the retry stamps
    consumed_at so the approval cannot be reused.
    """
    __tablename__ = "approval_requests"
    __table_args__ = (
        db.Index("ix_approval_requests_type_status", "type", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(24), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=APPROVAL_PENDING, index=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Snapshot of the attempted action (amounts as strings) plus the reason
    request_data = db.Column(db.JSON, nullable=False)
    approver_notes = db.Column(db.Text, nullable=True)

    consumed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    consumed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("approval_requests", lazy=True))
    customer = db.relationship("Customer")
    requested_by = db.relationship("User", foreign_keys=[requested_by_user_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_user_id])
    consumed_by = db.relationship("User", foreign_keys=[consumed_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "status": self.status,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "requested_by_user_id": self.requested_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "approved_at": to_utc_z(self.approved_at),
            "request_data": self.request_data,
            "approver_notes": self.approver_notes,
            "consumed_at": to_utc_z(self.consumed_at),
            "consumed_by_user_id": self.consumed_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
