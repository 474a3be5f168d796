from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z


ROLE_ADMIN = "admin"
ROLE_MANAGER = "manager"
ROLE_COUNTER = "counter_staff"
ROLE_PRODUCTION = "production"
ROLE_QA = "qa"

VALID_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_COUNTER, ROLE_PRODUCTION, ROLE_QA)

# Roles allowed to resolve approvals and exceed the discount threshold
APPROVER_ROLES = (ROLE_ADMIN, ROLE_MANAGER)


class User(db.Model):
    """
    Staff member acting on the system.

    Authentication lives outside this service; a User row only gives every
    state change an attributable actor id and a role for authority checks.
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(128), nullable=False)
    role = db.Column(db.String(32), nullable=False, default=ROLE_COUNTER, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def can_approve(self) -> bool:
        return self.role in APPROVER_ROLES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
