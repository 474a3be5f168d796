from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z
from printshop.validation import money_str


CUSTOMER_WALK_IN = "walk_in"
CUSTOMER_REGULAR = "regular"
CUSTOMER_CREDIT = "credit"
CUSTOMER_TYPES = (CUSTOMER_WALK_IN, CUSTOMER_REGULAR, CUSTOMER_CREDIT)


class Customer(db.Model):
    """
    Customer master data.

    Only type=credit customers are subject to credit checks.
    credit_balance is what the customer currently owes; it is re-derived from
    outstanding invoice balances plus credit-committed orders not yet invoiced,
    and is read-only input for pricing and order flows.
    """
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    type = db.Column(db.String(16), nullable=False, default=CUSTOMER_REGULAR, index=True)

    credit_limit = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    credit_balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    credit_period_days = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def is_credit(self) -> bool:
        return self.type == CUSTOMER_CREDIT

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "type": self.type,
            "credit_limit": money_str(self.credit_limit),
            "credit_balance": money_str(self.credit_balance),
            "credit_period_days": self.credit_period_days,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
