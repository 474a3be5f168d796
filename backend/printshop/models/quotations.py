from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z
from printshop.validation import money_str


QUOTE_DRAFT = "draft"
QUOTE_SENT = "sent"
QUOTE_APPROVED = "approved"
QUOTE_REJECTED = "rejected"
QUOTE_EXPIRED = "expired"
QUOTE_CONVERTED = "converted"
QUOTE_STATUSES = (QUOTE_DRAFT, QUOTE_SENT, QUOTE_APPROVED, QUOTE_REJECTED, QUOTE_EXPIRED, QUOTE_CONVERTED)

# Items can only be edited while the quotation is still being negotiated
EDITABLE_QUOTE_STATUSES = (QUOTE_DRAFT, QUOTE_SENT)


class Quotation(db.Model):
    """Pre-commitment mirror of an Order, priced with the same rules."""
    __tablename__ = "quotations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    quote_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default=QUOTE_DRAFT, index=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_percent = db.Column(db.Numeric(7, 4), nullable=True)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    converted_order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("quotations", lazy=True))
    items = db.relationship("QuotationItem", back_populates="quotation", lazy=True, order_by="QuotationItem.id")
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_user_id])
    converted_order = db.relationship("Order")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "quote_number": self.quote_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "valid_until": to_utc_z(self.valid_until),
            "subtotal": money_str(self.subtotal),
            "discount": money_str(self.discount),
            "discount_percent": str(self.discount_percent) if self.discount_percent is not None else None,
            "tax": money_str(self.tax),
            "total": money_str(self.total),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "converted_order_id": self.converted_order_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class QuotationItem(db.Model):
    __tablename__ = "quotation_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    quotation_id = db.Column(db.Integer, db.ForeignKey("quotations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    item_type = db.Column(db.String(16), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    dimensions = db.Column(db.JSON, nullable=True)

    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    line_total = db.Column(db.Numeric(12, 2), nullable=False)
    pricing_rule_id = db.Column(db.Integer, db.ForeignKey("pricing_rules.id"), nullable=True)
    override_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    quotation = db.relationship("Quotation", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quotation_id": self.quotation_id,
            "product_id": self.product_id,
            "item_type": self.item_type,
            "description": self.description,
            "quantity": self.quantity,
            "dimensions": self.dimensions,
            "unit_price": money_str(self.unit_price),
            "line_total": money_str(self.line_total),
            "pricing_rule_id": self.pricing_rule_id,
            "override_reason": self.override_reason,
            "created_at": to_utc_z(self.created_at),
        }
