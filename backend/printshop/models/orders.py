from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z
from printshop.validation import money_str


ORDER_DRAFT = "DRAFT"
ORDER_PENDING_PAYMENT = "PENDING_PAYMENT"
ORDER_PAID = "PAID"
ORDER_IN_PRODUCTION = "IN_PRODUCTION"
ORDER_READY = "READY"
ORDER_RELEASED = "RELEASED"
ORDER_COMPLETED = "COMPLETED"
ORDER_CANCELLED = "CANCELLED"

ORDER_STATUSES = (
    ORDER_DRAFT,
    ORDER_PENDING_PAYMENT,
    ORDER_PAID,
    ORDER_IN_PRODUCTION,
    ORDER_READY,
    ORDER_RELEASED,
    ORDER_COMPLETED,
    ORDER_CANCELLED,
)

TERMS_IMMEDIATE = "immediate"
TERMS_CREDIT_30 = "credit_30"
TERMS_CREDIT_60 = "credit_60"
PAYMENT_TERMS = (TERMS_IMMEDIATE, TERMS_CREDIT_30, TERMS_CREDIT_60)

ORDER_TYPE_WALK_IN = "walk_in"
ORDER_TYPE_REGULAR = "regular"
ORDER_TYPE_INVOICE = "invoice"
ORDER_TYPES = (ORDER_TYPE_WALK_IN, ORDER_TYPE_REGULAR, ORDER_TYPE_INVOICE)


class Order(db.Model):
    """
    Customer order.

    All money figures are derived by services.ledger_service from the active
    items, the recorded discount, the tax rate and the payments; they are
    never edited directly. Orders are never deleted: CANCELLED is the sink.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "ORD-2026-0001")
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    order_type = db.Column(db.String(16), nullable=False, default=ORDER_TYPE_WALK_IN)
    status = db.Column(db.String(24), nullable=False, default=ORDER_DRAFT, index=True)
    payment_terms = db.Column(db.String(16), nullable=False, default=TERMS_IMMEDIATE)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    # Set when the discount was entered as a percentage; re-resolved on recompute
    discount_percent = db.Column(db.Numeric(7, 4), nullable=True)
    discount_reason = db.Column(db.String(255), nullable=True)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    approved_by = db.relationship("User", foreign_keys=[approved_by_user_id])
    items = db.relationship("OrderItem", back_populates="order", lazy=True, order_by="OrderItem.id")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def active_items(self) -> list["OrderItem"]:
        return [item for item in self.items if item.removed_at is None]

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "order_type": self.order_type,
            "status": self.status,
            "payment_terms": self.payment_terms,
            "subtotal": money_str(self.subtotal),
            "discount": money_str(self.discount),
            "discount_percent": str(self.discount_percent) if self.discount_percent is not None else None,
            "discount_reason": self.discount_reason,
            "tax": money_str(self.tax),
            "total": money_str(self.total),
            "paid_amount": money_str(self.paid_amount),
            "balance": money_str(self.balance),
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "cancelled_reason": self.cancelled_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.active_items]
        return data


class OrderItem(db.Model):
    """
    One priced line on an order.

    line_total = unit_price x quantity. For dimension items unit_price
    already reflects the printed area and quantity is conventionally 1.
    pricing_rule_id records the rule that produced (or was shown for) the
    price; override_reason is mandatory when a person overrode it.
    """
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)

    item_type = db.Column(db.String(16), nullable=False)
    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    # {"width": "2", "height": "3", "unit": "ft"}
    dimensions = db.Column(db.JSON, nullable=True)

    unit_price = db.Column(db.Numeric(12, 2), nullable=True)
    line_total = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    pricing_rule_id = db.Column(db.Integer, db.ForeignKey("pricing_rules.id"), nullable=True)
    override_reason = db.Column(db.String(255), nullable=True)
    requires_production = db.Column(db.Boolean, nullable=False, default=False)

    removed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="items")
    product = db.relationship("Product")
    pricing_rule = db.relationship("PricingRule")

    @property
    def is_priced(self) -> bool:
        if self.unit_price is None:
            return False
        return self.pricing_rule_id is not None or bool(self.override_reason)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "item_type": self.item_type,
            "description": self.description,
            "quantity": self.quantity,
            "dimensions": self.dimensions,
            "unit_price": money_str(self.unit_price),
            "line_total": money_str(self.line_total),
            "pricing_rule_id": self.pricing_rule_id,
            "override_reason": self.override_reason,
            "requires_production": self.requires_production,
            "removed_at": to_utc_z(self.removed_at),
            "created_at": to_utc_z(self.created_at),
        }


class OrderStatusHistory(db.Model):
    """
    Append-only log of order transitions.

    IMMUTABLE: one row per transition, never updated or deleted.
    """
    __tablename__ = "order_status_history"
    __table_args__ = (
        db.Index("ix_order_history_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    from_status = db.Column(db.String(24), nullable=True)
    to_status = db.Column(db.String(24), nullable=False)
    changed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    action = db.Column(db.String(128), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("status_history", lazy=True, order_by="OrderStatusHistory.id"))
    changed_by = db.relationship("User", foreign_keys=[changed_by_user_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "changed_by_user_id": self.changed_by_user_id,
            "action": self.action,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
