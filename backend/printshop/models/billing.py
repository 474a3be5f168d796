from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z
from printshop.validation import money_str


INVOICE_DRAFT = "draft"
INVOICE_ISSUED = "issued"
INVOICE_PARTIAL = "partial"
INVOICE_PAID = "paid"
INVOICE_OVERDUE = "overdue"
INVOICE_DISPUTED = "disputed"
INVOICE_STATUSES = (
    INVOICE_DRAFT,
    INVOICE_ISSUED,
    INVOICE_PARTIAL,
    INVOICE_PAID,
    INVOICE_OVERDUE,
    INVOICE_DISPUTED,
)

# Invoices that still count towards what a customer owes
OUTSTANDING_INVOICE_STATUSES = (INVOICE_ISSUED, INVOICE_PARTIAL, INVOICE_OVERDUE, INVOICE_DISPUTED)

METHOD_CASH = "cash"
METHOD_CARD = "card"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_CREDIT = "credit"
PAYMENT_METHODS = (METHOD_CASH, METHOD_CARD, METHOD_BANK_TRANSFER, METHOD_CREDIT)


class Invoice(db.Model):
    """
    Customer invoice, optionally mirroring an order.

    Totals are derived with the same ledger rules as orders. item_overrides
    is an optional snapshot of per-item price adjustments that only affect
    the invoice, never the source order.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.Index("ix_invoices_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, unique=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_DRAFT, index=True)

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    paid_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    balance = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    issue_date = db.Column(db.DateTime(timezone=True), nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    # {"<order_item_id>": {"unit_price": "1.20", "discount_type": "percentage", "discount_value": "10"}}
    item_overrides = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("invoice", uselist=False, lazy=True))
    customer = db.relationship("Customer", backref=db.backref("invoices", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "subtotal": money_str(self.subtotal),
            "discount": money_str(self.discount),
            "tax": money_str(self.tax),
            "total": money_str(self.total),
            "paid_amount": money_str(self.paid_amount),
            "balance": money_str(self.balance),
            "issue_date": to_utc_z(self.issue_date),
            "due_date": to_utc_z(self.due_date),
            "item_overrides": self.item_overrides,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class Payment(db.Model):
    """
    Money received against an order and/or an invoice.

    IMMUTABLE: payments are never updated or deleted. A refund is a new row
    with a negative amount pointing at the original via refund_of_id.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint(
            "order_id IS NOT NULL OR invoice_id IS NOT NULL",
            name="ck_payments_has_target",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    # Positive for money in, negative for refunds
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method = db.Column(db.String(16), nullable=False, index=True)
    reference_number = db.Column(db.String(128), nullable=True)
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False)

    refund_of_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)
    refund_reason = db.Column(db.String(255), nullable=True)

    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("payments", lazy=True, order_by="Payment.id"))
    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True, order_by="Payment.id"))
    received_by = db.relationship("User", foreign_keys=[received_by_user_id])
    refund_of = db.relationship("Payment", remote_side=[id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_number": self.payment_number,
            "order_id": self.order_id,
            "invoice_id": self.invoice_id,
            "customer_id": self.customer_id,
            "amount": money_str(self.amount),
            "payment_method": self.payment_method,
            "reference_number": self.reference_number,
            "payment_date": to_utc_z(self.payment_date),
            "refund_of_id": self.refund_of_id,
            "refund_reason": self.refund_reason,
            "received_by_user_id": self.received_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
