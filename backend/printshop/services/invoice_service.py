# Overview: Invoices mirrored from orders; issuance, status derivation, overdue marking, disputes.

"""
Invoice Service

An order has at most one invoice. Its lines are the order's active items
minus items whose production job was cancelled; item_overrides adjust the
invoice only. Figures come from ledger_service like an order's.

Status after every recompute:
- draft stays draft until issued
- balance <= 0                 -> paid
- currently overdue            -> overdue (until settled)
- paid_amount > 0              -> partial
- otherwise                    -> issued
A disputed invoice stays disputed until it is settled.

Overdue marking is an explicit call (CLI: invoices mark-overdue).
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from flask import current_app

from ..errors import InvalidTransition, NotFoundError, ValidationError
from ..extensions import db
from ..models import Invoice, Order
from ..models.billing import (
    INVOICE_DISPUTED,
    INVOICE_DRAFT,
    INVOICE_ISSUED,
    INVOICE_OVERDUE,
    INVOICE_PAID,
    INVOICE_PARTIAL,
    INVOICE_STATUSES,
)
from ..models.orders import ORDER_CANCELLED, ORDER_DRAFT
from ..validation import ZERO, optional_text, require_choice, require_reason, round_money, to_money
from .concurrency import lock_for_update, run_with_retry
from .credit_service import refresh_customer_credit_balance
from .ledger_service import (
    invoice_line_total,
    invoiceable_items,
    parse_item_override,
    recompute_invoice,
    resolve_discount,
)
from .sequence_service import KIND_INVOICE, next_document_number
from .users_service import get_user
from printshop.time_utils import days_from, utcnow


logger = logging.getLogger(__name__)

CREATABLE_STATUSES = (INVOICE_DRAFT, INVOICE_ISSUED)


def _credit_period_days(order: Order, credit_period_days: int | None) -> int:
    if credit_period_days is not None:
        if isinstance(credit_period_days, bool) or not isinstance(credit_period_days, int) or credit_period_days < 0:
            raise ValidationError("credit_period_days must be a non-negative integer")
        return credit_period_days
    customer = order.customer
    if customer is not None and customer.is_credit and customer.credit_period_days is not None:
        return customer.credit_period_days
    return current_app.config.get("DEFAULT_CREDIT_PERIOD_DAYS", 30)


def derive_invoice_status(invoice: Invoice) -> str:
    if invoice.status == INVOICE_DRAFT:
        return INVOICE_DRAFT
    if invoice.balance is not None and Decimal(invoice.balance) <= 0:
        return INVOICE_PAID
    if invoice.status in (INVOICE_OVERDUE, INVOICE_DISPUTED):
        return invoice.status
    if Decimal(invoice.paid_amount or ZERO) > 0:
        return INVOICE_PARTIAL
    return INVOICE_ISSUED


def refresh_invoice_locked(invoice: Invoice) -> Invoice:
    """Recompute figures, re-derive status and the customer's owed balance."""
    recompute_invoice(invoice)
    invoice.status = derive_invoice_status(invoice)
    if invoice.customer is not None:
        refresh_customer_credit_balance(invoice.customer)
    return invoice


def create_invoice_locked(
    order: Order,
    status: str = INVOICE_DRAFT,
    credit_period_days: int | None = None,
    notes: str | None = None,
) -> Invoice:
    """
    Invoice for order inside the caller's unit of work. Returns the existing
    invoice when the order already has one.
    """
    require_choice(status, CREATABLE_STATUSES, "status")
    if order.invoice is not None:
        return order.invoice
    if order.status in (ORDER_DRAFT, ORDER_CANCELLED):
        raise InvalidTransition(
            f"Cannot invoice an order in status {order.status}",
            details={"order_id": order.id, "status": order.status},
        )

    lines = [invoice_line_total(item, None) for item in invoiceable_items(order)]
    subtotal = round_money(sum(lines, ZERO))
    if order.discount_percent is not None:
        discount = resolve_discount(subtotal, percent=order.discount_percent)
    else:
        discount = resolve_discount(subtotal, amount=order.discount or ZERO)

    now = utcnow()
    invoice = Invoice(
        invoice_number=next_document_number(KIND_INVOICE),
        order=order,
        customer=order.customer,
        status=INVOICE_DRAFT,
        discount=discount,
        due_date=days_from(now, _credit_period_days(order, credit_period_days)),
        notes=optional_text(notes),
    )
    db.session.add(invoice)
    db.session.flush()

    if status == INVOICE_ISSUED:
        invoice.status = INVOICE_ISSUED
        invoice.issue_date = now
    refresh_invoice_locked(invoice)
    logger.info("Invoice %s created (%s) for order %s", invoice.invoice_number, invoice.status, order.order_number)
    return invoice


def _get_invoice_locked(invoice_id: int) -> Invoice:
    invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
    if invoice is None:
        raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def create_invoice_from_order(
    order_id: int,
    actor_id: int,
    status: str = INVOICE_DRAFT,
    credit_period_days: int | None = None,
    notes: str | None = None,
) -> Invoice:
    def _op():
        get_user(actor_id)
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        if order.invoice is not None:
            raise ValidationError(
                "Order already has an invoice",
                details={"order_id": order.id, "invoice_id": order.invoice.id},
            )
        invoice = create_invoice_locked(order, status, credit_period_days, notes)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def update_draft_invoice(invoice_id: int, item_overrides: dict | None = None, discount=None, notes: str | None = None) -> Invoice:
    """Adjust a draft invoice; the source order is never touched."""
    def _op():
        invoice = _get_invoice_locked(invoice_id)
        if invoice.status != INVOICE_DRAFT:
            raise InvalidTransition(
                "Only draft invoices can be edited",
                details={"invoice_id": invoice.id, "status": invoice.status},
            )

        if item_overrides is not None:
            if not isinstance(item_overrides, dict):
                raise ValidationError("item_overrides must be an object keyed by order item id")
            valid_ids = {str(item.id) for item in invoiceable_items(invoice.order)} if invoice.order else set()
            normalized = {}
            for item_id, override in item_overrides.items():
                if str(item_id) not in valid_ids:
                    raise ValidationError(
                        f"Item {item_id} is not on this invoice",
                        details={"item_id": item_id, "invoice_id": invoice.id},
                    )
                normalized[str(item_id)] = parse_item_override(item_id, override)
            invoice.item_overrides = normalized or None

        if discount is not None:
            invoice.discount = to_money(discount, "discount")
        if notes is not None:
            invoice.notes = optional_text(notes)

        refresh_invoice_locked(invoice)
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def issue_invoice(invoice_id: int, actor_id: int) -> Invoice:
    def _op():
        get_user(actor_id)
        invoice = _get_invoice_locked(invoice_id)
        if invoice.status != INVOICE_DRAFT:
            raise InvalidTransition(
                f"Cannot issue an invoice in status {invoice.status}",
                details={"invoice_id": invoice.id, "from_status": invoice.status, "to_status": INVOICE_ISSUED},
            )
        invoice.status = INVOICE_ISSUED
        invoice.issue_date = utcnow()
        refresh_invoice_locked(invoice)
        db.session.commit()
        logger.info("Invoice %s issued", invoice.invoice_number)
        return invoice

    return run_with_retry(_op)


def mark_overdue_invoices(now: datetime | None = None) -> list[Invoice]:
    """issued/partial invoices past due with a positive balance become overdue."""
    def _op():
        cutoff = now or utcnow()
        invoices = (
            lock_for_update(
                db.session.query(Invoice).filter(
                    Invoice.status.in_((INVOICE_ISSUED, INVOICE_PARTIAL)),
                    Invoice.due_date.isnot(None),
                    Invoice.due_date < cutoff,
                    Invoice.balance > 0,
                )
            )
            .order_by(Invoice.id.asc())
            .all()
        )
        for invoice in invoices:
            invoice.status = INVOICE_OVERDUE
            logger.info("Invoice %s marked overdue (due %s)", invoice.invoice_number, invoice.due_date)
        db.session.commit()
        return invoices

    return run_with_retry(_op)


def dispute_invoice(invoice_id: int, actor_id: int, reason: str) -> Invoice:
    text = require_reason(reason)

    def _op():
        get_user(actor_id)
        invoice = _get_invoice_locked(invoice_id)
        if invoice.status in (INVOICE_DRAFT, INVOICE_PAID, INVOICE_DISPUTED):
            raise InvalidTransition(
                f"Cannot dispute an invoice in status {invoice.status}",
                details={"invoice_id": invoice.id, "from_status": invoice.status, "to_status": INVOICE_DISPUTED},
            )
        invoice.status = INVOICE_DISPUTED
        invoice.notes = f"{invoice.notes}\nDisputed: {text}" if invoice.notes else f"Disputed: {text}"
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
    return invoice


def list_invoices(customer_id: int | None = None, status: str | None = None) -> list[Invoice]:
    query = db.session.query(Invoice)
    if customer_id is not None:
        query = query.filter_by(customer_id=customer_id)
    if status is not None:
        query = query.filter_by(status=require_choice(status, INVOICE_STATUSES, "status"))
    return query.order_by(Invoice.id.desc()).all()
