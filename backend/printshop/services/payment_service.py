# Overview: Payment recording and refunds; updates order and invoice in one unit of work.

"""
Payment Service

Payments are immutable. A refund is a new negative row pointing at the
original through refund_of_id, so paid_amount is always a plain sum.

A payment on an invoice that mirrors an order references both, and both
ledgers are recomputed in the same transaction. Afterwards the order may
advance on its own:
- PENDING_PAYMENT -> PAID once the balance is settled
- RELEASED -> COMPLETED once the order's invoice is paid

Only cash may exceed the outstanding balance (change is given); the
resulting negative balance is kept as-is.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from ..errors import InvalidTransition, NotFoundError, ValidationError
from ..extensions import db
from ..models import Invoice, Order, Payment
from ..models.billing import INVOICE_DRAFT, INVOICE_PAID, METHOD_CASH, PAYMENT_METHODS
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    ORDER_DRAFT,
    ORDER_PAID,
    ORDER_PENDING_PAYMENT,
    ORDER_RELEASED,
)
from ..validation import optional_text, require_choice, require_reason, to_money
from .concurrency import lock_for_update, run_with_retry
from .credit_service import refresh_customer_credit_balance
from .invoice_service import refresh_invoice_locked
from .ledger_service import recompute_order
from .order_service import transition_order_locked
from .sequence_service import KIND_PAYMENT, next_document_number
from .users_service import get_user
from printshop.time_utils import utcnow


logger = logging.getLogger(__name__)

UNPAYABLE_ORDER_STATUSES = (ORDER_DRAFT, ORDER_CANCELLED)


def _lock_targets(order_id: int | None, invoice_id: int | None) -> tuple[Order | None, Invoice | None]:
    invoice = None
    if invoice_id is not None:
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
        if order_id is not None and invoice.order_id is not None and invoice.order_id != order_id:
            raise ValidationError(
                "Invoice belongs to a different order",
                details={"invoice_id": invoice.id, "order_id": order_id, "invoice_order_id": invoice.order_id},
            )
        if order_id is None:
            order_id = invoice.order_id

    order = None
    if order_id is not None:
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        if invoice is None:
            invoice = order.invoice
    return order, invoice


def _settle_locked(order: Order | None, invoice: Invoice | None, actor_id: int) -> None:
    """Recompute both ledgers, then apply the automatic order advances."""
    if order is not None:
        recompute_order(order)
    if invoice is not None:
        refresh_invoice_locked(invoice)
    elif order is not None and order.customer is not None:
        # Deferred orders without an invoice still count against credit
        refresh_customer_credit_balance(order.customer)

    if order is None:
        return

    if order.status == ORDER_PENDING_PAYMENT and order.balance <= 0:
        transition_order_locked(order, ORDER_PAID, actor_id, action="payment_received")
        logger.info("Order %s advanced to PAID after payment", order.order_number)
    elif order.status == ORDER_RELEASED and order.invoice is not None and order.invoice.status == INVOICE_PAID:
        transition_order_locked(order, ORDER_COMPLETED, actor_id, action="invoice_settled")
        logger.info("Order %s completed after invoice %s was settled", order.order_number, order.invoice.invoice_number)


def record_payment(
    actor_id: int,
    amount,
    payment_method: str,
    order_id: int | None = None,
    invoice_id: int | None = None,
    reference_number: str | None = None,
    payment_date: datetime | None = None,
) -> Payment:
    """Record money received against an order and/or an invoice."""
    if order_id is None and invoice_id is None:
        raise ValidationError("A payment needs an order_id or an invoice_id")
    value = to_money(amount, "amount")
    if value <= 0:
        raise ValidationError("amount must be greater than zero", details={"amount": str(value)})
    require_choice(payment_method, PAYMENT_METHODS, "payment_method")

    def _op():
        get_user(actor_id)
        order, invoice = _lock_targets(order_id, invoice_id)

        if order is not None and order.status in UNPAYABLE_ORDER_STATUSES:
            raise InvalidTransition(
                f"Cannot take payment for an order in status {order.status}",
                details={"order_id": order.id, "status": order.status},
            )
        if invoice is not None and invoice_id is not None and invoice.status == INVOICE_DRAFT:
            raise InvalidTransition(
                "Cannot take payment against a draft invoice",
                details={"invoice_id": invoice.id, "status": invoice.status},
            )

        if order is not None:
            recompute_order(order)
            outstanding = order.balance
        else:
            refresh_invoice_locked(invoice)
            outstanding = invoice.balance

        if payment_method != METHOD_CASH and value > outstanding:
            raise ValidationError(
                "Payment exceeds the outstanding balance",
                details={"amount": str(value), "balance": str(outstanding), "payment_method": payment_method},
            )

        payment = Payment(
            payment_number=next_document_number(KIND_PAYMENT),
            order_id=order.id if order else None,
            invoice_id=invoice.id if invoice is not None else None,
            customer_id=(order.customer_id if order else invoice.customer_id),
            amount=value,
            payment_method=payment_method,
            reference_number=optional_text(reference_number),
            payment_date=payment_date or utcnow(),
            received_by_user_id=actor_id,
        )
        db.session.add(payment)
        db.session.flush()

        _settle_locked(order, invoice, actor_id)
        db.session.commit()
        logger.info("Payment %s of %s recorded (%s)", payment.payment_number, value, payment_method)
        return payment

    return run_with_retry(_op)


def refunded_amount(payment_id: int) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.refund_of_id == payment_id)
        .scalar()
    )
    return -Decimal(total)


def refund_payment(payment_id: int, actor_id: int, reason: str, amount=None) -> Payment:
    """Write a compensating negative payment; the original row is untouched."""
    text = require_reason(reason)

    def _op():
        get_user(actor_id)
        original = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if original is None:
            raise NotFoundError("Payment not found", details={"payment_id": payment_id})
        if original.refund_of_id is not None or original.amount <= 0:
            raise ValidationError("Refunds cannot be refunded", details={"payment_id": original.id})

        refundable = Decimal(original.amount) - refunded_amount(original.id)
        value = to_money(amount, "amount") if amount is not None else refundable
        if value <= 0 or value > refundable:
            raise ValidationError(
                "Refund amount must be positive and no more than the refundable amount",
                details={"payment_id": original.id, "amount": str(value), "refundable": str(refundable)},
            )

        order, invoice = _lock_targets(original.order_id, original.invoice_id)
        refund = Payment(
            payment_number=next_document_number(KIND_PAYMENT),
            order_id=original.order_id,
            invoice_id=original.invoice_id,
            customer_id=original.customer_id,
            amount=-value,
            payment_method=original.payment_method,
            payment_date=utcnow(),
            refund_of_id=original.id,
            refund_reason=text,
            received_by_user_id=actor_id,
        )
        db.session.add(refund)
        db.session.flush()

        if order is not None:
            recompute_order(order)
        if invoice is not None:
            refresh_invoice_locked(invoice)
        db.session.commit()
        logger.info("Refund %s of %s against payment %s", refund.payment_number, value, original.payment_number)
        return refund

    return run_with_retry(_op)


def get_payment(payment_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError("Payment not found", details={"payment_id": payment_id})
    return payment


def list_payments(order_id: int | None = None, invoice_id: int | None = None) -> list[Payment]:
    query = db.session.query(Payment)
    if order_id is not None:
        query = query.filter_by(order_id=order_id)
    if invoice_id is not None:
        query = query.filter_by(invoice_id=invoice_id)
    return query.order_by(Payment.id.asc()).all()
