# Overview: Credit Control Guard; decides whether a credit customer may defer settlement.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import func, or_

from ..errors import CreditDenied
from ..extensions import db
from ..models import Customer, Invoice, Order
from ..models.billing import INVOICE_DRAFT, INVOICE_OVERDUE, OUTSTANDING_INVOICE_STATUSES
from ..models.orders import (
    ORDER_IN_PRODUCTION,
    ORDER_PAID,
    ORDER_READY,
    ORDER_RELEASED,
    TERMS_IMMEDIATE,
)
from ..validation import ZERO, round_money


logger = logging.getLogger(__name__)

REASON_NOT_CREDIT_CUSTOMER = "not_credit_customer"
REASON_NOT_DEFERRED = "not_deferred"
REASON_WITHIN_LIMIT = "within_limit"
REASON_CREDIT_LIMIT = "credit_limit_exceeded"
REASON_OVERDUE = "overdue_invoices"

# Deferred orders past the credit check that may not have an issued invoice yet
CREDIT_COMMITTED_ORDER_STATUSES = (ORDER_PAID, ORDER_IN_PRODUCTION, ORDER_READY, ORDER_RELEASED)


@dataclass(frozen=True)
class CreditDecision:
    allowed: bool
    reasons: tuple[str, ...]
    details: dict = field(default_factory=dict)

    @property
    def reason(self) -> str:
        return ", ".join(self.reasons)

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "reasons": list(self.reasons), "details": self.details}


def overdue_invoices(customer_id: int) -> list[Invoice]:
    return (
        db.session.query(Invoice)
        .filter(
            Invoice.customer_id == customer_id,
            Invoice.status == INVOICE_OVERDUE,
            Invoice.balance > 0,
        )
        .order_by(Invoice.due_date.asc())
        .all()
    )


def available_credit(customer: Customer) -> Decimal:
    return round_money(Decimal(customer.credit_limit or ZERO) - Decimal(customer.credit_balance or ZERO))


def can_commit(customer: Customer | None, order_total, allow_deferred_payment: bool) -> CreditDecision:
    """
    Decide a credit-reliant commitment of order_total for customer.

    Only credit customers relying on credit are checked. The limit check and
    the overdue check are independent; either one denies.
    """
    if customer is None or not customer.is_credit:
        return CreditDecision(True, (REASON_NOT_CREDIT_CUSTOMER,))

    # Paying in full now never draws on credit
    if not allow_deferred_payment:
        return CreditDecision(True, (REASON_NOT_DEFERRED,))

    amount = Decimal(order_total)
    balance = Decimal(customer.credit_balance or ZERO)
    limit = Decimal(customer.credit_limit or ZERO)
    details = {
        "customer_id": customer.id,
        "credit_limit": str(round_money(limit)),
        "credit_balance": str(round_money(balance)),
        "order_total": str(round_money(amount)),
        "projected_balance": str(round_money(balance + amount)),
    }

    reasons = []
    if balance + amount > limit:
        reasons.append(REASON_CREDIT_LIMIT)

    overdue = overdue_invoices(customer.id)
    if overdue:
        reasons.append(REASON_OVERDUE)
        details["overdue_invoices"] = [
            {"invoice_id": inv.id, "invoice_number": inv.invoice_number, "balance": str(inv.balance)}
            for inv in overdue
        ]

    if reasons:
        logger.info("Credit denied for customer %s: %s", customer.id, ", ".join(reasons))
        return CreditDecision(False, tuple(reasons), details)
    return CreditDecision(True, (REASON_WITHIN_LIMIT,), details)


def require_credit(customer: Customer | None, order_total, allow_deferred_payment: bool) -> CreditDecision:
    decision = can_commit(customer, order_total, allow_deferred_payment)
    if not decision.allowed:
        raise CreditDenied(
            f"Credit denied: {decision.reason}",
            details={"reasons": list(decision.reasons), **decision.details},
        )
    return decision


def uninvoiced_credit_orders_balance(customer_id: int) -> Decimal:
    """
    Sum of positive balances of deferred-terms orders already committed on
    credit whose invoice is missing or still a draft. Issued invoices are
    counted through the invoice side instead.
    """
    owed = (
        db.session.query(func.coalesce(func.sum(Order.balance), 0))
        .outerjoin(Invoice, Invoice.order_id == Order.id)
        .filter(
            Order.customer_id == customer_id,
            Order.payment_terms != TERMS_IMMEDIATE,
            Order.status.in_(CREDIT_COMMITTED_ORDER_STATUSES),
            Order.balance > 0,
            or_(Invoice.id.is_(None), Invoice.status == INVOICE_DRAFT),
        )
        .scalar()
    )
    return round_money(Decimal(owed))


def refresh_customer_credit_balance(customer: Customer) -> Decimal:
    """
    Re-derive credit_balance from what the customer owes: positive balances
    of outstanding invoices plus credit-committed orders not yet invoiced.
    Runs inside the caller's unit of work.
    """
    db.session.flush()
    invoiced = (
        db.session.query(func.coalesce(func.sum(Invoice.balance), 0))
        .filter(
            Invoice.customer_id == customer.id,
            Invoice.status.in_(OUTSTANDING_INVOICE_STATUSES),
            Invoice.balance > 0,
        )
        .scalar()
    )
    customer.credit_balance = round_money(Decimal(invoiced) + uninvoiced_credit_orders_balance(customer.id))
    db.session.flush()
    return customer.credit_balance
