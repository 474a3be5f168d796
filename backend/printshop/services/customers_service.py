# Overview: Customer master data and credit profile.

from __future__ import annotations

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer
from ..models.customers import CUSTOMER_REGULAR, CUSTOMER_TYPES
from ..validation import optional_text, require_choice, to_money
from .concurrency import lock_for_update, run_with_retry
from .credit_service import available_credit, can_commit, refresh_customer_credit_balance


def _period(value) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError("credit_period_days must be a non-negative integer", details={"credit_period_days": value})
    return value


def create_customer(
    name: str,
    customer_type: str = CUSTOMER_REGULAR,
    email: str | None = None,
    phone: str | None = None,
    credit_limit=0,
    credit_period_days: int | None = None,
) -> Customer:
    name = optional_text(name)
    if not name:
        raise ValidationError("name is required")
    require_choice(customer_type, CUSTOMER_TYPES, "type")
    limit = to_money(credit_limit, "credit_limit")
    period = _period(credit_period_days)

    def _op():
        customer = Customer(
            name=name,
            type=customer_type,
            email=optional_text(email),
            phone=optional_text(phone),
            credit_limit=limit,
            credit_balance=0,
            credit_period_days=period,
        )
        db.session.add(customer)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    return customer


def update_credit_profile(customer_id: int, credit_limit=None, credit_period_days=None, customer_type: str | None = None) -> Customer:
    """Change limit, period or type. credit_balance is derived and never set here."""
    def _op():
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if customer is None:
            raise NotFoundError("Customer not found", details={"customer_id": customer_id})
        if credit_limit is not None:
            customer.credit_limit = to_money(credit_limit, "credit_limit")
        if credit_period_days is not None:
            customer.credit_period_days = _period(credit_period_days)
        if customer_type is not None:
            customer.type = require_choice(customer_type, CUSTOMER_TYPES, "type")
        refresh_customer_credit_balance(customer)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def credit_status(customer_id: int, order_total=0) -> dict:
    """Read-only credit summary, with the guard's verdict for order_total."""
    customer = get_customer(customer_id)
    decision = can_commit(customer, to_money(order_total, "order_total"), allow_deferred_payment=True)
    return {
        "customer": customer.to_dict(),
        "available_credit": str(available_credit(customer)),
        "decision": decision.to_dict(),
    }
