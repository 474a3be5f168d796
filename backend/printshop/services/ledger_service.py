# Overview: Financial Ledger; derives subtotal/discount/tax/total/paid/balance from source rows.

"""
Financial Ledger

Stored totals are a cache of the derivation below and are never used as
input for a mutation:

    subtotal = sum(line_total of active items)
    discount = flat amount, or round(subtotal * percent / 100); 0 <= discount <= subtotal
    tax      = round((subtotal - discount) * tax_rate)
    total    = subtotal - discount + tax
    paid     = sum(payment amounts, refunds are negative rows)
    balance  = total - paid            (negative = genuine overpayment)

The pure functions take plain Decimals; recompute_order / recompute_invoice
read the rows, write the figures back and flush inside the caller's unit of
work.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from sqlalchemy import func, or_

from ..errors import ValidationError
from ..extensions import db
from ..models import Invoice, Order, Payment
from ..models.production import JOB_CANCELLED
from ..validation import ZERO, round_money, to_decimal, to_money
from .settings_service import get_tax_rate


HUNDRED = Decimal("100")
PERCENT_PLACES = Decimal("0.0001")

DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_FIXED = "fixed"
ITEM_DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal


@dataclass(frozen=True)
class PaymentPosition:
    paid_amount: Decimal
    balance: Decimal


def validate_percent(percent) -> Decimal:
    """Percent in [0, 100], kept to the 4 places the columns store."""
    value = to_decimal(percent, "discount_percent").quantize(PERCENT_PLACES, rounding=ROUND_HALF_UP)
    if value < 0 or value > HUNDRED:
        raise ValidationError(
            "discount_percent must be between 0 and 100",
            details={"discount_percent": str(value)},
        )
    return value


def resolve_discount(subtotal: Decimal, amount=None, percent=None) -> Decimal:
    """
    Turn a flat amount or a percentage into a discount amount.

    A discount larger than the subtotal is rejected rather than clamped.
    """
    if amount is not None and percent is not None:
        raise ValidationError("Give either a discount amount or a percentage, not both")

    if percent is not None:
        discount = round_money(subtotal * validate_percent(percent) / HUNDRED)
    elif amount is not None:
        discount = to_money(amount, "discount")
    else:
        discount = ZERO

    if discount > subtotal:
        raise ValidationError(
            "Discount cannot exceed the subtotal",
            details={"discount": str(discount), "subtotal": str(subtotal)},
        )
    return discount


def recompute(line_totals: Iterable[Decimal], discount=None, tax_rate: Decimal = ZERO, discount_percent=None) -> Totals:
    subtotal = round_money(sum((Decimal(v) for v in line_totals), ZERO))
    resolved = resolve_discount(subtotal, amount=discount, percent=discount_percent)
    tax = round_money((subtotal - resolved) * Decimal(tax_rate))
    return Totals(
        subtotal=subtotal,
        discount=resolved,
        tax=tax,
        total=subtotal - resolved + tax,
    )


def apply_payment(total: Decimal, paid_amount: Decimal, amount: Decimal = ZERO) -> PaymentPosition:
    """New paid/balance position after amount (signed) is added to paid_amount."""
    paid = round_money(Decimal(paid_amount) + Decimal(amount))
    return PaymentPosition(paid_amount=paid, balance=round_money(Decimal(total)) - paid)


# =============================================================================
# ORDERS
# =============================================================================

def sum_order_payments(order_id: int) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.order_id == order_id)
        .scalar()
    )
    return round_money(Decimal(total))


def recompute_order(order: Order, tax_rate: Decimal | None = None) -> Order:
    """Re-derive every money figure on order from its items and payments."""
    if tax_rate is None:
        tax_rate = get_tax_rate()

    if order.discount_percent is not None:
        totals = recompute(
            [item.line_total for item in order.active_items],
            tax_rate=tax_rate,
            discount_percent=order.discount_percent,
        )
    else:
        totals = recompute(
            [item.line_total for item in order.active_items],
            discount=order.discount or ZERO,
            tax_rate=tax_rate,
        )

    order.subtotal = totals.subtotal
    order.discount = totals.discount
    order.tax = totals.tax
    order.total = totals.total

    position = apply_payment(totals.total, sum_order_payments(order.id) if order.id else ZERO)
    order.paid_amount = position.paid_amount
    order.balance = position.balance
    db.session.flush()
    return order


# =============================================================================
# INVOICES
# =============================================================================

def parse_item_override(item_id, override: dict) -> dict:
    """Validate one item_overrides entry and normalize it to strings."""
    if not isinstance(override, dict):
        raise ValidationError(f"item override for item {item_id} must be an object")

    normalized = {}
    if override.get("unit_price") is not None:
        normalized["unit_price"] = str(to_money(override["unit_price"], "unit_price"))

    discount_type = override.get("discount_type")
    if discount_type is not None:
        if discount_type not in ITEM_DISCOUNT_TYPES:
            raise ValidationError(
                f"discount_type must be one of: {', '.join(ITEM_DISCOUNT_TYPES)}",
                details={"item_id": item_id, "discount_type": discount_type},
            )
        value = override.get("discount_value")
        if discount_type == DISCOUNT_PERCENTAGE:
            value = validate_percent(value)
        else:
            value = to_money(value, "discount_value")
        normalized["discount_type"] = discount_type
        normalized["discount_value"] = str(value)

    if not normalized:
        raise ValidationError(f"item override for item {item_id} changes nothing")
    return normalized


def invoice_line_total(item, override: dict | None) -> Decimal:
    if not override:
        return round_money(Decimal(item.line_total))

    unit_price = Decimal(override["unit_price"]) if "unit_price" in override else Decimal(item.unit_price)
    line = round_money(unit_price * item.quantity)

    discount_type = override.get("discount_type")
    if discount_type == DISCOUNT_PERCENTAGE:
        line -= round_money(line * Decimal(override["discount_value"]) / HUNDRED)
    elif discount_type == DISCOUNT_FIXED:
        value = Decimal(override["discount_value"])
        if value > line:
            raise ValidationError(
                "Item discount cannot exceed the line total",
                details={"item_id": item.id, "discount_value": str(value), "line_total": str(line)},
            )
        line -= value
    return line


def invoiceable_items(order: Order) -> list:
    """Active order items, minus those whose production job was cancelled."""
    items = []
    for item in order.active_items:
        job = item.service_job
        if job is not None and job.status == JOB_CANCELLED:
            continue
        items.append(item)
    return items


def sum_invoice_payments(invoice: Invoice) -> Decimal:
    clauses = [Payment.invoice_id == invoice.id]
    if invoice.order_id is not None:
        clauses.append(Payment.order_id == invoice.order_id)
    total = (
        db.session.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(or_(*clauses))
        .scalar()
    )
    return round_money(Decimal(total))


def recompute_invoice(invoice: Invoice, tax_rate: Decimal | None = None) -> Invoice:
    """
    Re-derive invoice figures.

    Order-backed invoices are priced from the order's invoiceable items with
    item_overrides applied; the source order is never touched.
    """
    if tax_rate is None:
        tax_rate = get_tax_rate()

    if invoice.order is not None:
        overrides = invoice.item_overrides or {}
        line_totals = [invoice_line_total(item, overrides.get(str(item.id))) for item in invoiceable_items(invoice.order)]
    else:
        line_totals = [invoice.subtotal or ZERO]

    totals = recompute(line_totals, discount=invoice.discount or ZERO, tax_rate=tax_rate)
    invoice.subtotal = totals.subtotal
    invoice.discount = totals.discount
    invoice.tax = totals.tax
    invoice.total = totals.total

    position = apply_payment(totals.total, sum_invoice_payments(invoice) if invoice.id else ZERO)
    invoice.paid_amount = position.paid_amount
    invoice.balance = position.balance
    db.session.flush()
    return invoice
