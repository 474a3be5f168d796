# Overview: Quotations; pre-commitment orders priced by the same resolver and ledger, convertible to orders.

"""
Quotation Service

    draft <-> sent; draft | sent -> approved -> converted
    draft | sent -> rejected; draft | sent | approved -> expired

Items can only change in draft or sent. convert_quotation() is a single
unit of work: the order, its items and the quotation update commit together
or not at all.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app

from ..errors import InsufficientApprovalAuthority, InvalidTransition, NotFoundError, ValidationError
from ..extensions import db
from ..models import Quotation, QuotationItem
from ..models.orders import PAYMENT_TERMS, TERMS_IMMEDIATE
from ..models.quotations import (
    EDITABLE_QUOTE_STATUSES,
    QUOTE_APPROVED,
    QUOTE_CONVERTED,
    QUOTE_DRAFT,
    QUOTE_EXPIRED,
    QUOTE_REJECTED,
    QUOTE_SENT,
    QUOTE_STATUSES,
)
from ..validation import ZERO, optional_text, require_choice, to_money
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import recompute, recompute_order, resolve_discount, validate_percent
from .order_service import build_order_item, create_order_locked
from .pricing_rules import Dimensions
from .pricing_service import load_customer, load_product_for_pricing, price_line
from .sequence_service import KIND_QUOTATION, next_document_number
from .settings_service import get_discount_threshold_percent, get_tax_rate
from .users_service import get_user
from printshop.time_utils import days_from, parse_iso_datetime, utcnow


logger = logging.getLogger(__name__)

QUOTE_TRANSITIONS = {
    QUOTE_DRAFT: (QUOTE_SENT, QUOTE_APPROVED, QUOTE_REJECTED, QUOTE_EXPIRED),
    QUOTE_SENT: (QUOTE_DRAFT, QUOTE_APPROVED, QUOTE_REJECTED, QUOTE_EXPIRED),
    QUOTE_APPROVED: (QUOTE_EXPIRED,),
    QUOTE_REJECTED: (),
    QUOTE_EXPIRED: (),
    QUOTE_CONVERTED: (),
}

ITEM_FIELDS = {"product_id", "quantity", "dimensions", "unit_price", "override_reason", "pricing_rule_id", "description"}


def _get_quotation_locked(quotation_id: int) -> Quotation:
    quotation = lock_for_update(db.session.query(Quotation).filter_by(id=quotation_id)).first()
    if quotation is None:
        raise NotFoundError("Quotation not found", details={"quotation_id": quotation_id})
    return quotation


def _require_editable(quotation: Quotation) -> None:
    if quotation.status not in EDITABLE_QUOTE_STATUSES:
        raise InvalidTransition(
            f"Quotation items can only change while {' or '.join(EDITABLE_QUOTE_STATUSES)}",
            details={"quotation_id": quotation.id, "status": quotation.status},
        )


def _is_expired(quotation: Quotation, now: datetime | None = None) -> bool:
    return quotation.valid_until is not None and quotation.valid_until < (now or utcnow())


def recompute_quotation(quotation: Quotation) -> Quotation:
    if quotation.discount_percent is not None:
        totals = recompute(
            [item.line_total for item in quotation.items],
            tax_rate=get_tax_rate(),
            discount_percent=quotation.discount_percent,
        )
    else:
        totals = recompute(
            [item.line_total for item in quotation.items],
            discount=quotation.discount or ZERO,
            tax_rate=get_tax_rate(),
        )
    quotation.subtotal = totals.subtotal
    quotation.discount = totals.discount
    quotation.tax = totals.tax
    quotation.total = totals.total
    db.session.flush()
    return quotation


def _build_quote_item(quotation: Quotation, data: dict) -> QuotationItem:
    unknown = set(data) - ITEM_FIELDS
    if unknown:
        raise ValidationError("Unknown item fields", details={"fields": sorted(unknown)})

    product = load_product_for_pricing(data.get("product_id"))
    dimensions = Dimensions.from_payload(data.get("dimensions"))
    quote = price_line(
        product,
        data.get("quantity", 1),
        dimensions=dimensions,
        customer=quotation.customer,
        unit_price=data.get("unit_price"),
        override_reason=data.get("override_reason"),
        pricing_rule_id=data.get("pricing_rule_id"),
    )
    return QuotationItem(
        quotation_id=quotation.id,
        product_id=product.id,
        item_type=product.type,
        description=optional_text(data.get("description")) or product.name,
        quantity=quote.quantity,
        dimensions=dimensions.to_payload() if dimensions else None,
        unit_price=quote.unit_price,
        line_total=quote.line_total,
        pricing_rule_id=quote.applied_rule_id,
        override_reason=quote.override_reason,
    )


def _parse_valid_until(valid_until) -> datetime:
    if valid_until is None:
        return days_from(utcnow(), current_app.config.get("QUOTATION_VALID_DAYS", 30))
    if isinstance(valid_until, datetime):
        return valid_until
    try:
        parsed = parse_iso_datetime(str(valid_until))
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError("valid_until must be an ISO-8601 datetime", details={"valid_until": valid_until})
    return parsed


# =============================================================================
# CRUD
# =============================================================================

def create_quotation(
    created_by: int,
    customer_id: int | None = None,
    items: list[dict] | None = None,
    valid_until=None,
    notes: str | None = None,
) -> Quotation:
    expiry = _parse_valid_until(valid_until)
    if items is not None and not isinstance(items, list):
        raise ValidationError("items must be a list")

    def _op():
        get_user(created_by)
        quotation = Quotation(
            quote_number=next_document_number(KIND_QUOTATION),
            customer_id=load_customer(customer_id).id if customer_id is not None else None,
            status=QUOTE_DRAFT,
            valid_until=expiry,
            notes=optional_text(notes),
            created_by_user_id=created_by,
        )
        db.session.add(quotation)
        db.session.flush()

        for index, data in enumerate(items or []):
            if not isinstance(data, dict):
                raise ValidationError(f"items[{index}] must be an object")
            quotation.items.append(_build_quote_item(quotation, data))
        db.session.flush()

        recompute_quotation(quotation)
        db.session.commit()
        return quotation

    return run_with_retry(_op)


def add_quotation_item(quotation_id: int, product_id: int, quantity=1, dimensions=None, **options) -> QuotationItem:
    def _op():
        quotation = _get_quotation_locked(quotation_id)
        _require_editable(quotation)
        item = _build_quote_item(quotation, {"product_id": product_id, "quantity": quantity, "dimensions": dimensions, **options})
        quotation.items.append(item)
        db.session.flush()
        recompute_quotation(quotation)
        db.session.commit()
        return item

    return run_with_retry(_op)


def _get_quote_item(quotation: Quotation, item_id: int) -> QuotationItem:
    for item in quotation.items:
        if item.id == item_id:
            return item
    raise NotFoundError("Quotation item not found", details={"quotation_id": quotation.id, "item_id": item_id})


def update_quotation_item(quotation_id: int, item_id: int, changes: dict) -> QuotationItem:
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("changes must be a non-empty object")

    def _op():
        quotation = _get_quotation_locked(quotation_id)
        _require_editable(quotation)
        item = _get_quote_item(quotation, item_id)
        data = {
            "product_id": item.product_id,
            "quantity": item.quantity,
            "dimensions": item.dimensions,
            "description": item.description,
        }
        data.update(changes)
        rebuilt = _build_quote_item(quotation, data)
        for column in (
            "product_id",
            "item_type",
            "description",
            "quantity",
            "dimensions",
            "unit_price",
            "line_total",
            "pricing_rule_id",
            "override_reason",
        ):
            setattr(item, column, getattr(rebuilt, column))
        recompute_quotation(quotation)
        db.session.commit()
        return item

    return run_with_retry(_op)


def remove_quotation_item(quotation_id: int, item_id: int) -> Quotation:
    def _op():
        quotation = _get_quotation_locked(quotation_id)
        _require_editable(quotation)
        item = _get_quote_item(quotation, item_id)
        quotation.items.remove(item)
        db.session.delete(item)
        db.session.flush()
        recompute_quotation(quotation)
        db.session.commit()
        return quotation

    return run_with_retry(_op)


def apply_quotation_discount(quotation_id: int, actor_id: int, amount=None, percent=None) -> Quotation:
    """
    Discount a quotation. Above the threshold only approvers may discount;
    quotations have no approval queue.
    """
    if (amount is None) == (percent is None):
        raise ValidationError("Give either a discount amount or a percentage")
    amount = to_money(amount, "discount") if amount is not None else None
    percent = validate_percent(percent) if percent is not None else None

    def _op():
        actor = get_user(actor_id)
        quotation = _get_quotation_locked(quotation_id)
        _require_editable(quotation)
        recompute_quotation(quotation)
        discount = resolve_discount(quotation.subtotal, amount=amount, percent=percent)

        effective = percent if percent is not None else (
            discount * 100 / quotation.subtotal if quotation.subtotal > 0 else ZERO
        )
        threshold = get_discount_threshold_percent()
        if effective > threshold and not actor.can_approve:
            raise InsufficientApprovalAuthority(
                f"Discounts above {threshold}% need a manager",
                details={"quotation_id": quotation.id, "requested_percent": str(effective), "threshold_percent": str(threshold)},
            )

        quotation.discount_percent = percent
        quotation.discount = amount if amount is not None else ZERO
        recompute_quotation(quotation)
        db.session.commit()
        return quotation

    return run_with_retry(_op)


# =============================================================================
# STATUS
# =============================================================================

def update_quotation_status(quotation_id: int, status: str, actor_id: int) -> Quotation:
    require_choice(status, QUOTE_STATUSES, "status")

    def _op():
        actor = get_user(actor_id)
        quotation = _get_quotation_locked(quotation_id)
        allowed = QUOTE_TRANSITIONS.get(quotation.status, ())
        if status not in allowed:
            raise InvalidTransition(
                f"Cannot move quotation {quotation.quote_number} from {quotation.status} to {status}",
                details={
                    "quotation_id": quotation.id,
                    "from_status": quotation.status,
                    "to_status": status,
                    "allowed": list(allowed),
                },
            )
        if status in (QUOTE_SENT, QUOTE_APPROVED) and not quotation.items:
            raise ValidationError("Quotation has no items", details={"quotation_id": quotation.id})
        if status == QUOTE_APPROVED:
            if _is_expired(quotation):
                raise InvalidTransition(
                    "Quotation has expired",
                    details={"quotation_id": quotation.id, "valid_until": quotation.valid_until.isoformat()},
                )
            quotation.approved_by_user_id = actor.id

        quotation.status = status
        db.session.commit()
        return quotation

    return run_with_retry(_op)


def expire_quotations(now: datetime | None = None) -> list[Quotation]:
    """Open quotations past valid_until become expired."""
    def _op():
        cutoff = now or utcnow()
        quotations = (
            lock_for_update(
                db.session.query(Quotation).filter(
                    Quotation.status.in_((QUOTE_DRAFT, QUOTE_SENT, QUOTE_APPROVED)),
                    Quotation.valid_until.isnot(None),
                    Quotation.valid_until < cutoff,
                )
            )
            .order_by(Quotation.id.asc())
            .all()
        )
        for quotation in quotations:
            quotation.status = QUOTE_EXPIRED
        db.session.commit()
        if quotations:
            logger.info("Expired %s quotation(s)", len(quotations))
        return quotations

    return run_with_retry(_op)


def convert_quotation(
    quotation_id: int,
    actor_id: int,
    reprice: bool = True,
    payment_terms: str | None = None,
):
    """
    Promote an approved quotation into a DRAFT order.

    With reprice=True every line goes through the resolver again (current
    rules, current customer); otherwise the quoted unit price is carried
    forward as a manual price. Any failure leaves no order behind.
    """
    terms = require_choice(payment_terms or TERMS_IMMEDIATE, PAYMENT_TERMS, "payment_terms")

    def _op():
        get_user(actor_id)
        quotation = _get_quotation_locked(quotation_id)
        if quotation.status != QUOTE_APPROVED:
            raise InvalidTransition(
                f"Only approved quotations can be converted (status: {quotation.status})",
                details={"quotation_id": quotation.id, "from_status": quotation.status, "to_status": QUOTE_CONVERTED},
            )
        if _is_expired(quotation):
            raise InvalidTransition(
                "Quotation has expired",
                details={"quotation_id": quotation.id, "valid_until": quotation.valid_until.isoformat()},
            )

        order = create_order_locked(
            actor_id,
            quotation.customer,
            terms,
            notes=quotation.notes,
            history_notes=f"Converted from quotation {quotation.quote_number}",
        )

        for item in quotation.items:
            data = {
                "product_id": item.product_id,
                "quantity": item.quantity,
                "dimensions": item.dimensions,
                "description": item.description,
            }
            if not reprice:
                data.update(
                    unit_price=item.unit_price,
                    override_reason=item.override_reason or f"Quoted price from {quotation.quote_number}",
                    pricing_rule_id=item.pricing_rule_id,
                )
            order.items.append(build_order_item(order, data))
        db.session.flush()

        order.discount_percent = quotation.discount_percent
        order.discount = quotation.discount if quotation.discount_percent is None else ZERO
        if quotation.discount:
            order.discount_reason = f"Quoted discount from {quotation.quote_number}"
            order.approved_by_user_id = quotation.approved_by_user_id

        recompute_order(order)

        quotation.status = QUOTE_CONVERTED
        quotation.converted_order_id = order.id
        db.session.commit()
        logger.info("Quotation %s converted to order %s", quotation.quote_number, order.order_number)
        return order

    return run_with_retry(_op)


def get_quotation(quotation_id: int) -> Quotation:
    quotation = db.session.get(Quotation, quotation_id)
    if quotation is None:
        raise NotFoundError("Quotation not found", details={"quotation_id": quotation_id})
    return quotation
