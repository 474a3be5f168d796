# Overview: Order State Machine plus order entry (items, discounts) on top of pricing and the ledger.

"""
Order Service

LIFECYCLE:
    DRAFT -> PENDING_PAYMENT -> PAID -> IN_PRODUCTION -> READY -> RELEASED -> COMPLETED
    PAID -> READY directly when no item requires production.
    CANCELLED is reachable from every non-terminal state.

GUARDS:
- PENDING_PAYMENT: at least one item, every item priced or overridden
- PAID: balance <= 0, or deferred terms with the credit guard passing
  (or an approved, unconsumed credit_override)
- IN_PRODUCTION: at least one item requires production (jobs are spawned)
- READY: from PAID only when nothing needs production; from IN_PRODUCTION
  once every job is settled
- RELEASED: balance <= 0 or deferred terms
- CANCELLED: reason, no active jobs, and an approved cancellation request
  when payments are still held

Each transition recomputes the ledger first, then appends exactly one
OrderStatusHistory row. A failed guard raises before anything is written.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from ..errors import (
    CreditDenied,
    InsufficientApprovalAuthority,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Order, OrderItem, OrderStatusHistory
from ..models.approvals import APPROVAL_CANCELLATION, APPROVAL_CREDIT_OVERRIDE, APPROVAL_DISCOUNT
from ..models.billing import INVOICE_DRAFT, INVOICE_ISSUED
from ..models.catalog import PRODUCT_DIMENSION, PRODUCT_SERVICE
from ..models.customers import CUSTOMER_CREDIT, CUSTOMER_WALK_IN
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    ORDER_DRAFT,
    ORDER_IN_PRODUCTION,
    ORDER_PAID,
    ORDER_PENDING_PAYMENT,
    ORDER_READY,
    ORDER_RELEASED,
    ORDER_STATUSES,
    ORDER_TYPE_INVOICE,
    ORDER_TYPE_REGULAR,
    ORDER_TYPE_WALK_IN,
    ORDER_TYPES,
    PAYMENT_TERMS,
    TERMS_IMMEDIATE,
)
from ..validation import ZERO, optional_text, require_choice, require_reason, to_money
from .approval_service import (
    consume_approval,
    create_request_locked,
    discount_request_data,
    find_pending_request,
    find_usable_approval,
)
from .concurrency import lock_for_update, run_with_retry
from .credit_service import can_commit, refresh_customer_credit_balance
from .invoice_service import create_invoice_locked
from .ledger_service import recompute_order, resolve_discount, validate_percent
from .pricing_rules import Dimensions
from .pricing_service import load_customer, load_product_for_pricing, price_line
from .sequence_service import KIND_ORDER, next_document_number
from .service_job_service import (
    active_jobs,
    cancel_pending_jobs_locked,
    jobs_settled,
    spawn_jobs_locked,
    stamp_delivered_locked,
)
from .settings_service import get_discount_threshold_percent
from .users_service import get_user
from printshop.time_utils import utcnow


logger = logging.getLogger(__name__)

ORDER_TRANSITIONS = {
    ORDER_DRAFT: (ORDER_PENDING_PAYMENT, ORDER_CANCELLED),
    ORDER_PENDING_PAYMENT: (ORDER_PAID, ORDER_CANCELLED),
    ORDER_PAID: (ORDER_IN_PRODUCTION, ORDER_READY, ORDER_CANCELLED),
    ORDER_IN_PRODUCTION: (ORDER_READY, ORDER_CANCELLED),
    ORDER_READY: (ORDER_RELEASED, ORDER_CANCELLED),
    ORDER_RELEASED: (ORDER_COMPLETED, ORDER_CANCELLED),
    ORDER_COMPLETED: (),
    ORDER_CANCELLED: (),
}

DEFAULT_ACTIONS = {
    ORDER_PENDING_PAYMENT: "finalize_items",
    ORDER_PAID: "payment_received",
    ORDER_IN_PRODUCTION: "start_production",
    ORDER_READY: "ready_for_release",
    ORDER_RELEASED: "release",
    ORDER_COMPLETED: "complete",
    ORDER_CANCELLED: "cancel",
}

DISCOUNTABLE_STATUSES = (ORDER_DRAFT, ORDER_PENDING_PAYMENT)
PRODUCTION_ITEM_TYPES = (PRODUCT_SERVICE, PRODUCT_DIMENSION)

ITEM_FIELDS = {
    "product_id",
    "quantity",
    "dimensions",
    "unit_price",
    "override_reason",
    "pricing_rule_id",
    "description",
    "requires_production",
}


def _append_history(order: Order, from_status: str | None, to_status: str, actor_id: int, action: str, notes: str | None = None) -> OrderStatusHistory:
    row = OrderStatusHistory(
        order_id=order.id,
        from_status=from_status,
        to_status=to_status,
        changed_by_user_id=actor_id,
        action=action,
        notes=notes,
    )
    db.session.add(row)
    return row


def _get_order_locked(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def _is_deferred(order: Order) -> bool:
    return order.payment_terms != TERMS_IMMEDIATE


def _guard_failed(order: Order, target: str, message: str, **details) -> InvalidTransition:
    return InvalidTransition(
        message,
        details={"order_id": order.id, "from_status": order.status, "to_status": target, **details},
    )


# =============================================================================
# GUARDS
# =============================================================================

def _check_items_final(order: Order) -> None:
    items = order.active_items
    if not items:
        raise _guard_failed(order, ORDER_PENDING_PAYMENT, "Order has no items")
    unpriced = [item.id for item in items if not item.is_priced]
    if unpriced:
        raise _guard_failed(
            order,
            ORDER_PENDING_PAYMENT,
            "Every item needs a resolved or overridden price",
            unpriced_item_ids=unpriced,
        )


def _authorize_payment(order: Order, actor_id: int) -> str:
    """Return the history action for PENDING_PAYMENT -> PAID or raise."""
    if order.balance <= 0:
        return "payment_received"

    if not _is_deferred(order):
        raise _guard_failed(
            order,
            ORDER_PAID,
            "Order has an outstanding balance",
            balance=str(order.balance),
        )

    decision = can_commit(order.customer, order.balance, allow_deferred_payment=True)
    if decision.allowed:
        order.approved_by_user_id = actor_id
        return "credit_approved"

    approval = find_usable_approval(APPROVAL_CREDIT_OVERRIDE, order.id)
    if approval is not None:
        consume_approval(approval, actor_id)
        order.approved_by_user_id = approval.approved_by_user_id
        logger.info("Order %s proceeds on credit override %s", order.order_number, approval.id)
        return "credit_override"

    raise CreditDenied(
        f"Credit denied for order {order.order_number}: {decision.reason}",
        details={"order_id": order.id, "reasons": list(decision.reasons), **decision.details},
    )


def _has_production_items(order: Order) -> bool:
    return any(item.requires_production for item in order.active_items)


def _authorize_cancellation(order: Order, actor_id: int) -> None:
    working = active_jobs(order)
    if working:
        raise _guard_failed(
            order,
            ORDER_CANCELLED,
            "Cannot cancel while production jobs are active",
            active_jobs=[job.job_number for job in working],
        )

    if order.paid_amount > 0:
        approval = find_usable_approval(APPROVAL_CANCELLATION, order.id)
        if approval is None:
            raise InsufficientApprovalAuthority(
                "Order holds payments; cancellation needs an approved request",
                details={"order_id": order.id, "paid_amount": str(order.paid_amount)},
            )
        consume_approval(approval, actor_id)


# =============================================================================
# TRANSITIONS
# =============================================================================

def transition_order_locked(
    order: Order,
    target_status: str,
    actor_id: int,
    notes: str | None = None,
    action: str | None = None,
) -> Order:
    """
    Move a locked order along one edge. Does not commit; the caller owns
    the unit of work.
    """
    require_choice(target_status, ORDER_STATUSES, "status")
    from_status = order.status
    allowed = ORDER_TRANSITIONS.get(from_status, ())
    if target_status not in allowed:
        raise InvalidTransition(
            f"Cannot move order {order.order_number} from {from_status} to {target_status}",
            details={
                "order_id": order.id,
                "from_status": from_status,
                "to_status": target_status,
                "allowed": list(allowed),
            },
        )

    recompute_order(order)
    action = action or DEFAULT_ACTIONS[target_status]

    if target_status == ORDER_PENDING_PAYMENT:
        _check_items_final(order)

    elif target_status == ORDER_PAID:
        action = _authorize_payment(order, actor_id)

    elif target_status == ORDER_IN_PRODUCTION:
        if not _has_production_items(order):
            raise _guard_failed(order, target_status, "No item requires production; move to READY instead")

    elif target_status == ORDER_READY:
        if from_status == ORDER_PAID and _has_production_items(order):
            raise _guard_failed(order, target_status, "Order has production items; start production first")
        if from_status == ORDER_IN_PRODUCTION:
            settled, details = jobs_settled(order)
            if not settled:
                raise _guard_failed(order, target_status, "Service jobs are not all completed", **details)

    elif target_status == ORDER_RELEASED:
        if order.balance > 0 and not _is_deferred(order):
            raise _guard_failed(
                order,
                target_status,
                "Order must be paid before release",
                balance=str(order.balance),
            )

    elif target_status == ORDER_CANCELLED:
        notes = require_reason(notes, "reason")
        _authorize_cancellation(order, actor_id)

    order.status = target_status
    _append_history(order, from_status, target_status, actor_id, action, optional_text(notes))

    # Side effects of entering the new state
    if target_status == ORDER_PAID and not _is_deferred(order):
        create_invoice_locked(order, status=INVOICE_ISSUED)
    elif target_status == ORDER_IN_PRODUCTION:
        spawn_jobs_locked(order, actor_id)
    elif target_status == ORDER_RELEASED:
        stamp_delivered_locked(order)
        if _is_deferred(order):
            create_invoice_locked(order, status=INVOICE_DRAFT)
    elif target_status == ORDER_CANCELLED:
        order.cancelled_reason = notes
        cancel_pending_jobs_locked(order, actor_id, notes)

    db.session.flush()
    if target_status in (ORDER_PAID, ORDER_CANCELLED) and _is_deferred(order) and order.customer is not None:
        refresh_customer_credit_balance(order.customer)
    logger.info("Order %s: %s -> %s (%s)", order.order_number, from_status, target_status, action)
    return order


def update_order_status(order_id: int, target_status: str, actor_id: int, notes: str | None = None) -> Order:
    def _op():
        get_user(actor_id)
        order = _get_order_locked(order_id)
        transition_order_locked(order, target_status, actor_id, notes=notes)
        db.session.commit()
        return order

    return run_with_retry(_op)


def cancel_order(order_id: int, actor_id: int, reason: str) -> Order:
    return update_order_status(order_id, ORDER_CANCELLED, actor_id, notes=reason)


# =============================================================================
# ORDER ENTRY
# =============================================================================

def _derive_order_type(customer) -> str:
    if customer is None or customer.type == CUSTOMER_WALK_IN:
        return ORDER_TYPE_WALK_IN
    if customer.type == CUSTOMER_CREDIT:
        return ORDER_TYPE_INVOICE
    return ORDER_TYPE_REGULAR


def _require_draft(order: Order) -> None:
    if order.status != ORDER_DRAFT:
        raise InvalidTransition(
            f"Items can only change while the order is {ORDER_DRAFT}",
            details={"order_id": order.id, "status": order.status},
        )


def build_order_item(order: Order, data: dict) -> OrderItem:
    unknown = set(data) - ITEM_FIELDS
    if unknown:
        raise ValidationError("Unknown item fields", details={"fields": sorted(unknown)})

    product = load_product_for_pricing(data.get("product_id"))
    dimensions = Dimensions.from_payload(data.get("dimensions"))
    quote = price_line(
        product,
        data.get("quantity", 1),
        dimensions=dimensions,
        customer=order.customer,
        unit_price=data.get("unit_price"),
        override_reason=data.get("override_reason"),
        pricing_rule_id=data.get("pricing_rule_id"),
    )

    requires_production = data.get("requires_production")
    if requires_production is None:
        requires_production = product.type in PRODUCTION_ITEM_TYPES

    return OrderItem(
        order_id=order.id,
        product_id=product.id,
        item_type=product.type,
        description=optional_text(data.get("description")) or product.name,
        quantity=quote.quantity,
        dimensions=dimensions.to_payload() if dimensions else None,
        unit_price=quote.unit_price,
        line_total=quote.line_total,
        pricing_rule_id=quote.applied_rule_id,
        override_reason=quote.override_reason,
        requires_production=bool(requires_production),
    )


def create_order_locked(
    created_by: int,
    customer,
    payment_terms: str = TERMS_IMMEDIATE,
    order_type: str | None = None,
    notes: str | None = None,
    history_notes: str | None = None,
) -> Order:
    """Insert an empty DRAFT order and its creation history row (no commit)."""
    if payment_terms != TERMS_IMMEDIATE and customer is None:
        raise ValidationError(
            "Deferred payment terms need a customer",
            details={"payment_terms": payment_terms},
        )

    order = Order(
        order_number=next_document_number(KIND_ORDER),
        customer_id=customer.id if customer else None,
        order_type=order_type or _derive_order_type(customer),
        status=ORDER_DRAFT,
        payment_terms=payment_terms,
        notes=optional_text(notes),
        created_by_user_id=created_by,
    )
    db.session.add(order)
    db.session.flush()
    _append_history(order, None, ORDER_DRAFT, created_by, "created", history_notes)
    return order


def create_order(
    created_by: int,
    customer_id: int | None = None,
    items: list[dict] | None = None,
    payment_terms: str = TERMS_IMMEDIATE,
    order_type: str | None = None,
    notes: str | None = None,
) -> Order:
    """Create a DRAFT order, price every item and derive the totals."""
    require_choice(payment_terms, PAYMENT_TERMS, "payment_terms")
    if order_type is not None:
        require_choice(order_type, ORDER_TYPES, "order_type")
    if items is not None and not isinstance(items, list):
        raise ValidationError("items must be a list")

    def _op():
        get_user(created_by)
        order = create_order_locked(created_by, load_customer(customer_id), payment_terms, order_type, notes)

        for index, data in enumerate(items or []):
            if not isinstance(data, dict):
                raise ValidationError(f"items[{index}] must be an object")
            order.items.append(build_order_item(order, data))
        db.session.flush()

        recompute_order(order)
        db.session.commit()
        logger.info("Order %s created with %s item(s)", order.order_number, len(order.active_items))
        return order

    return run_with_retry(_op)


def add_item(
    order_id: int,
    product_id: int,
    quantity=1,
    dimensions=None,
    actor_id: int | None = None,
    **options,
) -> OrderItem:
    """Add a priced line to a DRAFT order (options: unit_price, override_reason, ...)."""
    def _op():
        if actor_id is not None:
            get_user(actor_id)
        order = _get_order_locked(order_id)
        _require_draft(order)
        item = build_order_item(order, {"product_id": product_id, "quantity": quantity, "dimensions": dimensions, **options})
        order.items.append(item)
        db.session.flush()
        recompute_order(order)
        db.session.commit()
        return item

    return run_with_retry(_op)


def _get_item(order: Order, item_id: int) -> OrderItem:
    for item in order.active_items:
        if item.id == item_id:
            return item
    raise NotFoundError("Order item not found", details={"order_id": order.id, "item_id": item_id})


def update_item(order_id: int, item_id: int, changes: dict, actor_id: int | None = None) -> OrderItem:
    """Change quantity, dimensions or the manual price of a line and re-price it."""
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("changes must be a non-empty object")

    def _op():
        if actor_id is not None:
            get_user(actor_id)
        order = _get_order_locked(order_id)
        _require_draft(order)
        item = _get_item(order, item_id)

        data = {
            "product_id": item.product_id,
            "quantity": item.quantity,
            "dimensions": item.dimensions,
            "description": item.description,
            "requires_production": item.requires_production,
        }
        # A manual price survives a re-price only when restated
        data.update(changes)
        rebuilt = build_order_item(order, data)

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
            "requires_production",
        ):
            setattr(item, column, getattr(rebuilt, column))

        recompute_order(order)
        db.session.commit()
        return item

    return run_with_retry(_op)


def remove_item(order_id: int, item_id: int, actor_id: int | None = None) -> Order:
    def _op():
        if actor_id is not None:
            get_user(actor_id)
        order = _get_order_locked(order_id)
        _require_draft(order)
        item = _get_item(order, item_id)
        item.removed_at = utcnow()
        recompute_order(order)
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# DISCOUNTS
# =============================================================================

def _effective_percent(subtotal: Decimal, amount: Decimal | None, percent: Decimal | None) -> Decimal:
    if percent is not None:
        return percent
    if subtotal <= 0:
        return ZERO
    return amount * Decimal(100) / subtotal


def apply_discount(order_id: int, actor_id: int, amount=None, percent=None, reason: str | None = None):
    """
    Apply an order-level discount.

    Returns the Order, or a pending ApprovalRequest when a user without
    approval authority asks for more than the threshold percentage. Once
    that request is approved, repeating the same call applies it.
    """
    if (amount is None) == (percent is None):
        raise ValidationError("Give either a discount amount or a percentage")
    text = require_reason(reason)
    amount = to_money(amount, "discount") if amount is not None else None
    percent = validate_percent(percent) if percent is not None else None

    def _op():
        actor = get_user(actor_id)
        order = _get_order_locked(order_id)
        if order.status not in DISCOUNTABLE_STATUSES:
            raise InvalidTransition(
                f"Cannot discount an order in status {order.status}",
                details={"order_id": order.id, "status": order.status},
            )

        recompute_order(order)
        resolve_discount(order.subtotal, amount=amount, percent=percent)

        effective = _effective_percent(order.subtotal, amount, percent)
        threshold = get_discount_threshold_percent()
        approved_by = actor.id if actor.can_approve else None

        if effective > threshold and not actor.can_approve:
            data = discount_request_data(order, amount, percent, text)
            match = {"discount_amount": data["discount_amount"], "discount_percent": data["discount_percent"]}
            approval = find_usable_approval(APPROVAL_DISCOUNT, order.id, match)
            if approval is None:
                pending = find_pending_request(APPROVAL_DISCOUNT, order.id)
                if pending is not None:
                    raise InsufficientApprovalAuthority(
                        "A discount approval is already pending for this order",
                        details={"order_id": order.id, "request_id": pending.id},
                    )
                data["threshold_percent"] = str(threshold)
                request = create_request_locked(APPROVAL_DISCOUNT, actor.id, data, order=order)
                db.session.commit()
                return request
            consume_approval(approval, actor.id)
            approved_by = approval.approved_by_user_id

        order.discount_percent = percent
        order.discount = amount if amount is not None else ZERO
        order.discount_reason = text
        if approved_by is not None and effective > threshold:
            order.approved_by_user_id = approved_by
        recompute_order(order)
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def list_orders(status: str | None = None, customer_id: int | None = None) -> list[Order]:
    query = db.session.query(Order)
    if status is not None:
        query = query.filter_by(status=require_choice(status, ORDER_STATUSES, "status"))
    if customer_id is not None:
        query = query.filter_by(customer_id=customer_id)
    return query.order_by(Order.id.desc()).all()


def get_status_history(order_id: int) -> list[OrderStatusHistory]:
    return get_order(order_id).status_history
