# Overview: Approval Workflow; records exception requests and resolves them once.

"""
Approval Workflow

Lifecycle: pending -> approved | rejected (terminal, never re-opened).

Resolving a request never touches the order or customer. An approved request
only lets the original action be retried once; the retry finds it with
find_usable_approval() and stamps it consumed in the same unit of work.
"""

from __future__ import annotations

import logging

from ..errors import InsufficientApprovalAuthority, InvalidTransition, NotFoundError, ValidationError
from ..extensions import db
from ..models import ApprovalRequest, Order
from ..models.approvals import (
    APPROVAL_APPROVED,
    APPROVAL_CANCELLATION,
    APPROVAL_CREDIT_OVERRIDE,
    APPROVAL_DISCOUNT,
    APPROVAL_PENDING,
    APPROVAL_REJECTED,
    APPROVAL_TYPES,
)
from ..validation import money_str, optional_text, require_choice, require_reason, to_money
from .concurrency import lock_for_update, run_with_retry
from .ledger_service import validate_percent
from .users_service import get_user
from printshop.time_utils import utcnow


logger = logging.getLogger(__name__)

DECISIONS = {
    "approve": APPROVAL_APPROVED,
    "approved": APPROVAL_APPROVED,
    "reject": APPROVAL_REJECTED,
    "rejected": APPROVAL_REJECTED,
}


def _get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def create_request_locked(
    request_type: str,
    requested_by: int,
    request_data: dict,
    order: Order | None = None,
    customer_id: int | None = None,
) -> ApprovalRequest:
    """Add a pending request inside the caller's unit of work."""
    require_choice(request_type, APPROVAL_TYPES, "type")
    require_reason(request_data.get("reason"), "reason")

    request = ApprovalRequest(
        type=request_type,
        status=APPROVAL_PENDING,
        order_id=order.id if order else None,
        customer_id=customer_id if customer_id is not None else (order.customer_id if order else None),
        requested_by_user_id=requested_by,
        request_data=request_data,
    )
    db.session.add(request)
    db.session.flush()
    logger.info("Approval request %s (%s) raised by user %s", request.id, request_type, requested_by)
    return request


def discount_request_data(order: Order, amount=None, percent=None, reason: str | None = None) -> dict:
    return {
        "order_number": order.order_number,
        "subtotal": money_str(order.subtotal),
        "discount_amount": str(amount) if amount is not None else None,
        "discount_percent": str(percent) if percent is not None else None,
        "reason": optional_text(reason),
    }


def request_discount_approval(order_id: int, requested_by: int, amount=None, percent=None, reason: str | None = None) -> ApprovalRequest:
    if (amount is None) == (percent is None):
        raise ValidationError("Give either a discount amount or a percentage")
    amount = to_money(amount, "discount") if amount is not None else None
    percent = validate_percent(percent) if percent is not None else None

    def _op():
        get_user(requested_by)
        order = _get_order(order_id)
        request = create_request_locked(
            APPROVAL_DISCOUNT,
            requested_by,
            discount_request_data(order, amount, percent, reason),
            order=order,
        )
        db.session.commit()
        return request

    return run_with_retry(_op)


def request_credit_override(order_id: int, requested_by: int, reason: str | None = None) -> ApprovalRequest:
    """Ask to let one credit-denied order proceed anyway."""
    def _op():
        get_user(requested_by)
        order = _get_order(order_id)
        if order.customer is None:
            raise ValidationError("Credit overrides only apply to orders with a customer", details={"order_id": order_id})
        request = create_request_locked(
            APPROVAL_CREDIT_OVERRIDE,
            requested_by,
            {
                "order_number": order.order_number,
                "override_amount": money_str(order.balance),
                "credit_limit": money_str(order.customer.credit_limit),
                "credit_balance": money_str(order.customer.credit_balance),
                "reason": optional_text(reason),
            },
            order=order,
        )
        db.session.commit()
        return request

    return run_with_retry(_op)


def request_cancellation_override(order_id: int, requested_by: int, reason: str | None = None) -> ApprovalRequest:
    """Ask to cancel an order that still holds payments."""
    def _op():
        get_user(requested_by)
        order = _get_order(order_id)
        request = create_request_locked(
            APPROVAL_CANCELLATION,
            requested_by,
            {
                "order_number": order.order_number,
                "status": order.status,
                "paid_amount": money_str(order.paid_amount),
                "reason": optional_text(reason),
            },
            order=order,
        )
        db.session.commit()
        return request

    return run_with_retry(_op)


def resolve_approval(request_id: int, decision: str, approver_id: int, notes: str | None = None) -> ApprovalRequest:
    """Approve or reject a pending request. Only admins and managers may resolve."""
    status = DECISIONS.get(str(decision).lower() if decision is not None else "")
    if status is None:
        raise ValidationError(
            "decision must be 'approve' or 'reject'",
            details={"decision": decision},
        )
    if status == APPROVAL_REJECTED:
        notes = require_reason(notes, "approver_notes")

    def _op():
        approver = get_user(approver_id)
        if not approver.can_approve:
            raise InsufficientApprovalAuthority(
                "Only admins and managers can resolve approval requests",
                details={"user_id": approver.id, "role": approver.role, "request_id": request_id},
            )

        request = lock_for_update(db.session.query(ApprovalRequest).filter_by(id=request_id)).first()
        if request is None:
            raise NotFoundError("Approval request not found", details={"request_id": request_id})
        if request.status != APPROVAL_PENDING:
            raise InvalidTransition(
                f"Approval request is already {request.status}",
                details={"request_id": request.id, "from_status": request.status, "to_status": status},
            )

        request.status = status
        request.approved_by_user_id = approver.id
        request.approved_at = utcnow()
        request.approver_notes = optional_text(notes)
        db.session.commit()
        logger.info("Approval request %s %s by user %s", request.id, status, approver.id)
        return request

    return run_with_retry(_op)


def find_usable_approval(request_type: str, order_id: int, match: dict | None = None) -> ApprovalRequest | None:
    """
    Latest approved, unconsumed request of request_type for order_id.

    match narrows on request_data keys (e.g. the exact discount that was
    approved), so an approval never authorizes a different action.
    """
    candidates = (
        db.session.query(ApprovalRequest)
        .filter(
            ApprovalRequest.type == request_type,
            ApprovalRequest.order_id == order_id,
            ApprovalRequest.status == APPROVAL_APPROVED,
            ApprovalRequest.consumed_at.is_(None),
        )
        .order_by(ApprovalRequest.id.desc())
        .all()
    )
    for request in candidates:
        data = request.request_data or {}
        if all(data.get(key) == value for key, value in (match or {}).items()):
            return request
    return None


def find_pending_request(request_type: str, order_id: int) -> ApprovalRequest | None:
    return (
        db.session.query(ApprovalRequest)
        .filter_by(type=request_type, order_id=order_id, status=APPROVAL_PENDING)
        .order_by(ApprovalRequest.id.desc())
        .first()
    )


def consume_approval(request: ApprovalRequest, actor_id: int) -> ApprovalRequest:
    """Mark an approval as used inside the caller's unit of work."""
    if request.status != APPROVAL_APPROVED or request.consumed_at is not None:
        raise InsufficientApprovalAuthority(
            "Approval is not usable",
            details={"request_id": request.id, "status": request.status},
        )
    request.consumed_at = utcnow()
    request.consumed_by_user_id = actor_id
    db.session.flush()
    return request


def get_approval(request_id: int) -> ApprovalRequest:
    request = db.session.get(ApprovalRequest, request_id)
    if request is None:
        raise NotFoundError("Approval request not found", details={"request_id": request_id})
    return request


def list_pending_approvals(request_type: str | None = None) -> list[ApprovalRequest]:
    query = db.session.query(ApprovalRequest).filter_by(status=APPROVAL_PENDING)
    if request_type is not None:
        query = query.filter_by(type=require_choice(request_type, APPROVAL_TYPES, "type"))
    return query.order_by(ApprovalRequest.created_at.asc(), ApprovalRequest.id.asc()).all()
