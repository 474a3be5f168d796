"""
Approval workflow tests.

Verifies:
- Only admins and managers resolve requests
- pending -> approved | rejected, resolved once
- Rejections need notes
- An approval is consumed by exactly one retry
"""

import pytest

from printshop.errors import InsufficientApprovalAuthority, InvalidTransition, ValidationError
from printshop.services import approval_service, order_service


@pytest.fixture
def order(make_order, business_cards):
    return make_order([{"product_id": business_cards.id, "quantity": 150}])


class TestResolve:

    def test_counter_cannot_resolve(self, order, counter):
        request = approval_service.request_discount_approval(order.id, counter.id, percent="20", reason="Loyal")
        with pytest.raises(InsufficientApprovalAuthority):
            approval_service.resolve_approval(request.id, "approve", counter.id)
        assert approval_service.get_approval(request.id).status == "pending"

    def test_admin_can_resolve(self, order, counter, admin):
        request = approval_service.request_discount_approval(order.id, counter.id, percent="20", reason="Loyal")
        request = approval_service.resolve_approval(request.id, "approve", admin.id)
        assert request.status == "approved"
        assert request.approved_by_user_id == admin.id
        assert request.approved_at is not None

    def test_reject_needs_notes(self, order, counter, manager):
        request = approval_service.request_cancellation_override(order.id, counter.id, reason="Duplicate")

        with pytest.raises(ValidationError):
            approval_service.resolve_approval(request.id, "reject", manager.id)
        request = approval_service.resolve_approval(request.id, "reject", manager.id, notes="Not a duplicate")
        assert request.status == "rejected"
        assert request.approver_notes == "Not a duplicate"

    def test_resolved_once(self, order, counter, manager):
        request = approval_service.request_discount_approval(order.id, counter.id, amount="30.00", reason="Loyal")
        approval_service.resolve_approval(request.id, "approve", manager.id)
        with pytest.raises(InvalidTransition):
            approval_service.resolve_approval(request.id, "reject", manager.id, notes="Changed my mind")

    def test_bad_decision(self, order, counter, manager):
        request = approval_service.request_discount_approval(order.id, counter.id, percent="20", reason="Loyal")
        with pytest.raises(ValidationError):
            approval_service.resolve_approval(request.id, "maybe", manager.id)

    def test_request_needs_reason(self, order, counter):
        with pytest.raises(ValidationError):
            approval_service.request_cancellation_override(order.id, counter.id, reason=" ")

    def test_credit_override_needs_customer(self, order, counter):
        with pytest.raises(ValidationError):
            approval_service.request_credit_override(order.id, counter.id, reason="Trusted")


class TestQueueAndConsumption:

    def test_pending_queue(self, order, counter, manager):
        discount = approval_service.request_discount_approval(order.id, counter.id, percent="20", reason="Loyal")
        cancel = approval_service.request_cancellation_override(order.id, counter.id, reason="Duplicate")

        assert [r.id for r in approval_service.list_pending_approvals()] == [discount.id, cancel.id]
        assert [r.id for r in approval_service.list_pending_approvals("cancellation")] == [cancel.id]

        approval_service.resolve_approval(discount.id, "approve", manager.id)
        assert [r.id for r in approval_service.list_pending_approvals()] == [cancel.id]

    def test_rejected_discount_is_not_usable(self, order, counter, manager):
        request = order_service.apply_discount(order.id, counter.id, percent="20", reason="Loyal")
        approval_service.resolve_approval(request.id, "reject", manager.id, notes="Too generous")

        again = order_service.apply_discount(order.id, counter.id, percent="20", reason="Loyal")
        assert again.id != request.id
        assert again.status == "pending"

    def test_approval_used_once(self, order, counter, manager):
        request = order_service.apply_discount(order.id, counter.id, percent="20", reason="Loyal")
        approval_service.resolve_approval(request.id, "approve", manager.id)
        order_service.apply_discount(order.id, counter.id, percent="20", reason="Loyal")

        assert approval_service.find_usable_approval("discount", order.id) is None
        consumed = approval_service.get_approval(request.id)
        with pytest.raises(InsufficientApprovalAuthority):
            approval_service.consume_approval(consumed, counter.id)
