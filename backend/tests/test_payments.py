"""
Payment and refund tests.

Verifies:
- Only cash may exceed the outstanding balance
- Refunds are negative rows and cannot exceed what was paid
- Orders advance on settlement (PAID, and COMPLETED via invoice)
- Payment numbering
"""

from decimal import Decimal

import pytest

from printshop.errors import InvalidTransition, NotFoundError, ValidationError
from printshop.models import Payment
from printshop.services import order_service, payment_service


@pytest.fixture
def pending_order(make_order, business_cards, counter):
    """Business cards x150: total 123.75 awaiting payment."""
    order = make_order([{"product_id": business_cards.id, "quantity": 150}])
    return order_service.update_order_status(order.id, "PENDING_PAYMENT", counter.id)


class TestRecordPayment:

    def test_partial_payment_keeps_status(self, pending_order, counter):
        payment = payment_service.record_payment(counter.id, "50.00", "card", order_id=pending_order.id)
        assert payment.payment_number.startswith("PAY-")
        assert payment.amount == Decimal("50.00")
        assert payment_service.get_payment(payment.id).payment_method == "card"

        order = order_service.get_order(pending_order.id)
        assert order.status == "PENDING_PAYMENT"
        assert order.paid_amount == Decimal("50.00")
        assert order.balance == Decimal("73.75")

    def test_split_payment_settles(self, pending_order, counter):
        payment_service.record_payment(counter.id, "23.75", "cash", order_id=pending_order.id)
        payment_service.record_payment(counter.id, "100.00", "bank_transfer", order_id=pending_order.id, reference_number="TRF-889")

        order = order_service.get_order(pending_order.id)
        assert order.status == "PAID"
        assert order.status_history[-1].action == "payment_received"
        assert order.invoice.status == "paid"
        assert len(payment_service.list_payments(order_id=order.id)) == 2

    def test_card_cannot_overpay(self, pending_order, counter):
        with pytest.raises(ValidationError) as exc:
            payment_service.record_payment(counter.id, "130.00", "card", order_id=pending_order.id)
        assert exc.value.details["balance"] == "123.75"

    def test_cash_overpayment_gives_negative_balance(self, pending_order, counter):
        payment_service.record_payment(counter.id, "130.00", "cash", order_id=pending_order.id)
        order = order_service.get_order(pending_order.id)
        assert order.status == "PAID"
        assert order.balance == Decimal("-6.25")

    def test_amount_must_be_positive(self, pending_order, counter):
        with pytest.raises(ValidationError):
            payment_service.record_payment(counter.id, "0", "cash", order_id=pending_order.id)
        with pytest.raises(ValidationError):
            payment_service.record_payment(counter.id, "-5", "cash", order_id=pending_order.id)

    def test_unknown_method(self, pending_order, counter):
        with pytest.raises(ValidationError):
            payment_service.record_payment(counter.id, "10.00", "cheque", order_id=pending_order.id)

    def test_needs_a_target(self, counter, db_session):
        with pytest.raises(ValidationError):
            payment_service.record_payment(counter.id, "10.00", "cash")

    def test_draft_order_cannot_be_paid(self, make_order, business_cards, counter):
        order = make_order([{"product_id": business_cards.id, "quantity": 150}])
        with pytest.raises(InvalidTransition):
            payment_service.record_payment(counter.id, "10.00", "cash", order_id=order.id)

    def test_unknown_order(self, counter, db_session):
        with pytest.raises(NotFoundError):
            payment_service.record_payment(counter.id, "10.00", "cash", order_id=4242)


class TestRefunds:

    def test_partial_then_full_refund(self, pending_order, counter, manager, db_session):
        payment = payment_service.record_payment(counter.id, "50.00", "card", order_id=pending_order.id)

        refund = payment_service.refund_payment(payment.id, manager.id, "Overcharged", amount="20.00")
        assert refund.amount == Decimal("-20.00")
        assert refund.refund_of_id == payment.id
        assert payment_service.refunded_amount(payment.id) == Decimal("20.00")
        assert order_service.get_order(pending_order.id).paid_amount == Decimal("30.00")

        rest = payment_service.refund_payment(payment.id, manager.id, "Order abandoned")
        assert rest.amount == Decimal("-30.00")
        assert order_service.get_order(pending_order.id).paid_amount == Decimal("0.00")

        # Original row is untouched
        assert db_session.get(Payment, payment.id).amount == Decimal("50.00")

    def test_cannot_over_refund(self, pending_order, counter, manager):
        payment = payment_service.record_payment(counter.id, "50.00", "card", order_id=pending_order.id)
        with pytest.raises(ValidationError):
            payment_service.refund_payment(payment.id, manager.id, "Too much", amount="50.01")

    def test_cannot_refund_a_refund(self, pending_order, counter, manager):
        payment = payment_service.record_payment(counter.id, "50.00", "card", order_id=pending_order.id)
        refund = payment_service.refund_payment(payment.id, manager.id, "Overcharged", amount="10.00")
        with pytest.raises(ValidationError):
            payment_service.refund_payment(refund.id, manager.id, "Again")

    def test_refund_needs_reason(self, pending_order, counter, manager):
        payment = payment_service.record_payment(counter.id, "50.00", "card", order_id=pending_order.id)
        with pytest.raises(ValidationError):
            payment_service.refund_payment(payment.id, manager.id, "")

    def test_refund_reopens_paid_invoice(self, pending_order, counter, manager):
        payment = payment_service.record_payment(counter.id, "123.75", "card", order_id=pending_order.id)
        payment_service.refund_payment(payment.id, manager.id, "Goodwill", amount="23.75")

        order = order_service.get_order(pending_order.id)
        assert order.status == "PAID"
        assert order.balance == Decimal("23.75")
        assert order.invoice.status == "partial"
        assert order.invoice.balance == Decimal("23.75")
