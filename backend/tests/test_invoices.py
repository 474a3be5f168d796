"""
Invoice tests.

Verifies:
- Invoices mirror the order's invoiceable items; overrides never touch the order
- Due date from the customer's credit period
- Status derivation (issued, partial, paid, overdue, disputed)
- Overdue marking feeds the credit guard
- Paying the invoice of a released order completes it
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from printshop.errors import InvalidTransition, ValidationError
from printshop.services import (
    credit_service,
    invoice_service,
    order_service,
    payment_service,
    service_job_service,
)
from printshop.time_utils import utcnow


@pytest.fixture
def credit_order(make_order, business_cards, credit_customer, counter):
    """Business cards x150 on 30-day credit, committed to PAID (123.75 owed)."""
    order = make_order([{"product_id": business_cards.id, "quantity": 150}], credit_customer, "credit_30")
    order_service.update_order_status(order.id, "PENDING_PAYMENT", counter.id)
    return order_service.update_order_status(order.id, "PAID", counter.id)


def _finish_jobs(order, operator, inspector, cancel=()):
    for job in order.service_jobs:
        if job.order_item.product_id in cancel:
            service_job_service.update_service_job_status(job.id, "CANCELLED", operator.id, reason="Withdrawn")
            continue
        service_job_service.accept_job(job.id, operator.id, assign_to_self=True)
        service_job_service.update_service_job_status(job.id, "IN_PROGRESS", operator.id)
        service_job_service.update_service_job_status(job.id, "QA_REVIEW", operator.id)
        service_job_service.update_service_job_status(job.id, "COMPLETED", inspector.id)


# =============================================================================
# CREATION
# =============================================================================


class TestCreateInvoice:

    def test_issued_invoice_uses_credit_period(self, credit_order, credit_customer, counter):
        before = utcnow()
        invoice = invoice_service.create_invoice_from_order(credit_order.id, counter.id, status="issued")

        assert invoice.invoice_number.startswith("INV-")
        assert invoice.status == "issued"
        assert invoice.issue_date is not None
        assert invoice.total == Decimal("123.75")
        assert invoice.balance == Decimal("123.75")
        assert invoice.customer_id == credit_customer.id
        assert before + timedelta(days=30) - timedelta(minutes=1) <= invoice.due_date <= utcnow() + timedelta(days=30)

        assert credit_customer.credit_balance == Decimal("123.75")

    def test_explicit_credit_period(self, credit_order, counter):
        invoice = invoice_service.create_invoice_from_order(credit_order.id, counter.id, credit_period_days=7)
        assert invoice.due_date <= utcnow() + timedelta(days=7)

    def test_one_invoice_per_order(self, credit_order, counter):
        invoice_service.create_invoice_from_order(credit_order.id, counter.id)
        with pytest.raises(ValidationError):
            invoice_service.create_invoice_from_order(credit_order.id, counter.id)

    def test_draft_order_cannot_be_invoiced(self, make_order, business_cards, counter):
        order = make_order([{"product_id": business_cards.id, "quantity": 150}])
        with pytest.raises(InvalidTransition):
            invoice_service.create_invoice_from_order(order.id, counter.id)

    def test_bad_status(self, credit_order, counter):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice_from_order(credit_order.id, counter.id, status="paid")


# =============================================================================
# DRAFT EDITS
# =============================================================================


class TestDraftInvoice:

    def test_unit_price_override_leaves_order_untouched(self, credit_order, counter):
        invoice = invoice_service.create_invoice_from_order(credit_order.id, counter.id)
        item = credit_order.active_items[0]

        invoice = invoice_service.update_draft_invoice(invoice.id, item_overrides={item.id: {"unit_price": "0.70"}})
        assert invoice.subtotal == Decimal("105.00")
        assert invoice.tax == Decimal("10.50")
        assert invoice.total == Decimal("115.50")
        assert invoice.item_overrides == {str(item.id): {"unit_price": "0.70"}}

        order = order_service.get_order(credit_order.id)
        assert order.subtotal == Decimal("112.50")
        assert order.total == Decimal("123.75")
        assert order.active_items[0].unit_price == Decimal("0.75")

    def test_percentage_line_discount(self, credit_order, counter):
        invoice = invoice_service.create_invoice_from_order(credit_order.id, counter.id)
        item_id = credit_order.active_items[0].id

        invoice = invoice_service.update_draft_invoice(
            invoice.id,
            item_overrides={item_id: {"discount_type": "percentage", "discount_value": "10"}},
        )
        assert invoice.subtotal == Decimal("101.25")

    def test_unknown_item(self, credit_order, counter):
        invoice = invoice_service.create_invoice_from_order(credit_order.id, counter.id)
        with pytest.raises(ValidationError):
            invoice_service.update_draft_invoice(invoice.id, item_overrides={9999: {"unit_price": "1.00"}})

    def test_empty_override(self, credit_order, counter):
        invoice = invoice_service.create_invoice_from_order(credit_order.id, counter.id)
        item_id = credit_order.active_items[0].id
        with pytest.raises(ValidationError):
            invoice_service.update_draft_invoice(invoice.id, item_overrides={item_id: {}})

    def test_issued_invoice_is_frozen(self, credit_order, counter):
        invoice = invoice_service.create_invoice_from_order(credit_order.id, counter.id)
        invoice_service.issue_invoice(invoice.id, counter.id)

        with pytest.raises(InvalidTransition):
            invoice_service.update_draft_invoice(invoice.id, notes="late edit")
        with pytest.raises(InvalidTransition):
            invoice_service.issue_invoice(invoice.id, counter.id)

    def test_draft_invoice_cannot_take_payment(self, credit_order, counter):
        invoice = invoice_service.create_invoice_from_order(credit_order.id, counter.id)
        with pytest.raises(InvalidTransition):
            payment_service.record_payment(counter.id, "10.00", "cash", invoice_id=invoice.id)


# =============================================================================
# STATUS DERIVATION
# =============================================================================


class TestInvoiceStatus:

    def test_overdue_marking_feeds_credit_guard(self, credit_order, credit_customer, counter):
        invoice = invoice_service.create_invoice_from_order(credit_order.id, counter.id, status="issued")

        assert invoice_service.mark_overdue_invoices(now=utcnow() + timedelta(days=29)) == []

        marked = invoice_service.mark_overdue_invoices(now=utcnow() + timedelta(days=31))
        assert [inv.id for inv in marked] == [invoice.id]
        assert invoice_service.get_invoice(invoice.id).status == "overdue"

        decision = credit_service.can_commit(credit_customer, Decimal("10.00"), True)
        assert decision.allowed is False
        assert "overdue_invoices" in decision.reasons

    def test_paid_invoice_never_overdue(self, make_order, business_cards, counter):
        order = make_order([{"product_id": business_cards.id, "quantity": 150}])
        order_service.update_order_status(order.id, "PENDING_PAYMENT", counter.id)
        payment_service.record_payment(counter.id, "123.75", "card", order_id=order.id)

        assert invoice_service.mark_overdue_invoices(now=utcnow() + timedelta(days=365)) == []

    def test_partial_then_paid(self, credit_order, credit_customer, counter):
        invoice = invoice_service.create_invoice_from_order(credit_order.id, counter.id, status="issued")

        payment_service.record_payment(counter.id, "23.75", "bank_transfer", invoice_id=invoice.id)
        invoice = invoice_service.get_invoice(invoice.id)
        assert invoice.status == "partial"
        assert invoice.balance == Decimal("100.00")
        assert credit_customer.credit_balance == Decimal("100.00")

        payment_service.record_payment(counter.id, "100.00", "bank_transfer", invoice_id=invoice.id)
        invoice = invoice_service.get_invoice(invoice.id)
        assert invoice.status == "paid"
        assert credit_customer.credit_balance == Decimal("0.00")

    def test_dispute(self, credit_order, counter):
        invoice = invoice_service.create_invoice_from_order(credit_order.id, counter.id)
        with pytest.raises(InvalidTransition):
            invoice_service.dispute_invoice(invoice.id, counter.id, "Not yet issued")

        invoice_service.issue_invoice(invoice.id, counter.id)
        with pytest.raises(ValidationError):
            invoice_service.dispute_invoice(invoice.id, counter.id, "")

        invoice = invoice_service.dispute_invoice(invoice.id, counter.id, "Wrong quantity")
        assert invoice.status == "disputed"
        assert "Wrong quantity" in invoice.notes
        with pytest.raises(InvalidTransition):
            invoice_service.dispute_invoice(invoice.id, counter.id, "Again")

        # Still disputed after a partial payment, settled once paid in full
        payment_service.record_payment(counter.id, "20.00", "cash", invoice_id=invoice.id)
        assert invoice_service.get_invoice(invoice.id).status == "disputed"
        payment_service.record_payment(counter.id, "103.75", "cash", invoice_id=invoice.id)
        assert invoice_service.get_invoice(invoice.id).status == "paid"

    def test_list_filters(self, credit_order, credit_customer, counter):
        invoice = invoice_service.create_invoice_from_order(credit_order.id, counter.id)
        assert [inv.id for inv in invoice_service.list_invoices(customer_id=credit_customer.id)] == [invoice.id]
        assert invoice_service.list_invoices(status="issued") == []


# =============================================================================
# RELEASE ON CREDIT
# =============================================================================


class TestReleaseOnCredit:

    def test_cancelled_line_excluded_and_payment_completes_order(
        self, make_order, business_cards, banner, credit_customer, counter, operator, inspector
    ):
        order = make_order(
            [
                {"product_id": business_cards.id, "quantity": 150},
                {"product_id": banner.id, "dimensions": {"width": 2, "height": 3, "unit": "ft"}},
            ],
            credit_customer,
            "credit_30",
        )
        order_service.update_order_status(order.id, "PENDING_PAYMENT", counter.id)
        order_service.update_order_status(order.id, "PAID", counter.id)
        order = order_service.update_order_status(order.id, "IN_PRODUCTION", counter.id)

        _finish_jobs(order, operator, inspector, cancel=(banner.id,))
        assert order_service.get_order(order.id).status == "READY"

        order = order_service.update_order_status(order.id, "RELEASED", counter.id)
        invoice = order.invoice
        assert invoice.status == "draft"
        assert invoice.subtotal == Decimal("112.50")
        assert invoice.total == Decimal("123.75")

        invoice_service.issue_invoice(invoice.id, counter.id)
        payment_service.record_payment(counter.id, "123.75", "bank_transfer", invoice_id=invoice.id)

        order = order_service.get_order(order.id)
        assert order.invoice.status == "paid"
        assert order.status == "COMPLETED"
        assert order.status_history[-1].action == "invoice_settled"
