"""
Credit control guard tests.

Verifies:
- The limit check and the overdue check deny independently
- Non-credit customers and pay-now commitments are never checked
- credit_balance is derived from outstanding invoices
- credit_status() is a read-only summary
"""

from decimal import Decimal

import pytest

from printshop.errors import CreditDenied
from printshop.models import Invoice
from printshop.services import credit_service, customers_service


def _overdue_invoice(customer, number="INV-TEST-0001", balance="50.00"):
    return Invoice(
        invoice_number=number,
        customer_id=customer.id,
        status="overdue",
        subtotal=Decimal(balance),
        total=Decimal(balance),
        paid_amount=Decimal("0.00"),
        balance=Decimal(balance),
    )


class TestCanCommit:

    def test_within_limit(self, credit_customer):
        decision = credit_service.can_commit(credit_customer, Decimal("300.00"), True)
        assert decision.allowed is True
        assert decision.reasons == ("within_limit",)
        assert decision.details["projected_balance"] == "300.00"

    def test_limit_exceeded(self, credit_customer, db_session):
        credit_customer.credit_balance = Decimal("800.00")
        db_session.commit()

        decision = credit_service.can_commit(credit_customer, Decimal("300.00"), True)
        assert decision.allowed is False
        assert decision.reasons == ("credit_limit_exceeded",)
        assert decision.details["projected_balance"] == "1100.00"

    def test_exactly_at_limit_is_allowed(self, credit_customer, db_session):
        credit_customer.credit_balance = Decimal("700.00")
        db_session.commit()

        assert credit_service.can_commit(credit_customer, Decimal("300.00"), True).allowed is True

    def test_overdue_denies_within_limit(self, credit_customer, db_session):
        db_session.add(_overdue_invoice(credit_customer))
        db_session.commit()

        decision = credit_service.can_commit(credit_customer, Decimal("150.00"), True)
        assert decision.allowed is False
        assert decision.reasons == ("overdue_invoices",)
        assert decision.details["overdue_invoices"][0]["invoice_number"] == "INV-TEST-0001"

    def test_both_reasons_reported(self, credit_customer, db_session):
        credit_customer.credit_balance = Decimal("990.00")
        db_session.add(_overdue_invoice(credit_customer))
        db_session.commit()

        decision = credit_service.can_commit(credit_customer, Decimal("150.00"), True)
        assert set(decision.reasons) == {"credit_limit_exceeded", "overdue_invoices"}

    def test_paying_now_is_not_checked(self, credit_customer, db_session):
        credit_customer.credit_balance = Decimal("1000.00")
        db_session.commit()

        decision = credit_service.can_commit(credit_customer, Decimal("5000.00"), False)
        assert decision.allowed is True
        assert decision.reasons == ("not_deferred",)

    def test_non_credit_customer(self, regular_customer):
        decision = credit_service.can_commit(regular_customer, Decimal("5000.00"), True)
        assert decision.allowed is True
        assert decision.reasons == ("not_credit_customer",)

    def test_walk_in(self):
        assert credit_service.can_commit(None, Decimal("10.00"), True).allowed is True

    def test_require_credit_raises(self, credit_customer, db_session):
        credit_customer.credit_balance = Decimal("999.00")
        db_session.commit()

        with pytest.raises(CreditDenied) as exc:
            credit_service.require_credit(credit_customer, Decimal("2.00"), True)
        assert exc.value.details["reasons"] == ["credit_limit_exceeded"]


class TestCreditBalance:

    def test_derived_from_outstanding_invoices(self, credit_customer, db_session):
        db_session.add(_overdue_invoice(credit_customer, "INV-TEST-0001", "50.00"))
        db_session.add(Invoice(
            invoice_number="INV-TEST-0002",
            customer_id=credit_customer.id,
            status="draft",
            total=Decimal("70.00"),
            balance=Decimal("70.00"),
        ))
        db_session.add(Invoice(
            invoice_number="INV-TEST-0003",
            customer_id=credit_customer.id,
            status="partial",
            total=Decimal("100.00"),
            paid_amount=Decimal("40.00"),
            balance=Decimal("60.00"),
        ))
        db_session.commit()

        owed = credit_service.refresh_customer_credit_balance(credit_customer)
        assert owed == Decimal("110.00")
        assert credit_service.available_credit(credit_customer) == Decimal("890.00")

    def test_profile_update_keeps_balance_derived(self, credit_customer):
        customer = customers_service.update_credit_profile(credit_customer.id, credit_limit="2500.00", credit_period_days=60)
        assert customer.credit_limit == Decimal("2500.00")
        assert customer.credit_period_days == 60
        assert customer.credit_balance == Decimal("0.00")

    def test_credit_status_summary(self, credit_customer):
        status = customers_service.credit_status(credit_customer.id, order_total="1200.00")
        assert status["available_credit"] == "1000.00"
        assert status["decision"]["allowed"] is False
        assert status["decision"]["reasons"] == ["credit_limit_exceeded"]
