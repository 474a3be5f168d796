"""
Quotation tests.

Verifies:
- Quotations are priced by the same resolver and ledger as orders
- Status edges, expiry and frozen items once approved
- Conversion is all-or-nothing, with or without re-pricing
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from printshop.errors import InsufficientApprovalAuthority, InvalidTransition, ValidationError
from printshop.models import Order, OrderItem
from printshop.services import products_service, quotation_service
from printshop.time_utils import utcnow


@pytest.fixture
def quotation(business_cards, counter):
    return quotation_service.create_quotation(
        counter.id,
        items=[{"product_id": business_cards.id, "quantity": 150}],
        notes="Wedding stationery",
    )


@pytest.fixture
def approved_quotation(quotation, manager):
    quotation_service.update_quotation_status(quotation.id, "sent", manager.id)
    return quotation_service.update_quotation_status(quotation.id, "approved", manager.id)


class TestQuotationPricing:

    def test_priced_like_an_order(self, quotation):
        assert quotation.quote_number.startswith("QUO-")
        assert quotation.status == "draft"
        assert quotation.subtotal == Decimal("112.50")
        assert quotation.tax == Decimal("11.25")
        assert quotation.total == Decimal("123.75")
        assert quotation.valid_until > utcnow() + timedelta(days=29)

    def test_item_edits(self, quotation, paper):
        item = quotation_service.add_quotation_item(quotation.id, paper.id, quantity=2)
        assert quotation_service.get_quotation(quotation.id).subtotal == Decimal("122.50")

        quotation_service.update_quotation_item(quotation.id, item.id, {"quantity": 4})
        assert quotation_service.get_quotation(quotation.id).subtotal == Decimal("132.50")

        quotation_service.remove_quotation_item(quotation.id, item.id)
        assert quotation_service.get_quotation(quotation.id).subtotal == Decimal("112.50")

    def test_discount_threshold(self, quotation, counter, manager):
        with pytest.raises(InsufficientApprovalAuthority):
            quotation_service.apply_quotation_discount(quotation.id, counter.id, percent="20")

        quotation = quotation_service.apply_quotation_discount(quotation.id, manager.id, percent="20")
        assert quotation.discount == Decimal("22.50")
        assert quotation.total == Decimal("99.00")

        quotation = quotation_service.apply_quotation_discount(quotation.id, counter.id, amount="5.00")
        assert quotation.discount == Decimal("5.00")
        assert quotation.discount_percent is None


class TestQuotationStatus:

    def test_empty_quotation_cannot_be_approved(self, counter, manager):
        quotation = quotation_service.create_quotation(counter.id)
        with pytest.raises(ValidationError):
            quotation_service.update_quotation_status(quotation.id, "approved", manager.id)

    def test_approved_items_are_frozen(self, approved_quotation, paper):
        assert approved_quotation.approved_by_user_id is not None
        with pytest.raises(InvalidTransition):
            quotation_service.add_quotation_item(approved_quotation.id, paper.id)

    def test_rejected_is_terminal(self, quotation, manager):
        quotation_service.update_quotation_status(quotation.id, "rejected", manager.id)
        with pytest.raises(InvalidTransition):
            quotation_service.update_quotation_status(quotation.id, "approved", manager.id)

    def test_expired_quotation_cannot_be_approved(self, business_cards, counter, manager):
        quotation = quotation_service.create_quotation(
            counter.id,
            items=[{"product_id": business_cards.id, "quantity": 150}],
            valid_until=utcnow() - timedelta(days=1),
        )
        with pytest.raises(InvalidTransition):
            quotation_service.update_quotation_status(quotation.id, "approved", manager.id)

        expired = quotation_service.expire_quotations()
        assert [q.id for q in expired] == [quotation.id]
        assert quotation_service.get_quotation(quotation.id).status == "expired"

    def test_valid_until_must_parse(self, counter):
        with pytest.raises(ValidationError):
            quotation_service.create_quotation(counter.id, valid_until="next tuesday")


class TestConversion:

    def test_convert_with_reprice(self, approved_quotation, business_cards, counter, admin):
        # A newer rule with higher priority now applies
        products_service.create_pricing_rule(
            business_cards.id,
            "quantity_tier",
            {"tiers": [{"min_qty": 1, "max_qty": None, "price": "0.90"}]},
            priority=10,
        )

        order = quotation_service.convert_quotation(approved_quotation.id, counter.id)
        assert order.status == "DRAFT"
        assert order.subtotal == Decimal("135.00")
        assert order.notes == "Wedding stationery"
        assert "Converted from" in order.status_history[0].notes

        quotation = quotation_service.get_quotation(approved_quotation.id)
        assert quotation.status == "converted"
        assert quotation.converted_order_id == order.id

        with pytest.raises(InvalidTransition):
            quotation_service.convert_quotation(approved_quotation.id, counter.id)

    def test_convert_keeping_quoted_prices(self, approved_quotation, business_cards, counter):
        products_service.create_pricing_rule(
            business_cards.id,
            "quantity_tier",
            {"tiers": [{"min_qty": 1, "max_qty": None, "price": "0.90"}]},
            priority=10,
        )

        order = quotation_service.convert_quotation(approved_quotation.id, counter.id, reprice=False)
        item = order.active_items[0]
        assert item.unit_price == Decimal("0.75")
        assert item.override_reason.startswith("Quoted price from QUO-")
        assert order.total == Decimal("123.75")

    def test_convert_carries_discount(self, quotation, manager, counter):
        quotation_service.apply_quotation_discount(quotation.id, manager.id, percent="20")
        quotation_service.update_quotation_status(quotation.id, "approved", manager.id)

        order = quotation_service.convert_quotation(quotation.id, counter.id)
        assert order.discount == Decimal("22.50")
        assert order.approved_by_user_id == manager.id

    def test_only_approved_quotations_convert(self, quotation, counter):
        with pytest.raises(InvalidTransition):
            quotation_service.convert_quotation(quotation.id, counter.id)

    def test_failed_conversion_leaves_nothing(self, approved_quotation, business_cards, counter, db_session):
        products_service.deactivate_product(business_cards.id)

        with pytest.raises(ValidationError):
            quotation_service.convert_quotation(approved_quotation.id, counter.id)

        assert db_session.query(Order).count() == 0
        assert db_session.query(OrderItem).count() == 0
        assert quotation_service.get_quotation(approved_quotation.id).status == "approved"
