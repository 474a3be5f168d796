# Overview: Pricing Resolver; picks one applicable rule and prices a line from it.

"""
Pricing Resolver

resolve() is a pure read: it never writes, and the same product, quantity,
dimensions, customer and clock always give the same quote.

SELECTION:
1. Rules outside their validity window at at_time are ignored.
2. Rules whose rule_type is not relevant to the product type are ignored
   (customer_specific is relevant to every product type).
3. customer_specific rules that match the customer win over general rules;
   a customer_specific rule that does not match is not applicable at all.
4. Highest priority wins. A tie at the top is a configuration error.

ROUNDING:
The raw price is exact; it is rounded half-up to cents once to give the unit
price, and line_total = round(unit_price * quantity).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from ..errors import (
    AmbiguousPricingError,
    ConfigurationError,
    NoApplicableRuleError,
    NoMatchingTier,
    NotFoundError,
    SizeOutOfRange,
    ValidationError,
)
from ..extensions import db
from ..models import Customer, PricingRule, Product
from ..models.catalog import (
    PRODUCT_DIMENSION,
    PRODUCT_INVENTORY,
    PRODUCT_SERVICE,
    RULE_CUSTOMER_SPECIFIC,
    RULE_DIMENSION,
    RULE_FIXED,
    RULE_QUANTITY_TIER,
)
from ..validation import require_reason, round_money, to_money, to_quantity
from .pricing_rules import (
    CustomerSpecificConfig,
    DimensionConfig,
    Dimensions,
    FixedConfig,
    QuantityTierConfig,
    load_rule_config,
)
from printshop.time_utils import utcnow


logger = logging.getLogger(__name__)

RELEVANT_RULE_TYPES = {
    PRODUCT_INVENTORY: (RULE_QUANTITY_TIER, RULE_FIXED),
    PRODUCT_SERVICE: (RULE_QUANTITY_TIER, RULE_FIXED),
    PRODUCT_DIMENSION: (RULE_DIMENSION,),
}


@dataclass(frozen=True)
class PriceQuote:
    unit_price: Decimal
    line_total: Decimal
    applied_rule_id: int | None
    quantity: int
    rule_type: str | None = None
    size: Decimal | None = None
    override_reason: str | None = None

    @property
    def is_override(self) -> bool:
        return self.override_reason is not None

    def to_dict(self) -> dict:
        return {
            "unit_price": str(self.unit_price),
            "line_total": str(self.line_total),
            "applied_rule_id": self.applied_rule_id,
            "quantity": self.quantity,
            "rule_type": self.rule_type,
            "size": str(self.size) if self.size is not None else None,
            "override_reason": self.override_reason,
        }


def _applicable_rules(product: Product, customer: Customer | None, at_time: datetime):
    relevant = RELEVANT_RULE_TYPES.get(product.type, ())
    general = []
    customer_specific = []

    for rule in product.pricing_rules:
        if not rule.is_valid_at(at_time):
            continue
        if rule.rule_type == RULE_CUSTOMER_SPECIFIC:
            config = load_rule_config(rule)
            if config.matches(customer):
                customer_specific.append((rule, config))
        elif rule.rule_type in relevant:
            general.append((rule, load_rule_config(rule)))

    return customer_specific or general


def select_rule(product: Product, customer: Customer | None = None, at_time: datetime | None = None):
    """Return the winning (rule, config) pair for product/customer at at_time."""
    at_time = at_time or utcnow()
    candidates = _applicable_rules(product, customer, at_time)

    if not candidates:
        raise NoApplicableRuleError(
            f"No applicable pricing rule for product {product.sku}",
            details={
                "product_id": product.id,
                "product_type": product.type,
                "customer_id": customer.id if customer else None,
                "at_time": at_time.isoformat(),
            },
        )

    top_priority = max(rule.priority for rule, _ in candidates)
    winners = [(rule, config) for rule, config in candidates if rule.priority == top_priority]
    if len(winners) > 1:
        raise AmbiguousPricingError(
            f"Ambiguous pricing for product {product.sku}: several rules share priority {top_priority}",
            details={
                "product_id": product.id,
                "priority": top_priority,
                "rule_ids": sorted(rule.id for rule, _ in winners),
            },
        )
    return winners[0]


def _raw_price(rule: PricingRule, config, quantity: int, dimensions: Dimensions | None):
    """Unrounded unit price and (for area pricing) the computed size."""
    if isinstance(config, CustomerSpecificConfig):
        config = config.pricing

    if isinstance(config, QuantityTierConfig):
        band = config.tier_for(quantity)
        if band is None:
            raise NoMatchingTier(
                f"No tier of rule {rule.id} contains quantity {quantity}",
                details={"rule_id": rule.id, "quantity": quantity, "tiers": config.to_payload()["tiers"]},
            )
        return band.price, None

    if isinstance(config, DimensionConfig):
        if dimensions is None:
            raise ValidationError(
                "dimensions are required for dimension pricing",
                details={"rule_id": rule.id, "product_id": rule.product_id},
            )
        size = dimensions.area_in(config.unit)
        # max_size is inclusive
        if config.max_size is not None and size > config.max_size:
            raise SizeOutOfRange(
                f"Size {size.normalize()} {config.unit} exceeds the maximum of {config.max_size} {config.unit}",
                details={
                    "rule_id": rule.id,
                    "size": str(size),
                    "max_size": str(config.max_size),
                    "unit": config.unit,
                },
            )
        return config.base_price * max(size, config.min_size), size

    if isinstance(config, FixedConfig):
        return config.price, None

    raise ValidationError(f"Unsupported pricing config for rule {rule.id}")


def resolve(
    product: Product,
    quantity,
    dimensions=None,
    customer: Customer | None = None,
    at_time: datetime | None = None,
) -> PriceQuote:
    """Price one line for product; see module docstring for the rules."""
    qty = to_quantity(quantity)
    dims = Dimensions.from_payload(dimensions)
    rule, config = select_rule(product, customer, at_time)

    raw, size = _raw_price(rule, config, qty, dims)
    unit_price = round_money(raw)
    return PriceQuote(
        unit_price=unit_price,
        line_total=round_money(unit_price * qty),
        applied_rule_id=rule.id,
        quantity=qty,
        rule_type=rule.rule_type,
        size=size,
    )


def manual_price(
    product: Product | None,
    quantity,
    unit_price,
    override_reason: str | None,
    attempted_rule_id: int | None = None,
) -> PriceQuote:
    """
    Human override of the resolved price.

    Rule lookup is skipped entirely; the rule the operator was shown (if
    any) is still recorded for audit.
    """
    reason = require_reason(override_reason, "override_reason")
    qty = to_quantity(quantity)
    price = to_money(unit_price, "unit_price")

    if attempted_rule_id is not None:
        rule = db.session.get(PricingRule, attempted_rule_id)
        if rule is None or product is None or rule.product_id != product.id:
            raise ValidationError(
                "pricing_rule_id does not belong to this product",
                details={"pricing_rule_id": attempted_rule_id, "product_id": product.id if product else None},
            )

    return PriceQuote(
        unit_price=price,
        line_total=round_money(price * qty),
        applied_rule_id=attempted_rule_id,
        quantity=qty,
        override_reason=reason,
    )


def price_line(
    product: Product,
    quantity,
    dimensions=None,
    customer: Customer | None = None,
    unit_price=None,
    override_reason: str | None = None,
    pricing_rule_id: int | None = None,
    at_time: datetime | None = None,
) -> PriceQuote:
    """Resolve a line, or honour a manual price when one is given."""
    if unit_price is not None:
        return manual_price(product, quantity, unit_price, override_reason, pricing_rule_id)
    if override_reason:
        raise ValidationError("override_reason given without a unit_price")
    return resolve(product, quantity, dimensions, customer, at_time)


def load_product_for_pricing(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    if not product.is_active:
        raise ValidationError(
            f"Product {product.sku} is inactive",
            details={"product_id": product.id, "sku": product.sku},
        )
    return product


def load_customer(customer_id: int | None) -> Customer | None:
    if customer_id is None:
        return None
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found", details={"customer_id": customer_id})
    return customer


def calculate_price(
    product_id: int,
    quantity,
    dimensions=None,
    customer_id: int | None = None,
    at_time: datetime | None = None,
) -> PriceQuote:
    """Standalone price preview; reads only."""
    product = load_product_for_pricing(product_id)
    customer = load_customer(customer_id)
    return resolve(product, quantity, dimensions, customer, at_time)


def batch_calculate(items: list[dict], customer_id: int | None = None, at_time: datetime | None = None) -> dict:
    """
    Price several preview lines at once.

    Each line is resolved independently; a failure on one line is reported
    in its slot and does not hide the others.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    customer = load_customer(customer_id)
    at_time = at_time or utcnow()
    results = []
    total = Decimal("0")

    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{index}] must be an object")
        try:
            product = load_product_for_pricing(item.get("product_id"))
            quote = resolve(product, item.get("quantity", 1), item.get("dimensions"), customer, at_time)
        except (ValidationError, NotFoundError, ConfigurationError) as exc:
            results.append({"index": index, "product_id": item.get("product_id"), **exc.to_dict()})
            continue
        total += quote.line_total
        results.append({"index": index, "product_id": product.id, **quote.to_dict()})

    return {"items": results, "subtotal": str(round_money(total))}
