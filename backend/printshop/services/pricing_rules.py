# Overview: Typed pricing-rule configs (tagged union keyed by rule_type) and print dimensions.

"""
Pricing rule configuration

PricingRule.config is JSON in the database, but it is never read ad hoc:
every payload is parsed into one of the frozen dataclasses below, both when
a rule is written (ValidationError on bad input) and when it is evaluated
(ConfigurationError if a stored payload no longer parses).

SHAPES (decimals accepted as numbers or strings, stored as strings):
- quantity_tier:     {"tiers": [{"min_qty": 1, "max_qty": 100, "price": "1.00"}, ...]}
                     (a bare list of bands is accepted too)
- dimension:         {"unit": "sqft", "base_price": "2.50", "min_size": "1", "max_size": "100"}
- fixed:             {"price": "25.00"}
- customer_specific: {"customer_id": 7} or {"customer_type": "credit"}, plus either
                     {"price": "0.40"} or {"rule_type": "<any of the above>", "config": {...}}
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, ClassVar, Union

from ..errors import ConfigurationError, ValidationError
from ..models.catalog import (
    RULE_CUSTOMER_SPECIFIC,
    RULE_DIMENSION,
    RULE_FIXED,
    RULE_QUANTITY_TIER,
    RULE_TYPES,
)
from ..models.customers import CUSTOMER_TYPES
from ..validation import require_choice, to_decimal


# Linear units expressed in metres; conversions divide once at the end
LINEAR_UNITS = {
    "mm": Decimal("0.001"),
    "cm": Decimal("0.01"),
    "m": Decimal("1"),
    "in": Decimal("0.0254"),
    "ft": Decimal("0.3048"),
}

AREA_UNITS = {
    "sqft": "ft",
    "sqm": "m",
    "sqin": "in",
}

DEFAULT_LINEAR_UNIT = "ft"


def _price(value: Any, field: str) -> Decimal:
    price = to_decimal(value, field)
    if price < 0:
        raise ValidationError(f"{field} cannot be negative", details={"field": field})
    return price


def _int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, str) and value.strip().isdigit():
            return int(value.strip())
        raise ValidationError(f"{field} must be an integer", details={"field": field, "value": value})
    return value


# =============================================================================
# DIMENSIONS
# =============================================================================

@dataclass(frozen=True)
class Dimensions:
    width: Decimal
    height: Decimal
    unit: str = DEFAULT_LINEAR_UNIT

    @classmethod
    def from_payload(cls, payload: Any) -> "Dimensions | None":
        if payload is None:
            return None
        if isinstance(payload, Dimensions):
            return payload
        if not isinstance(payload, dict):
            raise ValidationError("dimensions must be an object with width and height")
        width = to_decimal(payload.get("width"), "width")
        height = to_decimal(payload.get("height"), "height")
        if width <= 0 or height <= 0:
            raise ValidationError(
                "width and height must be greater than zero",
                details={"width": str(width), "height": str(height)},
            )
        unit = require_choice(payload.get("unit") or DEFAULT_LINEAR_UNIT, LINEAR_UNITS.keys(), "unit")
        return cls(width=width, height=height, unit=unit)

    def area_in(self, area_unit: str) -> Decimal:
        """Area converted to sqft/sqm/sqin without intermediate rounding."""
        target = LINEAR_UNITS[AREA_UNITS[area_unit]]
        source = LINEAR_UNITS[self.unit]
        return (self.width * self.height * source * source) / (target * target)

    def to_payload(self) -> dict:
        return {"width": str(self.width), "height": str(self.height), "unit": self.unit}


# =============================================================================
# RULE CONFIGS
# =============================================================================

@dataclass(frozen=True)
class Tier:
    min_qty: int
    max_qty: int | None
    price: Decimal

    def contains(self, quantity: int) -> bool:
        if quantity < self.min_qty:
            return False
        return self.max_qty is None or quantity <= self.max_qty

    def to_payload(self) -> dict:
        return {"min_qty": self.min_qty, "max_qty": self.max_qty, "price": str(self.price)}


@dataclass(frozen=True)
class QuantityTierConfig:
    rule_type: ClassVar[str] = RULE_QUANTITY_TIER
    tiers: tuple[Tier, ...]

    @classmethod
    def parse(cls, payload: Any) -> "QuantityTierConfig":
        raw = payload.get("tiers") if isinstance(payload, dict) else payload
        if not isinstance(raw, list) or not raw:
            raise ValidationError("quantity_tier config needs a non-empty list of tiers")

        tiers = []
        for index, band in enumerate(raw):
            if not isinstance(band, dict):
                raise ValidationError(f"tier {index} must be an object")
            min_qty = _int(band.get("min_qty"), f"tiers[{index}].min_qty")
            max_raw = band.get("max_qty")
            max_qty = None if max_raw is None else _int(max_raw, f"tiers[{index}].max_qty")
            if min_qty < 1:
                raise ValidationError(f"tiers[{index}].min_qty must be at least 1")
            if max_qty is not None and max_qty < min_qty:
                raise ValidationError(f"tiers[{index}].max_qty is below min_qty")
            tiers.append(Tier(min_qty=min_qty, max_qty=max_qty, price=_price(band.get("price"), f"tiers[{index}].price")))

        tiers.sort(key=lambda t: t.min_qty)
        for prev, band in zip(tiers, tiers[1:]):
            if prev.max_qty is None:
                raise ValidationError(
                    "Only the last tier may be unbounded",
                    details={"tier_min_qty": prev.min_qty},
                )
            if band.min_qty != prev.max_qty + 1:
                raise ValidationError(
                    "Tiers must be contiguous and non-overlapping",
                    details={"previous_max_qty": prev.max_qty, "next_min_qty": band.min_qty},
                )
        return cls(tiers=tuple(tiers))

    def tier_for(self, quantity: int) -> Tier | None:
        for band in self.tiers:
            if band.contains(quantity):
                return band
        return None

    def to_payload(self) -> dict:
        return {"tiers": [band.to_payload() for band in self.tiers]}


@dataclass(frozen=True)
class DimensionConfig:
    rule_type: ClassVar[str] = RULE_DIMENSION
    unit: str
    base_price: Decimal
    min_size: Decimal
    max_size: Decimal | None

    @classmethod
    def parse(cls, payload: Any) -> "DimensionConfig":
        if not isinstance(payload, dict):
            raise ValidationError("dimension config must be an object")
        unit = require_choice(payload.get("unit") or "sqft", AREA_UNITS.keys(), "unit")
        base_price = _price(payload.get("base_price"), "base_price")
        min_size = to_decimal(payload.get("min_size", 0), "min_size")
        if min_size < 0:
            raise ValidationError("min_size cannot be negative")
        max_raw = payload.get("max_size")
        max_size = None if max_raw is None else to_decimal(max_raw, "max_size")
        if max_size is not None and max_size < min_size:
            raise ValidationError(
                "max_size cannot be below min_size",
                details={"min_size": str(min_size), "max_size": str(max_size)},
            )
        return cls(unit=unit, base_price=base_price, min_size=min_size, max_size=max_size)

    def to_payload(self) -> dict:
        return {
            "unit": self.unit,
            "base_price": str(self.base_price),
            "min_size": str(self.min_size),
            "max_size": str(self.max_size) if self.max_size is not None else None,
        }


@dataclass(frozen=True)
class FixedConfig:
    rule_type: ClassVar[str] = RULE_FIXED
    price: Decimal

    @classmethod
    def parse(cls, payload: Any) -> "FixedConfig":
        if not isinstance(payload, dict):
            raise ValidationError("fixed config must be an object")
        return cls(price=_price(payload.get("price"), "price"))

    def to_payload(self) -> dict:
        return {"price": str(self.price)}


BaseRuleConfig = Union[QuantityTierConfig, DimensionConfig, FixedConfig]

_BASE_PARSERS = {
    RULE_QUANTITY_TIER: QuantityTierConfig.parse,
    RULE_DIMENSION: DimensionConfig.parse,
    RULE_FIXED: FixedConfig.parse,
}


@dataclass(frozen=True)
class CustomerSpecificConfig:
    rule_type: ClassVar[str] = RULE_CUSTOMER_SPECIFIC
    customer_id: int | None
    customer_type: str | None
    pricing: BaseRuleConfig

    @classmethod
    def parse(cls, payload: Any) -> "CustomerSpecificConfig":
        if not isinstance(payload, dict):
            raise ValidationError("customer_specific config must be an object")

        customer_id = payload.get("customer_id")
        customer_type = payload.get("customer_type")
        if customer_id is None and customer_type is None:
            raise ValidationError("customer_specific config needs customer_id or customer_type")
        if customer_id is not None:
            customer_id = _int(customer_id, "customer_id")
        if customer_type is not None:
            customer_type = require_choice(customer_type, CUSTOMER_TYPES, "customer_type")

        if "rule_type" in payload:
            inner_type = require_choice(payload["rule_type"], _BASE_PARSERS.keys(), "rule_type")
            pricing = _BASE_PARSERS[inner_type](payload.get("config"))
        elif "price" in payload:
            pricing = FixedConfig.parse({"price": payload["price"]})
        else:
            raise ValidationError("customer_specific config needs a price or a nested rule_type/config")

        return cls(customer_id=customer_id, customer_type=customer_type, pricing=pricing)

    def matches(self, customer) -> bool:
        if customer is None:
            return False
        if self.customer_id is not None and customer.id == self.customer_id:
            return True
        return self.customer_type is not None and customer.type == self.customer_type

    def to_payload(self) -> dict:
        return {
            "customer_id": self.customer_id,
            "customer_type": self.customer_type,
            "rule_type": self.pricing.rule_type,
            "config": self.pricing.to_payload(),
        }


RuleConfig = Union[QuantityTierConfig, DimensionConfig, FixedConfig, CustomerSpecificConfig]

_PARSERS = dict(_BASE_PARSERS, **{RULE_CUSTOMER_SPECIFIC: CustomerSpecificConfig.parse})


def parse_rule_config(rule_type: str, payload: Any) -> RuleConfig:
    """Validate a user-supplied config (write time)."""
    require_choice(rule_type, RULE_TYPES, "rule_type")
    return _PARSERS[rule_type](payload)


def load_rule_config(rule) -> RuleConfig:
    """Parse a stored rule (evaluation time); bad data is a configuration problem."""
    try:
        return parse_rule_config(rule.rule_type, rule.config)
    except ValidationError as exc:
        raise ConfigurationError(
            f"Pricing rule {rule.id} has an invalid config: {exc.message}",
            details={"rule_id": rule.id, "product_id": rule.product_id, **exc.details},
        ) from exc
