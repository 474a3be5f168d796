# backend/printshop/services/products_service.py
"""
Catalog Service - products and their pricing rules

Products are soft-disabled (is_active=False) and never deleted while order
or quotation items reference them. Pricing rule configs are validated into
the typed shapes of pricing_rules before they are stored, so the resolver
only ever reads well-formed payloads.
"""
from __future__ import annotations

from datetime import datetime

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import PricingRule, Product
from ..models.catalog import PRODUCT_TYPES
from ..validation import optional_text, require_choice, to_money
from .concurrency import lock_for_update, run_with_retry
from .pricing_rules import parse_rule_config
from printshop.time_utils import parse_iso_datetime

PRODUCT_MUTABLE_FIELDS = {"name", "description", "unit_cost", "stock_qty"}


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def list_products(include_inactive: bool = False) -> list[Product]:
    query = db.session.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.sku.asc()).all()


def create_product(
    sku: str,
    name: str,
    product_type: str,
    unit_cost=0,
    stock_qty: int = 0,
    description: str | None = None,
) -> Product:
    """Create a catalog product. SKUs are unique across the catalog."""
    sku = optional_text(sku)
    name = optional_text(name)
    if not sku or not name:
        raise ValidationError("sku and name are required")
    require_choice(product_type, PRODUCT_TYPES, "type")
    cost = to_money(unit_cost, "unit_cost")
    if isinstance(stock_qty, bool) or not isinstance(stock_qty, int) or stock_qty < 0:
        raise ValidationError("stock_qty must be a non-negative integer", details={"stock_qty": stock_qty})

    def _op():
        if db.session.query(Product.id).filter_by(sku=sku).first():
            raise ValidationError("SKU already exists", details={"sku": sku})
        product = Product(
            sku=sku,
            name=name,
            description=optional_text(description),
            type=product_type,
            unit_cost=cost,
            stock_qty=stock_qty,
            is_active=True,
        )
        db.session.add(product)
        db.session.commit()
        return product

    return run_with_retry(_op)


def update_product(product_id: int, patch: dict) -> Product:
    """Patch mutable fields. sku and type are fixed once items may reference them."""
    def _op():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise NotFoundError("Product not found", details={"product_id": product_id})
        for key, value in patch.items():
            if key not in PRODUCT_MUTABLE_FIELDS:
                continue
            if key == "unit_cost":
                value = to_money(value, "unit_cost")
            elif key in ("name", "description"):
                value = optional_text(value)
                if key == "name" and not value:
                    raise ValidationError("name cannot be empty")
            setattr(product, key, value)
        db.session.commit()
        return product

    return run_with_retry(_op)


def deactivate_product(product_id: int) -> Product:
    def _op():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise NotFoundError("Product not found", details={"product_id": product_id})
        product.is_active = False
        db.session.commit()
        return product

    return run_with_retry(_op)


def _parse_bound(value, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = parse_iso_datetime(str(value))
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{field} must be an ISO-8601 datetime", details={"field": field, "value": value})
    return parsed


def create_pricing_rule(
    product_id: int,
    rule_type: str,
    config,
    priority: int = 0,
    valid_from=None,
    valid_until=None,
) -> PricingRule:
    """
    Attach a pricing rule to a product.

    The config is parsed into its typed shape and stored normalized; a
    malformed config never reaches the table.
    """
    parsed = parse_rule_config(rule_type, config)
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValidationError("priority must be an integer", details={"priority": priority})
    start = _parse_bound(valid_from, "valid_from")
    end = _parse_bound(valid_until, "valid_until")
    if start is not None and end is not None and end < start:
        raise ValidationError("valid_until cannot be before valid_from")

    def _op():
        get_product(product_id)
        rule = PricingRule(
            product_id=product_id,
            rule_type=rule_type,
            config=parsed.to_payload(),
            priority=priority,
            valid_from=start,
            valid_until=end,
        )
        db.session.add(rule)
        db.session.commit()
        return rule

    return run_with_retry(_op)


def list_pricing_rules(product_id: int) -> list[PricingRule]:
    return get_product(product_id).pricing_rules
