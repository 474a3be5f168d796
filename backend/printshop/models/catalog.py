from __future__ import annotations

from ..extensions import db
from printshop.time_utils import to_utc_z
from printshop.validation import money_str


PRODUCT_INVENTORY = "inventory"
PRODUCT_SERVICE = "service"
PRODUCT_DIMENSION = "dimension"
PRODUCT_TYPES = (PRODUCT_INVENTORY, PRODUCT_SERVICE, PRODUCT_DIMENSION)

RULE_QUANTITY_TIER = "quantity_tier"
RULE_DIMENSION = "dimension"
RULE_FIXED = "fixed"
RULE_CUSTOMER_SPECIFIC = "customer_specific"
RULE_TYPES = (RULE_QUANTITY_TIER, RULE_DIMENSION, RULE_FIXED, RULE_CUSTOMER_SPECIFIC)


class Product(db.Model):
    """
    Catalog product.

    Products are soft-disabled via is_active and never hard-deleted while
    order items reference them.
    """
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # inventory | service | dimension
    type = db.Column(db.String(16), nullable=False, index=True)

    unit_cost = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    stock_qty = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    pricing_rules = db.relationship(
        "PricingRule",
        back_populates="product",
        lazy=True,
        order_by="PricingRule.priority.desc()",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "unit_cost": money_str(self.unit_cost),
            "stock_qty": self.stock_qty,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PricingRule(db.Model):
    """
    One pricing rule of a product.

    config holds the rule-type specific payload, normalized by
    services.pricing_rules at write time (decimals stored as strings).
    A rule is applicable only while valid_from <= now <= valid_until;
    a missing bound is unbounded on that side.
    """
    __tablename__ = "pricing_rules"
    __table_args__ = (
        db.Index("ix_pricing_rules_product_type", "product_id", "rule_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    rule_type = db.Column(db.String(32), nullable=False)
    config = db.Column(db.JSON, nullable=False)

    # Higher number = higher priority
    priority = db.Column(db.Integer, nullable=False, default=0, index=True)

    valid_from = db.Column(db.DateTime(timezone=True), nullable=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", back_populates="pricing_rules")

    def is_valid_at(self, at_time) -> bool:
        if self.valid_from is not None and at_time < self.valid_from:
            return False
        if self.valid_until is not None and at_time > self.valid_until:
            return False
        return True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "rule_type": self.rule_type,
            "config": self.config,
            "priority": self.priority,
            "valid_from": to_utc_z(self.valid_from),
            "valid_until": to_utc_z(self.valid_until),
            "created_at": to_utc_z(self.created_at),
        }
