# Overview: Flask API routes for products and pricing rules.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_actor, require_role
from ..errors import PrintshopError
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER
from ..services import products_service


catalog_bp = Blueprint("catalog", __name__, url_prefix="/api/products")


@catalog_bp.get("")
@require_actor
def list_products_route():
    include_inactive = request.args.get("include_inactive", "false").lower() == "true"
    products = products_service.list_products(include_inactive=include_inactive)
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@catalog_bp.post("")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_product_route():
    try:
        data = request.get_json() or {}
        product = products_service.create_product(
            sku=data.get("sku"),
            name=data.get("name"),
            product_type=data.get("type"),
            unit_cost=data.get("unit_cost", 0),
            stock_qty=data.get("stock_qty", 0),
            description=data.get("description"),
        )
        return jsonify({"product": product.to_dict()}), 201
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.patch("/<int:product_id>")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_product_route(product_id: int):
    try:
        product = products_service.update_product(product_id, request.get_json() or {})
        return jsonify({"product": product.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.post("/<int:product_id>/deactivate")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def deactivate_product_route(product_id: int):
    try:
        product = products_service.deactivate_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to deactivate product")
        return jsonify({"error": "Internal server error"}), 500


@catalog_bp.get("/<int:product_id>/pricing-rules")
@require_actor
def list_pricing_rules_route(product_id: int):
    try:
        rules = products_service.list_pricing_rules(product_id)
        return jsonify({"items": [r.to_dict() for r in rules]}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status


@catalog_bp.post("/<int:product_id>/pricing-rules")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_pricing_rule_route(product_id: int):
    try:
        data = request.get_json() or {}
        rule = products_service.create_pricing_rule(
            product_id=product_id,
            rule_type=data.get("rule_type"),
            config=data.get("config"),
            priority=data.get("priority", 0),
            valid_from=data.get("valid_from"),
            valid_until=data.get("valid_until"),
        )
        return jsonify({"pricing_rule": rule.to_dict()}), 201
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create pricing rule")
        return jsonify({"error": "Internal server error"}), 500
