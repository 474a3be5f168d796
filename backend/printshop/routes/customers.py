# Overview: Flask API routes for customers and their credit position.

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_actor, require_role
from ..errors import PrintshopError
from ..models.auth import ROLE_ADMIN, ROLE_COUNTER, ROLE_MANAGER
from ..services import customers_service


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.post("")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER, ROLE_COUNTER)
def create_customer_route():
    try:
        data = request.get_json() or {}
        customer = customers_service.create_customer(
            name=data.get("name"),
            customer_type=data.get("type", "regular"),
            email=data.get("email"),
            phone=data.get("phone"),
            credit_limit=data.get("credit_limit", 0),
            credit_period_days=data.get("credit_period_days"),
        )
        return jsonify({"customer": customer.to_dict()}), 201
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
@require_actor
def get_customer_route(customer_id: int):
    try:
        return jsonify({"customer": customers_service.get_customer(customer_id).to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status


@customers_bp.patch("/<int:customer_id>/credit")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_credit_route(customer_id: int):
    try:
        data = request.get_json() or {}
        customer = customers_service.update_credit_profile(
            customer_id,
            credit_limit=data.get("credit_limit"),
            credit_period_days=data.get("credit_period_days"),
            customer_type=data.get("type"),
        )
        return jsonify({"customer": customer.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update customer credit")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>/credit")
@require_actor
def credit_status_route(customer_id: int):
    """Credit summary; ?order_total= previews the guard's decision."""
    try:
        status = customers_service.credit_status(customer_id, request.args.get("order_total", "0"))
        return jsonify(status), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
