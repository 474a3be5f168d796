# Overview: Flask API routes for orders; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_role
from ..errors import PrintshopError
from ..models import ApprovalRequest
from ..models.auth import ROLE_ADMIN, ROLE_COUNTER, ROLE_MANAGER, ROLE_PRODUCTION, ROLE_QA
from ..services import order_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

COUNTER_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_COUNTER)


@orders_bp.post("")
@require_actor
@require_role(*COUNTER_ROLES)
def create_order_route():
    """
    Create a DRAFT order.

    Body: {"customer_id"?, "payment_terms"?, "order_type"?, "notes"?, "items": [...]}
    """
    try:
        data = request.get_json() or {}
        order = order_service.create_order(
            created_by=g.current_user.id,
            customer_id=data.get("customer_id"),
            items=data.get("items"),
            payment_terms=data.get("payment_terms", "immediate"),
            order_type=data.get("order_type"),
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict(include_items=True)}), 201
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_actor
def list_orders_route():
    try:
        orders = order_service.list_orders(
            status=request.args.get("status"),
            customer_id=request.args.get("customer_id", type=int),
        )
        return jsonify({"items": [o.to_dict() for o in orders], "count": len(orders)}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({"order": order.to_dict(include_items=True)}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status


@orders_bp.post("/<int:order_id>/items")
@require_actor
@require_role(*COUNTER_ROLES)
def add_item_route(order_id: int):
    try:
        data = dict(request.get_json() or {})
        data.pop("actor_id", None)
        product_id = data.pop("product_id", None)
        if product_id is None:
            return jsonify({"error": "product_id required"}), 400

        item = order_service.add_item(
            order_id,
            product_id,
            quantity=data.pop("quantity", 1),
            dimensions=data.pop("dimensions", None),
            actor_id=g.current_user.id,
            **data,
        )
        return jsonify({"item": item.to_dict(), "order": item.order.to_dict()}), 201
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.patch("/<int:order_id>/items/<int:item_id>")
@require_actor
@require_role(*COUNTER_ROLES)
def update_item_route(order_id: int, item_id: int):
    try:
        item = order_service.update_item(order_id, item_id, request.get_json() or {}, actor_id=g.current_user.id)
        return jsonify({"item": item.to_dict(), "order": item.order.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>/items/<int:item_id>")
@require_actor
@require_role(*COUNTER_ROLES)
def remove_item_route(order_id: int, item_id: int):
    try:
        order = order_service.remove_item(order_id, item_id, actor_id=g.current_user.id)
        return jsonify({"order": order.to_dict(include_items=True)}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to remove order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/discount")
@require_actor
@require_role(*COUNTER_ROLES)
def apply_discount_route(order_id: int):
    """
    Apply a discount: {"amount"} or {"percent"}, plus "reason".

    202 with the approval request when the discount needs a manager.
    """
    try:
        data = request.get_json() or {}
        result = order_service.apply_discount(
            order_id,
            g.current_user.id,
            amount=data.get("amount"),
            percent=data.get("percent"),
            reason=data.get("reason"),
        )
        if isinstance(result, ApprovalRequest):
            return jsonify({"approval_request": result.to_dict()}), 202
        return jsonify({"order": result.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to apply discount")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/status")
@require_actor
@require_role(*COUNTER_ROLES, ROLE_PRODUCTION, ROLE_QA)
def update_status_route(order_id: int):
    try:
        data = request.get_json() or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status required"}), 400

        order = order_service.update_order_status(order_id, status, g.current_user.id, notes=data.get("notes"))
        return jsonify({"order": order.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
@require_role(*COUNTER_ROLES)
def cancel_order_route(order_id: int):
    try:
        data = request.get_json() or {}
        order = order_service.cancel_order(order_id, g.current_user.id, data.get("reason"))
        return jsonify({"order": order.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/history")
@require_actor
def status_history_route(order_id: int):
    try:
        rows = order_service.get_status_history(order_id)
        return jsonify({"items": [row.to_dict() for row in rows]}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
