# Overview: Flask API routes for quotations and quotation-to-order conversion.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_role
from ..errors import PrintshopError
from ..models.auth import ROLE_ADMIN, ROLE_COUNTER, ROLE_MANAGER
from ..services import quotation_service


quotations_bp = Blueprint("quotations", __name__, url_prefix="/api/quotations")

COUNTER_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_COUNTER)


@quotations_bp.post("")
@require_actor
@require_role(*COUNTER_ROLES)
def create_quotation_route():
    try:
        data = request.get_json() or {}
        quotation = quotation_service.create_quotation(
            g.current_user.id,
            customer_id=data.get("customer_id"),
            items=data.get("items"),
            valid_until=data.get("valid_until"),
            notes=data.get("notes"),
        )
        return jsonify({"quotation": quotation.to_dict(include_items=True)}), 201
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create quotation")
        return jsonify({"error": "Internal server error"}), 500


@quotations_bp.get("/<int:quotation_id>")
@require_actor
def get_quotation_route(quotation_id: int):
    try:
        quotation = quotation_service.get_quotation(quotation_id)
        return jsonify({"quotation": quotation.to_dict(include_items=True)}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status


@quotations_bp.post("/<int:quotation_id>/items")
@require_actor
@require_role(*COUNTER_ROLES)
def add_quotation_item_route(quotation_id: int):
    try:
        data = dict(request.get_json() or {})
        product_id = data.pop("product_id", None)
        if product_id is None:
            return jsonify({"error": "product_id required"}), 400
        item = quotation_service.add_quotation_item(
            quotation_id,
            product_id,
            quantity=data.pop("quantity", 1),
            dimensions=data.pop("dimensions", None),
            **data,
        )
        return jsonify({"item": item.to_dict()}), 201
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add quotation item")
        return jsonify({"error": "Internal server error"}), 500


@quotations_bp.patch("/<int:quotation_id>/items/<int:item_id>")
@require_actor
@require_role(*COUNTER_ROLES)
def update_quotation_item_route(quotation_id: int, item_id: int):
    try:
        item = quotation_service.update_quotation_item(quotation_id, item_id, request.get_json() or {})
        return jsonify({"item": item.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update quotation item")
        return jsonify({"error": "Internal server error"}), 500


@quotations_bp.delete("/<int:quotation_id>/items/<int:item_id>")
@require_actor
@require_role(*COUNTER_ROLES)
def remove_quotation_item_route(quotation_id: int, item_id: int):
    try:
        quotation = quotation_service.remove_quotation_item(quotation_id, item_id)
        return jsonify({"quotation": quotation.to_dict(include_items=True)}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to remove quotation item")
        return jsonify({"error": "Internal server error"}), 500


@quotations_bp.post("/<int:quotation_id>/discount")
@require_actor
@require_role(*COUNTER_ROLES)
def quotation_discount_route(quotation_id: int):
    try:
        data = request.get_json() or {}
        quotation = quotation_service.apply_quotation_discount(
            quotation_id, g.current_user.id, amount=data.get("amount"), percent=data.get("percent")
        )
        return jsonify({"quotation": quotation.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to discount quotation")
        return jsonify({"error": "Internal server error"}), 500


@quotations_bp.post("/<int:quotation_id>/status")
@require_actor
@require_role(*COUNTER_ROLES)
def quotation_status_route(quotation_id: int):
    try:
        data = request.get_json() or {}
        quotation = quotation_service.update_quotation_status(quotation_id, data.get("status"), g.current_user.id)
        return jsonify({"quotation": quotation.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update quotation status")
        return jsonify({"error": "Internal server error"}), 500


@quotations_bp.post("/<int:quotation_id>/convert")
@require_actor
@require_role(*COUNTER_ROLES)
def convert_quotation_route(quotation_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = quotation_service.convert_quotation(
            quotation_id,
            g.current_user.id,
            reprice=data.get("reprice", True),
            payment_terms=data.get("payment_terms"),
        )
        return jsonify({"order": order.to_dict(include_items=True)}), 201
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to convert quotation")
        return jsonify({"error": "Internal server error"}), 500
