# Overview: Flask API routes for price previews (no writes).

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_actor
from ..errors import PrintshopError
from ..services import pricing_service


pricing_bp = Blueprint("pricing", __name__, url_prefix="/api/pricing")


@pricing_bp.post("/calculate")
@require_actor
def calculate_price_route():
    """
    Preview the price of one line.

    Body: {"product_id", "quantity", "dimensions"?, "customer_id"?}
    """
    try:
        data = request.get_json() or {}
        if data.get("product_id") is None:
            return jsonify({"error": "product_id required"}), 400

        quote = pricing_service.calculate_price(
            product_id=data["product_id"],
            quantity=data.get("quantity", 1),
            dimensions=data.get("dimensions"),
            customer_id=data.get("customer_id"),
        )
        return jsonify({"price": quote.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to calculate price")
        return jsonify({"error": "Internal server error"}), 500


@pricing_bp.post("/batch")
@require_actor
def batch_calculate_route():
    try:
        data = request.get_json() or {}
        result = pricing_service.batch_calculate(data.get("items"), customer_id=data.get("customer_id"))
        return jsonify(result), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to batch calculate prices")
        return jsonify({"error": "Internal server error"}), 500
