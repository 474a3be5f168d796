# Overview: Flask API routes for payments and refunds.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_role
from ..errors import PrintshopError
from ..models.auth import ROLE_ADMIN, ROLE_COUNTER, ROLE_MANAGER
from ..services import payment_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER, ROLE_COUNTER)
def record_payment_route():
    """
    Record a payment.

    Body: {"order_id"? , "invoice_id"?, "amount", "payment_method", "reference_number"?}
    """
    try:
        data = request.get_json() or {}
        if data.get("amount") is None or not data.get("payment_method"):
            return jsonify({"error": "amount and payment_method required"}), 400

        payment = payment_service.record_payment(
            actor_id=g.current_user.id,
            amount=data["amount"],
            payment_method=data["payment_method"],
            order_id=data.get("order_id"),
            invoice_id=data.get("invoice_id"),
            reference_number=data.get("reference_number"),
        )
        body = {"payment": payment.to_dict()}
        if payment.order is not None:
            body["order"] = payment.order.to_dict()
        if payment.invoice is not None:
            body["invoice"] = payment.invoice.to_dict()
        return jsonify(body), 201
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/<int:payment_id>/refund")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def refund_payment_route(payment_id: int):
    try:
        data = request.get_json() or {}
        refund = payment_service.refund_payment(
            payment_id,
            g.current_user.id,
            reason=data.get("reason"),
            amount=data.get("amount"),
        )
        return jsonify({"payment": refund.to_dict()}), 201
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to refund payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.get("")
@require_actor
def list_payments_route():
    payments = payment_service.list_payments(
        order_id=request.args.get("order_id", type=int),
        invoice_id=request.args.get("invoice_id", type=int),
    )
    return jsonify({"items": [p.to_dict() for p in payments]}), 200


@payments_bp.get("/<int:payment_id>")
@require_actor
def get_payment_route(payment_id: int):
    try:
        payment = payment_service.get_payment(payment_id)
        return jsonify({"payment": payment.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
