# Overview: Flask API routes for approval requests (raise, list, resolve).

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import PrintshopError
from ..models.approvals import APPROVAL_CANCELLATION, APPROVAL_CREDIT_OVERRIDE, APPROVAL_DISCOUNT
from ..services import approval_service


approvals_bp = Blueprint("approvals", __name__, url_prefix="/api/approvals")


@approvals_bp.post("")
@require_actor
def create_request_route():
    """
    Raise an approval request for an order.

    Body: {"type", "order_id", "reason", "amount"?, "percent"?}
    """
    try:
        data = request.get_json() or {}
        request_type = data.get("type")
        order_id = data.get("order_id")
        if order_id is None:
            return jsonify({"error": "order_id required"}), 400

        actor_id = g.current_user.id
        if request_type == APPROVAL_DISCOUNT:
            approval = approval_service.request_discount_approval(
                order_id, actor_id, amount=data.get("amount"), percent=data.get("percent"), reason=data.get("reason")
            )
        elif request_type == APPROVAL_CREDIT_OVERRIDE:
            approval = approval_service.request_credit_override(order_id, actor_id, reason=data.get("reason"))
        elif request_type == APPROVAL_CANCELLATION:
            approval = approval_service.request_cancellation_override(order_id, actor_id, reason=data.get("reason"))
        else:
            return jsonify({"error": f"Unknown approval type '{request_type}'"}), 400

        return jsonify({"approval_request": approval.to_dict()}), 201
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create approval request")
        return jsonify({"error": "Internal server error"}), 500


@approvals_bp.get("/pending")
@require_actor
def list_pending_route():
    try:
        requests = approval_service.list_pending_approvals(request.args.get("type"))
        return jsonify({"items": [r.to_dict() for r in requests], "count": len(requests)}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status


@approvals_bp.get("/<int:request_id>")
@require_actor
def get_request_route(request_id: int):
    try:
        return jsonify({"approval_request": approval_service.get_approval(request_id).to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status


@approvals_bp.post("/<int:request_id>/resolve")
@require_actor
def resolve_request_route(request_id: int):
    """Body: {"decision": "approve"|"reject", "notes"?}. Authority is checked by the service."""
    try:
        data = request.get_json() or {}
        approval = approval_service.resolve_approval(
            request_id,
            data.get("decision"),
            g.current_user.id,
            notes=data.get("notes"),
        )
        return jsonify({"approval_request": approval.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to resolve approval request")
        return jsonify({"error": "Internal server error"}), 500
