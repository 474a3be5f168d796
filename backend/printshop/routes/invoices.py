# Overview: Flask API routes for invoices.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_role
from ..errors import PrintshopError
from ..models.auth import ROLE_ADMIN, ROLE_COUNTER, ROLE_MANAGER
from ..services import invoice_service


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")

BILLING_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_COUNTER)


@invoices_bp.post("")
@require_actor
@require_role(*BILLING_ROLES)
def create_invoice_route():
    """Body: {"order_id", "status"? ("draft"|"issued"), "credit_period_days"?, "notes"?}"""
    try:
        data = request.get_json() or {}
        if data.get("order_id") is None:
            return jsonify({"error": "order_id required"}), 400

        invoice = invoice_service.create_invoice_from_order(
            data["order_id"],
            g.current_user.id,
            status=data.get("status", "draft"),
            credit_period_days=data.get("credit_period_days"),
            notes=data.get("notes"),
        )
        return jsonify({"invoice": invoice.to_dict()}), 201
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("")
@require_actor
def list_invoices_route():
    try:
        invoices = invoice_service.list_invoices(
            customer_id=request.args.get("customer_id", type=int),
            status=request.args.get("status"),
        )
        return jsonify({"items": [i.to_dict() for i in invoices], "count": len(invoices)}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status


@invoices_bp.get("/<int:invoice_id>")
@require_actor
def get_invoice_route(invoice_id: int):
    try:
        return jsonify({"invoice": invoice_service.get_invoice(invoice_id).to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status


@invoices_bp.patch("/<int:invoice_id>")
@require_actor
@require_role(*BILLING_ROLES)
def update_invoice_route(invoice_id: int):
    try:
        data = request.get_json() or {}
        invoice = invoice_service.update_draft_invoice(
            invoice_id,
            item_overrides=data.get("item_overrides"),
            discount=data.get("discount"),
            notes=data.get("notes"),
        )
        return jsonify({"invoice": invoice.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/issue")
@require_actor
@require_role(*BILLING_ROLES)
def issue_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.issue_invoice(invoice_id, g.current_user.id)
        return jsonify({"invoice": invoice.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to issue invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/dispute")
@require_actor
@require_role(*BILLING_ROLES)
def dispute_invoice_route(invoice_id: int):
    try:
        data = request.get_json() or {}
        invoice = invoice_service.dispute_invoice(invoice_id, g.current_user.id, data.get("reason"))
        return jsonify({"invoice": invoice.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to dispute invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/mark-overdue")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def mark_overdue_route():
    try:
        invoices = invoice_service.mark_overdue_invoices()
        return jsonify({"items": [i.to_dict() for i in invoices], "count": len(invoices)}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to mark overdue invoices")
        return jsonify({"error": "Internal server error"}), 500
