# Overview: Flask API routes for the production queue and service job transitions.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor, require_role
from ..errors import PrintshopError
from ..models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_PRODUCTION, ROLE_QA
from ..services import service_job_service


service_jobs_bp = Blueprint("service_jobs", __name__, url_prefix="/api/service-jobs")

PRODUCTION_ROLES = (ROLE_ADMIN, ROLE_MANAGER, ROLE_PRODUCTION, ROLE_QA)


@service_jobs_bp.get("")
@require_actor
def queue_route():
    """Open jobs, most urgent first. Filters: ?status=, ?assigned_to="""
    try:
        jobs = service_job_service.get_queue(
            status=request.args.get("status"),
            assigned_to=request.args.get("assigned_to", type=int),
        )
        return jsonify({"items": [j.to_dict() for j in jobs], "count": len(jobs)}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status


@service_jobs_bp.get("/<int:job_id>")
@require_actor
def get_job_route(job_id: int):
    try:
        job = service_job_service.get_job(job_id)
        return jsonify({
            "job": job.to_dict(),
            "history": [row.to_dict() for row in job.status_history],
            "comments": [c.to_dict() for c in job.comments],
        }), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status


@service_jobs_bp.post("/<int:job_id>/accept")
@require_actor
@require_role(*PRODUCTION_ROLES)
def accept_job_route(job_id: int):
    try:
        data = request.get_json(silent=True) or {}
        job = service_job_service.accept_job(job_id, g.current_user.id, assign_to_self=bool(data.get("assign_to_self")))
        return jsonify({"job": job.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to accept service job")
        return jsonify({"error": "Internal server error"}), 500


@service_jobs_bp.post("/<int:job_id>/assign")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER, ROLE_PRODUCTION)
def assign_job_route(job_id: int):
    try:
        data = request.get_json() or {}
        if data.get("user_id") is None:
            return jsonify({"error": "user_id required"}), 400
        job = service_job_service.assign_service_job(job_id, data["user_id"], g.current_user.id)
        return jsonify({"job": job.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to assign service job")
        return jsonify({"error": "Internal server error"}), 500


@service_jobs_bp.post("/<int:job_id>/status")
@require_actor
@require_role(*PRODUCTION_ROLES)
def update_job_status_route(job_id: int):
    try:
        data = request.get_json() or {}
        if not data.get("status"):
            return jsonify({"error": "status required"}), 400
        job = service_job_service.update_service_job_status(
            job_id,
            data["status"],
            g.current_user.id,
            reason=data.get("reason"),
            assigned_to=data.get("assigned_to"),
        )
        return jsonify({"job": job.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update service job status")
        return jsonify({"error": "Internal server error"}), 500


@service_jobs_bp.post("/<int:job_id>/priority")
@require_actor
@require_role(ROLE_ADMIN, ROLE_MANAGER, ROLE_PRODUCTION)
def set_priority_route(job_id: int):
    try:
        data = request.get_json() or {}
        job = service_job_service.set_priority(job_id, data.get("priority"), g.current_user.id)
        return jsonify({"job": job.to_dict()}), 200
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to set service job priority")
        return jsonify({"error": "Internal server error"}), 500


@service_jobs_bp.post("/<int:job_id>/comments")
@require_actor
def add_comment_route(job_id: int):
    try:
        data = request.get_json() or {}
        comment = service_job_service.add_comment(job_id, g.current_user.id, data.get("body"))
        return jsonify({"comment": comment.to_dict()}), 201
    except PrintshopError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to add service job comment")
        return jsonify({"error": "Internal server error"}), 500
