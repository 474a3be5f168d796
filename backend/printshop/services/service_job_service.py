# Overview: Service Job State Machine; one production job per order item, with QA rework loop.

"""
Service Job State Machine

    PENDING -> ACCEPTED -> (ASSIGNED ->) IN_PROGRESS -> QA_REVIEW -> COMPLETED
    PENDING -> CANCELLED, QA_REVIEW -> REJECTED, QA_REVIEW -> IN_PROGRESS (rework)

- A job never returns to PENDING once accepted.
- started_at is stamped on the first entry to IN_PROGRESS only.
- QA_REVIEW -> IN_PROGRESS is a rework: rework_count += 1, reason required.
- PENDING -> CANCELLED and QA_REVIEW -> REJECTED are terminal and need a reason.
- Every transition appends one ServiceStatusHistory row.

When a job settles (COMPLETED/CANCELLED) the parent order is re-checked and
moved IN_PRODUCTION -> READY once all of its jobs are settled.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import case

from ..errors import InvalidTransition, NotFoundError, ValidationError
from ..extensions import db
from ..models import Order, ServiceJob, ServiceJobComment, ServiceStatusHistory
from ..models.orders import ORDER_IN_PRODUCTION, ORDER_READY
from ..models.production import (
    ACTIVE_JOB_STATUSES,
    JOB_ACCEPTED,
    JOB_ASSIGNED,
    JOB_CANCELLED,
    JOB_COMPLETED,
    JOB_IN_PROGRESS,
    JOB_PENDING,
    JOB_PRIORITIES,
    JOB_QA_REVIEW,
    JOB_REJECTED,
    JOB_STATUSES,
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_NORMAL,
    PRIORITY_URGENT,
)
from ..validation import optional_text, require_choice, require_reason
from .concurrency import lock_for_update, run_with_retry
from .sequence_service import KIND_JOB, next_document_number
from .users_service import get_user
from printshop.time_utils import days_from, utcnow


logger = logging.getLogger(__name__)

JOB_TRANSITIONS = {
    JOB_PENDING: (JOB_ACCEPTED, JOB_CANCELLED),
    JOB_ACCEPTED: (JOB_ASSIGNED, JOB_IN_PROGRESS),
    JOB_ASSIGNED: (JOB_IN_PROGRESS,),
    JOB_IN_PROGRESS: (JOB_QA_REVIEW,),
    JOB_QA_REVIEW: (JOB_COMPLETED, JOB_IN_PROGRESS, JOB_REJECTED),
    JOB_COMPLETED: (),
    JOB_REJECTED: (),
    JOB_CANCELLED: (),
}

# Edges that must carry a reason
REASON_REQUIRED = {
    (JOB_QA_REVIEW, JOB_IN_PROGRESS),
    (JOB_QA_REVIEW, JOB_REJECTED),
    (JOB_PENDING, JOB_CANCELLED),
}

SETTLED_JOB_STATUSES = (JOB_COMPLETED, JOB_CANCELLED)

PRIORITY_RANK = {
    PRIORITY_URGENT: 0,
    PRIORITY_HIGH: 1,
    PRIORITY_NORMAL: 2,
    PRIORITY_LOW: 3,
}


def _append_history(job: ServiceJob, from_status: str | None, to_status: str, actor_id: int, reason: str | None = None) -> ServiceStatusHistory:
    row = ServiceStatusHistory(
        service_job_id=job.id,
        from_status=from_status,
        to_status=to_status,
        changed_by_user_id=actor_id,
        reason=reason,
    )
    db.session.add(row)
    return row


def _get_job_locked(job_id: int) -> ServiceJob:
    job = lock_for_update(db.session.query(ServiceJob).filter_by(id=job_id)).first()
    if job is None:
        raise NotFoundError("Service job not found", details={"job_id": job_id})
    return job


# =============================================================================
# ORDER-SIDE HOOKS (run inside the order's unit of work)
# =============================================================================

def spawn_jobs_locked(order: Order, actor_id: int) -> list[ServiceJob]:
    """Create one PENDING job per production item that does not have one yet."""
    due_date = days_from(utcnow(), current_app.config.get("DEFAULT_JOB_DUE_DAYS", 3))
    jobs = []
    for item in order.active_items:
        if not item.requires_production or item.service_job is not None:
            continue
        job = ServiceJob(
            job_number=next_document_number(KIND_JOB),
            order=order,
            order_item=item,
            status=JOB_PENDING,
            priority=PRIORITY_NORMAL,
            due_date=due_date,
            rework_count=0,
        )
        db.session.add(job)
        db.session.flush()
        _append_history(job, None, JOB_PENDING, actor_id, f"Created for order {order.order_number}")
        jobs.append(job)

    logger.info("Spawned %s service job(s) for order %s", len(jobs), order.order_number)
    return jobs


def cancel_pending_jobs_locked(order: Order, actor_id: int, reason: str) -> list[ServiceJob]:
    cancelled = []
    for job in order.service_jobs:
        if job.status != JOB_PENDING:
            continue
        job.status = JOB_CANCELLED
        _append_history(job, JOB_PENDING, JOB_CANCELLED, actor_id, reason)
        cancelled.append(job)
    return cancelled


def active_jobs(order: Order) -> list[ServiceJob]:
    return [job for job in order.service_jobs if job.status in ACTIVE_JOB_STATUSES]


def stamp_delivered_locked(order: Order, at_time=None) -> None:
    at_time = at_time or utcnow()
    for job in order.service_jobs:
        if job.status == JOB_COMPLETED and job.delivered_at is None:
            job.delivered_at = at_time


def jobs_settled(order: Order) -> tuple[bool, dict]:
    """
    True when every job is COMPLETED or CANCELLED and at least one is
    COMPLETED. REJECTED jobs keep the order blocked.
    """
    statuses = {job.job_number: job.status for job in order.service_jobs}
    unsettled = {number: status for number, status in statuses.items() if status not in SETTLED_JOB_STATUSES}
    completed = [number for number, status in statuses.items() if status == JOB_COMPLETED]
    settled = bool(statuses) and not unsettled and bool(completed)
    return settled, {"jobs": statuses, "unsettled_jobs": unsettled}


def _maybe_advance_order(job: ServiceJob, actor_id: int) -> None:
    from .order_service import transition_order_locked

    order = lock_for_update(db.session.query(Order).filter_by(id=job.order_id)).first()
    if order is None or order.status != ORDER_IN_PRODUCTION:
        return
    settled, _ = jobs_settled(order)
    if settled:
        transition_order_locked(
            order,
            ORDER_READY,
            actor_id,
            action="production_complete",
            notes=f"All service jobs settled (last: {job.job_number})",
        )
        logger.info("Order %s advanced to READY after job %s", order.order_number, job.job_number)


# =============================================================================
# TRANSITIONS
# =============================================================================

def _transition_job_locked(
    job: ServiceJob,
    target_status: str,
    actor_id: int,
    reason: str | None = None,
    assigned_to: int | None = None,
) -> ServiceJob:
    require_choice(target_status, JOB_STATUSES, "status")
    from_status = job.status
    allowed = JOB_TRANSITIONS.get(from_status, ())

    if target_status not in allowed:
        raise InvalidTransition(
            f"Cannot move job {job.job_number} from {from_status} to {target_status}",
            details={
                "job_id": job.id,
                "from_status": from_status,
                "to_status": target_status,
                "allowed": list(allowed),
            },
        )

    if (from_status, target_status) in REASON_REQUIRED:
        reason = require_reason(reason, "reason")
    else:
        reason = optional_text(reason)

    if target_status == JOB_ASSIGNED:
        if assigned_to is None:
            raise ValidationError("assigned_to is required to assign a job", details={"job_id": job.id})
        job.assigned_to_user_id = get_user(assigned_to).id
    elif assigned_to is not None:
        job.assigned_to_user_id = get_user(assigned_to).id

    now = utcnow()
    if target_status == JOB_IN_PROGRESS:
        if job.started_at is None:
            job.started_at = now
        if from_status == JOB_QA_REVIEW:
            job.rework_count = (job.rework_count or 0) + 1
            threshold = current_app.config.get("REWORK_ALERT_THRESHOLD", 2)
            if job.rework_count == threshold + 1:
                logger.warning(
                    "Rework alert: job %s has been reworked %s times (threshold %s)",
                    job.job_number,
                    job.rework_count,
                    threshold,
                )
    elif target_status == JOB_COMPLETED:
        job.completed_at = now

    job.status = target_status
    _append_history(job, from_status, target_status, actor_id, reason)
    db.session.flush()

    if target_status in SETTLED_JOB_STATUSES:
        _maybe_advance_order(job, actor_id)
    return job


def update_service_job_status(
    job_id: int,
    target_status: str,
    actor_id: int,
    reason: str | None = None,
    assigned_to: int | None = None,
) -> ServiceJob:
    def _op():
        get_user(actor_id)
        job = _get_job_locked(job_id)
        _transition_job_locked(job, target_status, actor_id, reason=reason, assigned_to=assigned_to)
        db.session.commit()
        return job

    return run_with_retry(_op)


def accept_job(job_id: int, actor_id: int, assign_to_self: bool = False) -> ServiceJob:
    """PENDING -> ACCEPTED, optionally taking the job."""
    def _op():
        get_user(actor_id)
        job = _get_job_locked(job_id)
        _transition_job_locked(
            job,
            JOB_ACCEPTED,
            actor_id,
            assigned_to=actor_id if assign_to_self else None,
        )
        db.session.commit()
        return job

    return run_with_retry(_op)


def assign_service_job(job_id: int, user_id: int, actor_id: int) -> ServiceJob:
    """
    Assign an ACCEPTED job (-> ASSIGNED), or reassign a job already being
    worked on. Reassignment posts a comment and keeps the status.
    """
    def _op():
        actor = get_user(actor_id)
        assignee = get_user(user_id)
        job = _get_job_locked(job_id)

        if job.status == JOB_ACCEPTED:
            _transition_job_locked(job, JOB_ASSIGNED, actor.id, assigned_to=assignee.id)
        elif job.status in (JOB_ASSIGNED, JOB_IN_PROGRESS, JOB_QA_REVIEW):
            previous = job.assigned_to_user_id
            job.assigned_to_user_id = assignee.id
            db.session.add(ServiceJobComment(
                service_job_id=job.id,
                user_id=actor.id,
                body=f"Reassigned from user {previous} to user {assignee.id}",
            ))
        else:
            raise InvalidTransition(
                f"Cannot assign job {job.job_number} in status {job.status}",
                details={"job_id": job.id, "from_status": job.status, "to_status": JOB_ASSIGNED},
            )

        db.session.commit()
        return job

    return run_with_retry(_op)


# =============================================================================
# COMMENTS, PRIORITY, QUEUE
# =============================================================================

def add_comment(job_id: int, user_id: int, body: str) -> ServiceJobComment:
    text = require_reason(body, "body")

    def _op():
        get_user(user_id)
        job = db.session.get(ServiceJob, job_id)
        if job is None:
            raise NotFoundError("Service job not found", details={"job_id": job_id})
        comment = ServiceJobComment(service_job_id=job.id, user_id=user_id, body=text)
        db.session.add(comment)
        db.session.commit()
        return comment

    return run_with_retry(_op)


def list_comments(job_id: int) -> list[ServiceJobComment]:
    return get_job(job_id).comments


def set_priority(job_id: int, priority: str, actor_id: int) -> ServiceJob:
    require_choice(priority, JOB_PRIORITIES, "priority")

    def _op():
        get_user(actor_id)
        job = _get_job_locked(job_id)
        if job.status in (JOB_COMPLETED, JOB_REJECTED, JOB_CANCELLED):
            raise InvalidTransition(
                f"Cannot change priority of a {job.status} job",
                details={"job_id": job.id, "status": job.status},
            )
        job.priority = priority
        db.session.commit()
        return job

    return run_with_retry(_op)


def get_job(job_id: int) -> ServiceJob:
    job = db.session.get(ServiceJob, job_id)
    if job is None:
        raise NotFoundError("Service job not found", details={"job_id": job_id})
    return job


def get_job_history(job_id: int) -> list[ServiceStatusHistory]:
    return get_job(job_id).status_history


def get_queue(status: str | None = None, assigned_to: int | None = None) -> list[ServiceJob]:
    """Open jobs, most urgent first, then by due date."""
    query = db.session.query(ServiceJob)
    if status is not None:
        query = query.filter(ServiceJob.status == require_choice(status, JOB_STATUSES, "status"))
    else:
        query = query.filter(ServiceJob.status.notin_((JOB_COMPLETED, JOB_REJECTED, JOB_CANCELLED)))
    if assigned_to is not None:
        query = query.filter(ServiceJob.assigned_to_user_id == assigned_to)

    rank = case(PRIORITY_RANK, value=ServiceJob.priority, else_=len(PRIORITY_RANK))
    return (
        query.order_by(
            rank.asc(),
            ServiceJob.due_date.is_(None).asc(),
            ServiceJob.due_date.asc(),
            ServiceJob.id.asc(),
        )
        .all()
    )
