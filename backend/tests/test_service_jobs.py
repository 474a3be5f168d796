"""
Service job state machine tests.

Verifies:
- Allowed edges only; accepted jobs never return to PENDING
- Reasons on rework, rejection and cancellation
- Rework loop counts and keeps the first started_at
- Assignment, reassignment, comments, priority and queue ordering
"""

import pytest

from printshop.errors import InvalidTransition, ValidationError
from printshop.models import ServiceJob, ServiceStatusHistory
from printshop.services import order_service, payment_service, service_job_service


@pytest.fixture
def production_order(make_order, business_cards, banner, counter):
    """Paid order in production with one job per item (cards, banner)."""
    order = make_order([
        {"product_id": business_cards.id, "quantity": 150},
        {"product_id": banner.id, "dimensions": {"width": 2, "height": 3, "unit": "ft"}},
    ])
    order_service.update_order_status(order.id, "PENDING_PAYMENT", counter.id)
    payment_service.record_payment(counter.id, "140.25", "card", order_id=order.id)
    return order_service.update_order_status(order.id, "IN_PRODUCTION", counter.id)


@pytest.fixture
def job(production_order):
    return production_order.service_jobs[0]


def _to_qa(job_id, operator):
    service_job_service.accept_job(job_id, operator.id, assign_to_self=True)
    service_job_service.update_service_job_status(job_id, "IN_PROGRESS", operator.id)
    return service_job_service.update_service_job_status(job_id, "QA_REVIEW", operator.id)


# =============================================================================
# SPAWNING
# =============================================================================


class TestSpawning:

    def test_one_job_per_production_item(self, production_order):
        jobs = production_order.service_jobs
        assert len(jobs) == 2
        assert {job.order_item_id for job in jobs} == {item.id for item in production_order.active_items}
        assert all(job.due_date is not None for job in jobs)
        assert all(job.priority == "normal" for job in jobs)

    def test_creation_history_row(self, job):
        history = service_job_service.get_job_history(job.id)
        assert len(history) == 1
        assert history[0].from_status is None
        assert history[0].to_status == "PENDING"


# =============================================================================
# TRANSITIONS
# =============================================================================


class TestTransitions:

    def test_happy_path_history(self, job, operator, inspector):
        _to_qa(job.id, operator)
        job = service_job_service.update_service_job_status(job.id, "COMPLETED", inspector.id)

        assert job.status == "COMPLETED"
        assert job.started_at is not None
        assert job.completed_at is not None
        assert job.assigned_to_user_id == operator.id
        assert [row.to_status for row in job.status_history] == [
            "PENDING", "ACCEPTED", "IN_PROGRESS", "QA_REVIEW", "COMPLETED",
        ]

    def test_accepted_never_returns_to_pending(self, job, operator, db_session):
        service_job_service.accept_job(job.id, operator.id)
        with pytest.raises(InvalidTransition) as exc:
            service_job_service.update_service_job_status(job.id, "PENDING", operator.id)
        assert exc.value.details["from_status"] == "ACCEPTED"
        assert db_session.query(ServiceStatusHistory).filter_by(service_job_id=job.id).count() == 2

    def test_cannot_skip_qa(self, job, operator):
        service_job_service.accept_job(job.id, operator.id)
        service_job_service.update_service_job_status(job.id, "IN_PROGRESS", operator.id)
        with pytest.raises(InvalidTransition):
            service_job_service.update_service_job_status(job.id, "COMPLETED", operator.id)

    def test_terminal_states(self, job, operator, inspector):
        _to_qa(job.id, operator)
        service_job_service.update_service_job_status(job.id, "COMPLETED", inspector.id)
        with pytest.raises(InvalidTransition):
            service_job_service.update_service_job_status(job.id, "IN_PROGRESS", inspector.id, reason="Again")

    def test_cancel_pending_needs_reason(self, job, counter):
        with pytest.raises(ValidationError):
            service_job_service.update_service_job_status(job.id, "CANCELLED", counter.id)
        job = service_job_service.update_service_job_status(job.id, "CANCELLED", counter.id, reason="Artwork withdrawn")
        assert job.status == "CANCELLED"
        assert job.status_history[-1].reason == "Artwork withdrawn"

    def test_reject_needs_reason(self, job, operator, inspector):
        _to_qa(job.id, operator)
        with pytest.raises(ValidationError):
            service_job_service.update_service_job_status(job.id, "REJECTED", inspector.id)
        job = service_job_service.update_service_job_status(job.id, "REJECTED", inspector.id, reason="Misprint")
        assert job.status == "REJECTED"

    def test_assign_requires_assignee(self, job, operator, manager):
        service_job_service.accept_job(job.id, operator.id)
        with pytest.raises(ValidationError):
            service_job_service.update_service_job_status(job.id, "ASSIGNED", manager.id)

    def test_unknown_job(self, operator, db_session):
        from printshop.errors import NotFoundError

        with pytest.raises(NotFoundError):
            service_job_service.accept_job(9999, operator.id)


# =============================================================================
# REWORK LOOP
# =============================================================================


class TestRework:

    def test_two_reworks(self, job, operator, inspector, db_session):
        _to_qa(job.id, operator)
        first_start = service_job_service.get_job(job.id).started_at

        service_job_service.update_service_job_status(job.id, "IN_PROGRESS", inspector.id, reason="Colour off")
        service_job_service.update_service_job_status(job.id, "QA_REVIEW", operator.id)
        job = service_job_service.update_service_job_status(job.id, "IN_PROGRESS", inspector.id, reason="Trim uneven")

        assert job.status == "IN_PROGRESS"
        assert job.rework_count == 2
        assert job.started_at == first_start

        rework_rows = (
            db_session.query(ServiceStatusHistory)
            .filter_by(service_job_id=job.id, from_status="QA_REVIEW", to_status="IN_PROGRESS")
            .all()
        )
        assert [row.reason for row in rework_rows] == ["Colour off", "Trim uneven"]

    def test_rework_needs_reason(self, job, operator, inspector):
        _to_qa(job.id, operator)
        with pytest.raises(ValidationError):
            service_job_service.update_service_job_status(job.id, "IN_PROGRESS", inspector.id, reason="   ")
        assert service_job_service.get_job(job.id).rework_count == 0

    def test_rework_alert_logged(self, app, job, operator, inspector, caplog):
        app.config["REWORK_ALERT_THRESHOLD"] = 1
        try:
            _to_qa(job.id, operator)
            service_job_service.update_service_job_status(job.id, "IN_PROGRESS", inspector.id, reason="One")
            service_job_service.update_service_job_status(job.id, "QA_REVIEW", operator.id)
            with caplog.at_level("WARNING", logger="printshop.services.service_job_service"):
                service_job_service.update_service_job_status(job.id, "IN_PROGRESS", inspector.id, reason="Two")
        finally:
            app.config["REWORK_ALERT_THRESHOLD"] = 2
        assert "Rework alert" in caplog.text


# =============================================================================
# ASSIGNMENT, COMMENTS, PRIORITY, QUEUE
# =============================================================================


class TestAssignmentAndQueue:

    def test_assign_then_reassign(self, job, operator, manager, inspector):
        service_job_service.accept_job(job.id, manager.id)
        job = service_job_service.assign_service_job(job.id, operator.id, manager.id)
        assert job.status == "ASSIGNED"
        assert job.assigned_to_user_id == operator.id

        service_job_service.update_service_job_status(job.id, "IN_PROGRESS", operator.id)
        job = service_job_service.assign_service_job(job.id, inspector.id, manager.id)
        assert job.status == "IN_PROGRESS"
        assert job.assigned_to_user_id == inspector.id
        assert "Reassigned" in service_job_service.list_comments(job.id)[-1].body

    def test_cannot_assign_pending_job(self, job, operator, manager):
        with pytest.raises(InvalidTransition):
            service_job_service.assign_service_job(job.id, operator.id, manager.id)

    def test_comments(self, job, operator):
        service_job_service.add_comment(job.id, operator.id, "Waiting on ink")
        with pytest.raises(ValidationError):
            service_job_service.add_comment(job.id, operator.id, "")
        assert [c.body for c in service_job_service.list_comments(job.id)] == ["Waiting on ink"]

    def test_priority_orders_queue(self, production_order, manager):
        cards_job, banner_job = production_order.service_jobs
        service_job_service.set_priority(banner_job.id, "urgent", manager.id)

        queue = service_job_service.get_queue()
        assert [j.id for j in queue] == [banner_job.id, cards_job.id]

        with pytest.raises(ValidationError):
            service_job_service.set_priority(cards_job.id, "asap", manager.id)

    def test_queue_filters(self, production_order, operator, counter):
        cards_job, banner_job = production_order.service_jobs
        service_job_service.accept_job(cards_job.id, operator.id, assign_to_self=True)
        service_job_service.update_service_job_status(banner_job.id, "CANCELLED", counter.id, reason="Withdrawn")

        assert [j.id for j in service_job_service.get_queue()] == [cards_job.id]
        assert [j.id for j in service_job_service.get_queue(assigned_to=operator.id)] == [cards_job.id]
        assert [j.id for j in service_job_service.get_queue(status="CANCELLED")] == [banner_job.id]

    def test_priority_frozen_when_terminal(self, job, counter, manager):
        service_job_service.update_service_job_status(job.id, "CANCELLED", counter.id, reason="Withdrawn")
        with pytest.raises(InvalidTransition):
            service_job_service.set_priority(job.id, "high", manager.id)
