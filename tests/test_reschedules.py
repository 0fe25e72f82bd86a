"""Reschedule negotiation: priority window, expiry and reopening."""

from datetime import timedelta

import pytest

from trialmatch import models
from trialmatch.enums import RescheduleStatus, SessionStatus
from trialmatch.exceptions import InvalidTransition, ValidationError
from trialmatch.shared.clock import FrozenClock
from trialmatch.worker import run_reschedule_sweep, sweep_minutes

from .conftest import NOW

NEW_TIME = NOW + timedelta(days=5)


@pytest.fixture
def parent_request(machine, confirmed_session):
    """Parent asks to move the confirmed tutor's lesson; that tutor gets priority"""
    session, tutor = confirmed_session
    request = machine.create_reschedule(session.id, NEW_TIME, "sports carnival", "parent-1", "parent")
    return session, tutor, request


class TestCreate:
    def test_assigned_tutor_gets_priority_window(self, parent_request):
        session, tutor, request = parent_request
        assert request.status == RescheduleStatus.PENDING.value
        assert request.priority_tutor_id == tutor.id
        assert request.priority_response_deadline == NOW + timedelta(hours=24)
        assert request.original_datetime == NOW + timedelta(days=3)
        assert request.requested_datetime == NEW_TIME

    def test_tutor_requesting_their_own_move_has_no_priority_window(self, machine, confirmed_session):
        session, tutor = confirmed_session
        request = machine.create_reschedule(session.id, NEW_TIME, "exam week", str(tutor.id), "tutor")
        assert request.priority_tutor_id is None
        assert request.priority_response_deadline is None

    def test_priority_goes_only_to_the_assigned_tutor(self, db, machine, confirmed_session, make_tutor):
        session, tutor = confirmed_session
        outsider = make_tutor(name="Not Assigned")
        with pytest.raises(ValidationError):
            machine.create_reschedule(
                session.id, NEW_TIME, None, "parent-1", "parent", priority_tutor_id=outsider.id
            )
        assert db.query(models.RescheduleRequest).count() == 0

        request = machine.create_reschedule(session.id, NEW_TIME, None, "parent-1", "parent", priority_tutor_id=tutor.id)
        assert request.priority_tutor_id == tutor.id

    def test_unknown_priority_tutor(self, db, machine, confirmed_session, make_session):
        session, _ = confirmed_session
        with pytest.raises(ValidationError):
            machine.create_reschedule(session.id, NEW_TIME, None, "parent-1", "parent", priority_tutor_id=987654)

        unassigned = make_session()
        with pytest.raises(ValidationError):
            machine.create_reschedule(unassigned.id, NEW_TIME, None, "parent-1", "parent", priority_tutor_id=987654)
        assert db.query(models.RescheduleRequest).count() == 0

    def test_one_pending_request_per_session(self, machine, parent_request):
        session, _, _ = parent_request
        with pytest.raises(InvalidTransition):
            machine.create_reschedule(session.id, NEW_TIME + timedelta(days=1), None, "parent-1", "parent")

    def test_new_time_must_be_in_future(self, machine, confirmed_session):
        session, _ = confirmed_session
        with pytest.raises(ValidationError):
            machine.create_reschedule(session.id, NOW - timedelta(hours=1), None, "parent-1", "parent")

    def test_bad_requester_type(self, machine, confirmed_session):
        session, _ = confirmed_session
        with pytest.raises(ValidationError):
            machine.create_reschedule(session.id, NEW_TIME, None, "x", "robot")

    def test_not_after_feedback(self, machine, confirmed_session):
        session, tutor = confirmed_session
        session.status = SessionStatus.TRIAL_1_COMPLETE
        machine.db.commit()
        with pytest.raises(InvalidTransition):
            machine.create_reschedule(session.id, NEW_TIME, None, "parent-1", "parent")


class TestPriorityResponse:
    def test_accept_moves_the_lesson(self, machine, parent_request):
        session, tutor, request = parent_request
        request, candidates = machine.respond_to_reschedule(request.id, tutor.id, "accepted")

        assert request.status == RescheduleStatus.APPROVED.value
        assert request.resolved_by == f"tutor:{tutor.id}"
        assert candidates == []
        session = machine.get_session(session.id)
        assert session.first_lesson.scheduled_at == NEW_TIME
        assert session.status == SessionStatus.CONFIRMED.value
        assert session.assigned_tutor_id == tutor.id

    def test_decline_reopens_with_fresh_candidates(self, db, machine, parent_request, make_tutor):
        session, tutor, request = parent_request
        other = make_tutor()

        request, candidates = machine.respond_to_reschedule(request.id, tutor.id, "declined")

        assert request.status == RescheduleStatus.REJECTED.value
        assert [c.tutor_id for c in candidates] == [other.id]
        session = machine.get_session(session.id)
        assert session.status == SessionStatus.PENDING.value
        assert session.assigned_tutor_id is None
        assert session.first_lesson.scheduled_at == NEW_TIME
        attempt = db.query(models.OutreachAttempt).filter_by(tutor_id=tutor.id).one()
        assert attempt.status == "withdrawn"

    def test_only_priority_tutor_may_answer(self, machine, parent_request, make_tutor):
        _, _, request = parent_request
        intruder = make_tutor()
        with pytest.raises(InvalidTransition):
            machine.respond_to_reschedule(request.id, intruder.id, "accepted")

    def test_answer_exactly_at_deadline_still_counts(self, machine, clock, parent_request):
        _, tutor, request = parent_request
        clock.advance(hours=24)
        request, _ = machine.respond_to_reschedule(request.id, tutor.id, "accepted")
        assert request.status == RescheduleStatus.APPROVED.value

    def test_late_answer_is_rejected_and_session_reopened(self, machine, clock, parent_request, make_tutor):
        """Priority tutor answers an hour after the window closed."""
        session, tutor, request = parent_request
        other = make_tutor()
        clock.advance(hours=25)

        with pytest.raises(InvalidTransition) as exc_info:
            machine.respond_to_reschedule(request.id, tutor.id, "accepted")
        assert "expired" in exc_info.value.detail

        request = machine.reschedules.get_request(request.id)
        assert request.status == RescheduleStatus.EXPIRED.value
        assert request.resolved_by == "system"

        session = machine.get_session(session.id)
        assert session.status == SessionStatus.PENDING.value
        assert session.assigned_tutor_id is None
        matched = {c.tutor_id for c in machine.request_match(session.id)}
        assert other.id in matched

    def test_answer_after_resolution_is_rejected(self, machine, parent_request):
        _, tutor, request = parent_request
        machine.respond_to_reschedule(request.id, tutor.id, "accepted")
        with pytest.raises(InvalidTransition):
            machine.respond_to_reschedule(request.id, tutor.id, "declined")

    def test_invalid_response(self, machine, parent_request):
        _, tutor, request = parent_request
        with pytest.raises(ValidationError):
            machine.respond_to_reschedule(request.id, tutor.id, "perhaps")


class TestExpirySweep:
    def test_sweep_expires_only_lapsed_windows(self, machine, clock, parent_request, make_session, make_tutor):
        session, _, request = parent_request

        other_tutor = make_tutor()
        other_session = make_session()
        machine.assign_tutor(other_session.id, other_tutor.id)
        clock.advance(hours=20)
        fresh = machine.create_reschedule(other_session.id, NEW_TIME, None, "parent-2", "parent")

        clock.advance(hours=5)
        summary = machine.expire_reschedule_windows()

        assert summary == {"expired": [request.id], "reopened_sessions": [session.id]}
        assert machine.reschedules.get_request(fresh.id).status == RescheduleStatus.PENDING.value
        assert machine.get_session(other_session.id).status == SessionStatus.CONFIRMED.value

    def test_sweep_is_idempotent(self, machine, clock, parent_request):
        clock.advance(hours=30)
        machine.expire_reschedule_windows()
        assert machine.expire_reschedule_windows() == {"expired": [], "reopened_sessions": []}

    def test_worker_entry_point(self, db, parent_request):
        session, _, request = parent_request
        summary = run_reschedule_sweep(db, clock=FrozenClock(NOW + timedelta(days=2)))
        assert summary == {"expired": [request.id], "reopened_sessions": [session.id]}

    def test_sweep_minutes(self):
        assert sweep_minutes(5) == set(range(0, 60, 5))
        assert sweep_minutes(0) == set(range(60))


class TestAdminResolve:
    def test_request_without_priority_tutor(self, machine, make_session):
        session = make_session()
        request = machine.create_reschedule(session.id, NEW_TIME, "clash", "admin-1", "admin")
        assert request.priority_tutor_id is None

        request = machine.resolve_reschedule(request.id, True, "admin-1")
        assert request.status == RescheduleStatus.APPROVED.value
        assert request.resolved_by == "admin:admin-1"
        assert machine.get_session(session.id).first_lesson.scheduled_at == NEW_TIME

    def test_cannot_resolve_during_priority_window(self, machine, parent_request):
        _, _, request = parent_request
        with pytest.raises(InvalidTransition):
            machine.resolve_reschedule(request.id, True, "admin-1")

    def test_listing_counts(self, machine, parent_request, make_session):
        _, tutor, request = parent_request
        machine.respond_to_reschedule(request.id, tutor.id, "accepted")
        session = make_session()
        machine.create_reschedule(session.id, NEW_TIME, None, "admin-1", "admin")

        result = machine.reschedules.list_with_counts()
        assert result["counts"] == {"pending": 1, "approved": 1, "rejected": 0, "expired": 0}
        assert len(result["requests"]) == 2
