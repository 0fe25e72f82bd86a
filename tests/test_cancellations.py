"""Tutor cancellation: penalty, re-pooling and admin overrides."""

from datetime import timedelta

import pytest

from trialmatch import models
from trialmatch.domain.cancellations.service import CancellationPenaltyEngine
from trialmatch.domain.sessions.service import SessionStateMachine
from trialmatch.enums import AttemptStatus, SessionStatus
from trialmatch.exceptions import InvalidTransition, NotFound, ValidationError
from trialmatch.shared.locks import session_locks, tutor_locks

from .conftest import NOW, FakeSentimentService


@pytest.fixture
def lesson_in_two_hours(machine, make_session, make_tutor):
    tutor = make_tutor(name="Cancelling Tutor")
    session = make_session(scheduled_at=NOW + timedelta(hours=2))
    machine.assign_tutor(session.id, tutor.id)
    return session, tutor


@pytest.fixture
def engine_for(db, clock):
    def _make(sentiment):
        return CancellationPenaltyEngine(db, sentiment, clock)

    return _make


class TestCancel:
    def test_genuine_emergency_costs_little(self, machine, sentiment, lesson_in_two_hours):
        session, tutor = lesson_in_two_hours
        sentiment.value = 0.9

        session, analysis, pool = machine.cancel(session.id, tutor.id, "Rushed to hospital with my son")

        assert analysis.notice_hours == pytest.approx(2.0)
        assert analysis.ai_sentiment_score == 0.9
        assert analysis.calculated_penalty == 0.71
        assert analysis.admin_override is False
        assert tutor.score_reliability == pytest.approx(5.0 - 0.71)
        assert sentiment.texts == ["Rushed to hospital with my son"]

    def test_weak_reason_costs_a_lot(self, machine, sentiment, lesson_in_two_hours):
        session, tutor = lesson_in_two_hours
        sentiment.value = 0.1

        _, analysis, _ = machine.cancel(session.id, tutor.id, "something came up")

        assert analysis.calculated_penalty == 4.35
        assert tutor.score_reliability == pytest.approx(0.65)

    def test_sentiment_fallback_is_recorded(self, machine, sentiment, lesson_in_two_hours):
        session, tutor = lesson_in_two_hours
        sentiment.fallback = True

        _, analysis, _ = machine.cancel(session.id, tutor.id, "sick")
        assert analysis.sentiment_fallback is True
        assert analysis.ai_sentiment_score == 0.5

    def test_empty_pool_returns_session_to_pending(self, db, machine, lesson_in_two_hours):
        session, tutor = lesson_in_two_hours

        session, _, pool = machine.cancel(session.id, tutor.id, "car broke down")

        assert pool == []
        assert session.status == SessionStatus.PENDING.value
        assert session.assigned_tutor_id is None
        assert session.cancellation_reason == "car broke down"
        attempt = db.query(models.OutreachAttempt).filter_by(tutor_id=tutor.id).one()
        assert attempt.status == AttemptStatus.WITHDRAWN.value

    def test_waitlisted_tutors_are_contacted_again(self, db, machine, lesson_in_two_hours, make_tutor):
        session, tutor = lesson_in_two_hours
        backup = make_tutor(name="Backup")
        machine.join_waitlist(session.id, backup.id)

        session, _, pool = machine.cancel(session.id, tutor.id, "flu")

        assert [c.tutor_id for c in pool] == [backup.id]
        assert session.status == SessionStatus.OUTREACH_IN_PROGRESS.value
        pending = machine.outreach.pending_tutor_ids(session.id)
        assert pending == [backup.id]

        # Backup accepts and the session is confirmed again
        attempt = machine.outreach.pending_for_tutor(backup.id)[0]
        resolution, session = machine.respond_to_outreach(attempt.id, "accepted")
        assert session.status == SessionStatus.CONFIRMED.value
        assert session.assigned_tutor_id == backup.id

    def test_only_the_assigned_tutor_can_cancel(self, machine, sentiment, lesson_in_two_hours, make_tutor):
        session, _ = lesson_in_two_hours
        stranger = make_tutor()
        with pytest.raises(InvalidTransition):
            machine.cancel(session.id, stranger.id, "not mine")
        assert sentiment.texts == []
        assert machine.get_session(session.id).status == SessionStatus.CONFIRMED.value

    def test_cannot_cancel_unconfirmed_session(self, machine, make_session, make_tutor):
        tutor = make_tutor()
        with pytest.raises(InvalidTransition):
            machine.cancel(make_session().id, tutor.id, "x")

    def test_reason_is_scored_outside_the_locks(self, db, clock, travel, lesson_in_two_hours):
        session, tutor = lesson_in_two_hours
        held = []

        class RecordingSentiment(FakeSentimentService):
            def score(self, reason_text):
                held.append((len(tutor_locks), len(session_locks)))
                return super().score(reason_text)

        machine = SessionStateMachine(
            db, clock=clock, travel_time_service=travel, sentiment_service=RecordingSentiment()
        )
        machine.cancel(session.id, tutor.id, "flat tyre")

        assert held == [(0, 0)]

    def test_late_cancellation_has_negative_notice(self, machine, clock, lesson_in_two_hours):
        session, tutor = lesson_in_two_hours
        clock.advance(hours=3)
        _, analysis, _ = machine.cancel(session.id, tutor.id, "overslept")
        assert analysis.notice_hours == pytest.approx(-1.0)


class TestOverride:
    def test_goodwill_override_refunds_and_rewards(self, db, machine, engine_for, sentiment, lesson_in_two_hours):
        session, tutor = lesson_in_two_hours
        sentiment.value = 0.1
        _, analysis, _ = machine.cancel(session.id, tutor.id, "something came up")
        assert tutor.score_reliability == pytest.approx(0.65)

        analysis = engine_for(sentiment).override(analysis.id, -1.0, "goodwill", admin_id="admin-7")

        assert analysis.final_penalty == -1.0
        assert analysis.admin_override is True
        assert analysis.override_reason == "goodwill"
        assert analysis.overridden_by == "admin-7"
        assert analysis.overridden_at == NOW
        assert analysis.calculated_penalty == 4.35
        db.refresh(tutor)
        assert tutor.score_reliability == pytest.approx(6.0)

    def test_repeating_an_override_does_not_move_the_score_again(
        self, db, machine, engine_for, sentiment, lesson_in_two_hours
    ):
        session, tutor = lesson_in_two_hours
        _, analysis, _ = machine.cancel(session.id, tutor.id, "something came up")
        engine = engine_for(sentiment)

        engine.override(analysis.id, 1.0, "reviewed", admin_id="a")
        db.refresh(tutor)
        after_first = tutor.score_reliability
        engine.override(analysis.id, 1.0, "reviewed again", admin_id="a")
        db.refresh(tutor)

        assert tutor.score_reliability == pytest.approx(after_first)
        logs = db.query(models.AdminLog).filter_by(action="cancellation_penalty_override").all()
        assert len(logs) == 2
        assert logs[1].details["reliability_delta"] == 0

    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_reason_is_required(self, db, machine, engine_for, sentiment, lesson_in_two_hours, reason):
        session, tutor = lesson_in_two_hours
        _, analysis, _ = machine.cancel(session.id, tutor.id, "x")
        with pytest.raises(ValidationError):
            engine_for(sentiment).override(analysis.id, 0.0, reason, admin_id="a")
        db.refresh(analysis)
        assert analysis.admin_override is False
        assert db.query(models.AdminLog).count() == 0

    def test_penalty_must_be_a_number(self, machine, engine_for, sentiment, lesson_in_two_hours):
        session, tutor = lesson_in_two_hours
        _, analysis, _ = machine.cancel(session.id, tutor.id, "x")
        with pytest.raises(ValidationError):
            engine_for(sentiment).override(analysis.id, "lots", "because", admin_id="a")
        with pytest.raises(ValidationError):
            engine_for(sentiment).override(analysis.id, float("inf"), "because", admin_id="a")

    def test_unknown_analysis(self, engine_for, sentiment):
        with pytest.raises(NotFound):
            engine_for(sentiment).override(999, 1.0, "because", admin_id="a")

    def test_listing_stats(self, machine, engine_for, sentiment, lesson_in_two_hours):
        session, tutor = lesson_in_two_hours
        sentiment.value = 0.9
        _, analysis, _ = machine.cancel(session.id, tutor.id, "hospital")
        engine = engine_for(sentiment)
        engine.override(analysis.id, 0.29, "fair", admin_id="a")

        stats = engine.list_with_stats()
        assert stats["totalAnalyses"] == 1
        assert stats["overrideCount"] == 1
        assert stats["avgPenalty"] == pytest.approx(0.29)
