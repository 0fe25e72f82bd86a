"""
Session state machine

Single writer of TrialSession.status. Every mutating operation:

1. takes the session's in-process lock (after the tutor's lock when tutor
   scores change)
2. re-reads the session row FOR UPDATE
3. checks the operation is legal from the current status
4. applies the change together with its side effects on attempts,
   waitlist entries, reschedule requests and tutor scores
5. commits, or rolls everything back on any error

so an operation is either fully applied or not applied at all.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...config import (
    DIAGNOSTIC_ASSESSMENT_MIN_WORDS,
    DIAGNOSTIC_SUGGESTIONS_MIN_WORDS,
    REFLECTION_PLAN_MIN_WORDS,
    REFLECTION_SUMMARY_MIN_WORDS,
)
from ...enums import SessionStatus
from ...exceptions import InvalidTransition, NotFound, ValidationError
from ...models import CancellationAnalysis, OutreachAttempt, RescheduleRequest, TrialSession
from ...services.sentiment_service import SentimentService
from ...services.travel_time_service import TravelTimeService
from ...shared.clock import Clock, system_clock, to_naive_utc
from ...shared.locks import KeyedLockRegistry, session_locks, tutor_locks
from ...shared.validators import categorize_location, require_min_words, validate_email
from ..cancellations.service import CancellationPenaltyEngine
from ..matching.service import MatchRanker, RankedCandidate
from ..outreach.service import OutreachCoordinator, OutreachOutcome, OutreachResolution, parse_response
from ..reschedules.service import RescheduleNegotiator, parse_reschedule_response
from ..tutors.service import TutorService
from ..waitlist.service import WaitlistJoinResult, WaitlistManager
from .repository import SessionRepository
from .states import ensure_can, ensure_edge

logger = logging.getLogger(__name__)

S = SessionStatus

RESCHEDULABLE = {S.PENDING, S.OUTREACH_IN_PROGRESS, S.CONFIRMED}


class SessionStateMachine:
    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        travel_time_service: Optional[TravelTimeService] = None,
        sentiment_service: Optional[SentimentService] = None,
        locks: KeyedLockRegistry = session_locks,
        tutor_lock_registry: KeyedLockRegistry = tutor_locks,
    ):
        self.db = db
        self.clock = clock
        self.locks = locks
        self.repo = SessionRepository()
        self.tutors = TutorService(db, clock, tutor_lock_registry)
        self.ranker = MatchRanker(db, travel_time_service)
        self.outreach = OutreachCoordinator(db, clock)
        self.waitlist = WaitlistManager(db, clock)
        self.reschedules = RescheduleNegotiator(db, clock)
        self.penalties = CancellationPenaltyEngine(db, sentiment_service, clock, locks, tutor_lock_registry)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _locked_session(self, session_id: int):
        with self.locks.hold(session_id):
            try:
                session = self.repo.get_for_update(self.db, session_id)
                if session is None:
                    raise NotFound(f"Session {session_id} not found")
                yield session
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

    def _transition(self, session: TrialSession, target: SessionStatus, reason: str = "") -> None:
        current = session.status_enum
        if current == target:
            return
        ensure_edge(current, target, session.id)
        session.status = target.value
        logger.info(
            f"🔄 Session {session.id}: {current.value} → {target.value}" + (f" ({reason})" if reason else "")
        )

    def _confirm(self, session: TrialSession, tutor_id: int, reason: str) -> None:
        session.assigned_tutor_id = tutor_id
        session.failure_reason = None
        self.waitlist.leave(session.id, tutor_id)
        self._transition(session, S.CONFIRMED, reason)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_session(self, session_id: int) -> TrialSession:
        session = self.repo.get_session(self.db, session_id)
        if not session:
            raise NotFound(f"Session {session_id} not found")
        return session

    def request_match(self, session_id: int) -> list[RankedCandidate]:
        """Ranked candidates for a pending session. Never changes state."""
        session = self.get_session(session_id)
        ensure_can(session.status_enum, "request_match", session.id)
        return self.ranker.rank_for_session(session)

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    def create_session(
        self,
        parent_name: str,
        location: str,
        lessons: list[dict],
        parent_email: Optional[str] = None,
        parent_phone: Optional[str] = None,
    ) -> TrialSession:
        if not parent_name or not parent_name.strip():
            raise ValidationError("parentName is required")
        if not location or not location.strip():
            raise ValidationError("location is required")
        if not lessons:
            raise ValidationError("A trial session needs at least one lesson")

        try:
            parent_email = validate_email(parent_email)
        except ValueError as e:
            raise ValidationError(str(e), context={"field": "parentEmail"}) from e

        subject_ids = {lesson["subject_id"] for lesson in lessons}
        known = {subject.id for subject in self.repo.get_subjects(self.db, subject_ids)}
        missing = sorted(subject_ids - known)
        if missing:
            raise NotFound(f"Unknown subject ids: {missing}")

        cleaned = []
        for lesson in lessons:
            duration = lesson.get("duration_minutes") or 60
            if duration <= 0:
                raise ValidationError("durationMinutes must be positive")
            cleaned.append({**lesson, "duration_minutes": duration, "scheduled_at": to_naive_utc(lesson["scheduled_at"])})
        cleaned.sort(key=lambda item: item["scheduled_at"])

        session = self.repo.create_session(
            self.db,
            lessons=cleaned,
            parent_name=parent_name.strip(),
            parent_email=parent_email,
            parent_phone=parent_phone,
            location=location.strip(),
            location_type=categorize_location(location).value,
            status=S.PENDING.value,
        )
        logger.info(f"✅ Session {session.id} created ({session.location_type}, {len(cleaned)} lesson(s))")
        return session

    # ------------------------------------------------------------------
    # Outreach
    # ------------------------------------------------------------------

    def start_outreach(self, session_id: int, tutor_ids: Iterable[int]) -> tuple[TrialSession, list[OutreachAttempt]]:
        tutor_ids = list(dict.fromkeys(tutor_ids or []))
        if not tutor_ids:
            raise ValidationError("Select at least one tutor to contact")

        with self._locked_session(session_id) as session:
            ensure_can(session.status_enum, "start_outreach", session.id)
            for tutor_id in tutor_ids:
                self.tutors.get_tutor(tutor_id)
            attempts = self.outreach.start_batch(session, tutor_ids)
            self._transition(session, S.OUTREACH_IN_PROGRESS, f"{len(attempts)} tutors contacted")
        return session, attempts

    def respond_to_outreach(self, attempt_id: int, response) -> tuple[OutreachResolution, TrialSession]:
        parse_response(response)
        session_id = self.outreach.get_attempt(attempt_id).session_id

        with self._locked_session(session_id) as session:
            # Re-read under the lock; another tutor may have just won
            attempt = self.db.query(OutreachAttempt).populate_existing().filter(OutreachAttempt.id == attempt_id).one()
            resolution = self.outreach.respond(attempt, response)

            if not resolution.replayed:
                if resolution.outcome == OutreachOutcome.CONFIRMED:
                    ensure_can(session.status_enum, "confirm_from_outreach", session.id)
                    self._confirm(session, attempt.tutor_id, f"tutor {attempt.tutor_id} accepted")
                elif resolution.outcome == OutreachOutcome.EXHAUSTED and session.status_enum == S.OUTREACH_IN_PROGRESS:
                    session.failure_reason = "Every contacted tutor declined"
                    self._transition(session, S.FAILED_NO_TUTORS, "outreach exhausted")
        return resolution, session

    def assign_tutor(self, session_id: int, tutor_id: int) -> TrialSession:
        """Admin assignment; repeating it for the same tutor is a no-op"""
        with self._locked_session(session_id) as session:
            if session.status_enum == S.CONFIRMED and session.assigned_tutor_id == tutor_id:
                return session
            ensure_can(session.status_enum, "assign_tutor", session.id)
            self.tutors.get_tutor(tutor_id)
            self.outreach.accept_for_tutor(session, tutor_id)
            self._confirm(session, tutor_id, f"tutor {tutor_id} assigned by admin")
        return session

    def retry_outreach(self, session_id: int) -> TrialSession:
        """Reopen a failed session with a clean outreach history"""
        with self._locked_session(session_id) as session:
            ensure_can(session.status_enum, "retry_outreach", session.id)
            cleared = self.outreach.clear(session.id)
            session.failure_reason = None
            self._transition(session, S.PENDING, f"retry, {cleared} old attempts cleared")
        return session

    def mark_failed(self, session_id: int, reason: Optional[str] = None) -> TrialSession:
        with self._locked_session(session_id) as session:
            ensure_can(session.status_enum, "mark_failed", session.id)
            self.outreach.supersede_pending(session.id)
            session.failure_reason = (reason or "").strip() or "No tutors available"
            self._transition(session, S.FAILED_NO_TUTORS, session.failure_reason)
        return session

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def _ensure_assigned_tutor(self, session: TrialSession, tutor_id: int) -> None:
        if session.assigned_tutor_id != tutor_id:
            raise InvalidTransition(
                f"Only the assigned tutor can submit feedback for session {session.id}",
                context={"session_id": session.id, "tutor_id": tutor_id},
            )

    def submit_diagnostic(self, session_id: int, tutor_id: int, assessment: str, suggestions: str) -> TrialSession:
        with self._locked_session(session_id) as session:
            ensure_can(session.status_enum, "submit_diagnostic", session.id)
            self._ensure_assigned_tutor(session, tutor_id)
            assessment = require_min_words("diagnosticAssessment", assessment, DIAGNOSTIC_ASSESSMENT_MIN_WORDS)
            suggestions = require_min_words("diagnosticSuggestions", suggestions, DIAGNOSTIC_SUGGESTIONS_MIN_WORDS)

            lesson = session.first_lesson
            lesson.diagnostic_assessment = assessment
            lesson.diagnostic_suggestions = suggestions
            lesson.diagnostic_submitted_at = self.clock.now()
            self._transition(session, S.TRIAL_1_COMPLETE, "diagnostic submitted")
        return session

    def submit_reflection(self, session_id: int, tutor_id: int, summary: str, plan: str) -> TrialSession:
        with self._locked_session(session_id) as session:
            ensure_can(session.status_enum, "submit_reflection", session.id)
            self._ensure_assigned_tutor(session, tutor_id)
            summary = require_min_words("reflectionSummary", summary, REFLECTION_SUMMARY_MIN_WORDS)
            plan = require_min_words("reflectionPlan", plan, REFLECTION_PLAN_MIN_WORDS)

            # Single-lesson trials carry both reports on the one lesson
            lesson = session.lessons[-1]
            lesson.reflection_summary = summary
            lesson.reflection_plan = plan
            lesson.reflection_submitted_at = self.clock.now()
            self._transition(session, S.TRIAL_2_COMPLETE, "reflection submitted")
        return session

    def confirm_continuation(self, session_id: int) -> TrialSession:
        with self._locked_session(session_id) as session:
            ensure_can(session.status_enum, "confirm_continuation", session.id)
            self._transition(session, S.AWAITING_SCHEDULE, "student continuing")
        return session

    # ------------------------------------------------------------------
    # Withdrawal and cancellation
    # ------------------------------------------------------------------

    def withdraw(self, session_id: int, reason: Optional[str] = None) -> TrialSession:
        """The family pulls out. Terminal."""
        with self._locked_session(session_id) as session:
            ensure_can(session.status_enum, "withdraw", session.id)
            self.outreach.supersede_pending(session.id)
            self.reschedules.reject_pending(session.id)
            session.cancellation_reason = (reason or "").strip() or None
            self._transition(session, S.CANCELLED, "withdrawn")
        return session

    def cancel(
        self, session_id: int, tutor_id: int, reason: Optional[str]
    ) -> tuple[TrialSession, CancellationAnalysis, list[RankedCandidate]]:
        """
        The confirmed tutor cancels. The penalty is recorded and applied, then
        the session goes back out to its waitlist, or to Pending when nobody
        is left to ask.
        """
        self._check_cancel(self.get_session(session_id), tutor_id)
        sentiment = self.penalties.score_reason(reason)

        with self.tutors.locks.hold(tutor_id), self._locked_session(session_id) as session:
            self._check_cancel(session, tutor_id)
            tutor = self.tutors.get_tutor_for_update(tutor_id)
            analysis = self.penalties.analyze(session, tutor, reason, self.clock.now(), sentiment)

            self.outreach.withdraw_accepted(session.id, tutor_id)
            self.reschedules.reject_pending(session.id)
            session.assigned_tutor_id = None
            session.cancellation_reason = (reason or "").strip() or None

            pool = self.ranker.rank_waitlist(session, exclude_tutor_ids={tutor_id})
            if pool:
                self.outreach.start_batch(session, [c.tutor_id for c in pool])
                self._transition(session, S.OUTREACH_IN_PROGRESS, f"tutor {tutor_id} cancelled, {len(pool)} re-contacted")
            else:
                self._transition(session, S.PENDING, f"tutor {tutor_id} cancelled, pool empty")
        return session, analysis, pool

    @staticmethod
    def _check_cancel(session: TrialSession, tutor_id: int) -> None:
        ensure_can(session.status_enum, "cancel", session.id)
        if session.assigned_tutor_id != tutor_id:
            raise InvalidTransition(
                f"Tutor {tutor_id} is not assigned to session {session.id}",
                context={"session_id": session.id, "assigned_tutor_id": session.assigned_tutor_id},
            )

    # ------------------------------------------------------------------
    # Waitlist
    # ------------------------------------------------------------------

    def join_waitlist(self, session_id: int, tutor_id: int) -> WaitlistJoinResult:
        with self._locked_session(session_id) as session:
            self.tutors.get_tutor(tutor_id)
            result = self.waitlist.join(session, tutor_id)
        return result

    # ------------------------------------------------------------------
    # Rescheduling
    # ------------------------------------------------------------------

    def create_reschedule(
        self,
        session_id: int,
        new_datetime: datetime,
        reason: Optional[str],
        requester_id: Optional[str],
        requester_type,
        priority_tutor_id: Optional[int] = None,
        lesson_id: Optional[int] = None,
    ) -> RescheduleRequest:
        with self._locked_session(session_id) as session:
            ensure_can(session.status_enum, "reschedule", session.id)
            request = self.reschedules.create(
                session,
                to_naive_utc(new_datetime),
                reason,
                requester_id,
                requester_type,
                priority_tutor_id=priority_tutor_id,
                lesson_id=lesson_id,
            )
        return request

    def respond_to_reschedule(
        self, request_id: int, tutor_id: int, response
    ) -> tuple[RescheduleRequest, list[RankedCandidate]]:
        """
        Priority tutor's answer. A decline reopens the session at the new time
        and returns fresh candidates. An answer that arrives after the deadline
        expires the request (that part is kept) and is then rejected.
        """
        parse_reschedule_response(response)
        session_id = self.reschedules.get_request(request_id).session_id

        expired = None
        candidates: list[RankedCandidate] = []
        with self._locked_session(session_id) as session:
            request = (
                self.db.query(RescheduleRequest)
                .populate_existing()
                .filter(RescheduleRequest.id == request_id)
                .one()
            )
            if self.reschedules.is_expired(request):
                self._expire(session, request)
                expired = request
            else:
                ensure_can(session.status_enum, "reschedule", session.id)
                decision = self.reschedules.respond(request, tutor_id, response)
                if not decision.approved:
                    candidates = self._reopen(session, request, exclude_tutor_ids={tutor_id})

        if expired is not None:
            raise InvalidTransition(
                f"Reschedule request {expired.id} expired at {expired.priority_response_deadline}; "
                "the session is back in general matching",
                context={"request_id": expired.id, "status": expired.status},
            )
        return request, candidates

    def resolve_reschedule(self, request_id: int, approve: bool, admin_id: str) -> RescheduleRequest:
        session_id = self.reschedules.get_request(request_id).session_id
        with self._locked_session(session_id) as session:
            request = (
                self.db.query(RescheduleRequest)
                .populate_existing()
                .filter(RescheduleRequest.id == request_id)
                .one()
            )
            ensure_can(session.status_enum, "reschedule", session.id)
            self.reschedules.resolve(request, approve, admin_id)
        return request

    def expire_reschedule_windows(self) -> dict:
        """Sweep: expire every request whose priority window has passed"""
        due = [(r.id, r.session_id) for r in self.reschedules.due_for_expiry()]
        expired, reopened = [], []
        for request_id, session_id in due:
            with self._locked_session(session_id) as session:
                request = (
                    self.db.query(RescheduleRequest)
                    .populate_existing()
                    .filter(RescheduleRequest.id == request_id)
                    .one()
                )
                if not self.reschedules.is_expired(request):
                    continue
                if self._expire(session, request):
                    reopened.append(session.id)
                expired.append(request.id)

        if expired:
            logger.info(f"⌛ Reschedule sweep: {len(expired)} expired, sessions reopened: {reopened}")
        return {"expired": expired, "reopened_sessions": reopened}

    def _expire(self, session: TrialSession, request: RescheduleRequest) -> bool:
        self.reschedules.expire(request)
        if session.status_enum not in RESCHEDULABLE:
            return False
        self._reopen(session, request, rank=False)
        return True

    def _reopen(
        self,
        session: TrialSession,
        request: RescheduleRequest,
        exclude_tutor_ids: Iterable[int] = (),
        rank: bool = True,
    ) -> list[RankedCandidate]:
        """Move the lesson to the requested time and send the session back to general matching"""
        self.reschedules.apply_new_time(request)
        previous = session.assigned_tutor_id
        if previous is not None:
            self.outreach.withdraw_accepted(session.id, previous)
        self.outreach.supersede_pending(session.id)
        session.assigned_tutor_id = None
        self._transition(session, S.PENDING, f"reschedule request {request.id} {request.status}")
        self.db.flush()
        if not rank:
            return []
        return self.ranker.rank_for_session(session, exclude_tutor_ids=exclude_tutor_ids)
