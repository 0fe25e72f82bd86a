"""
Reschedule negotiator

A reschedule request proposes a new time for one lesson. When it names a
priority tutor (by default the tutor already assigned), that tutor alone may
accept or decline until the priority deadline. Once the deadline passes the
request expires and the session goes back to general matching at the new
time. Expiry is driven by the worker sweep and checked lazily whenever a
request is answered, so it never waits on a person.

Rule for racing the deadline: the first state change that sees the request
pending at or before the deadline wins; after the deadline only expiry acts.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...config import RESCHEDULE_PRIORITY_WINDOW_HOURS
from ...enums import RequesterType, RescheduleResponse, RescheduleStatus
from ...exceptions import InvalidTransition, NotFound, ValidationError
from ...models import RescheduleRequest, TrialLesson, TrialSession, Tutor
from ...shared.clock import Clock, system_clock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RescheduleDecision:
    request: RescheduleRequest
    approved: bool


def parse_reschedule_response(response) -> RescheduleResponse:
    try:
        return RescheduleResponse(response)
    except ValueError as e:
        raise ValidationError(f"Invalid response {response!r}; expected accepted or declined") from e


class RescheduleNegotiator:
    def __init__(
        self,
        db: Session,
        clock: Clock = system_clock,
        window_hours: float = RESCHEDULE_PRIORITY_WINDOW_HOURS,
    ):
        self.db = db
        self.clock = clock
        self.window = timedelta(hours=window_hours)

    def get_request(self, request_id: int) -> RescheduleRequest:
        request = self.db.query(RescheduleRequest).filter(RescheduleRequest.id == request_id).first()
        if not request:
            raise NotFound(f"Reschedule request {request_id} not found")
        return request

    def pending_for_session(self, session_id: int) -> Optional[RescheduleRequest]:
        return (
            self.db.query(RescheduleRequest)
            .filter(
                RescheduleRequest.session_id == session_id,
                RescheduleRequest.status == RescheduleStatus.PENDING.value,
            )
            .first()
        )

    def create(
        self,
        session: TrialSession,
        new_datetime: datetime,
        reason: Optional[str],
        requester_id: Optional[str],
        requester_type,
        priority_tutor_id: Optional[int] = None,
        lesson_id: Optional[int] = None,
    ) -> RescheduleRequest:
        """Open a pending request. Caller owns the transaction."""
        try:
            requester_type = RequesterType(requester_type)
        except ValueError as e:
            raise ValidationError(f"Invalid requesterType {requester_type!r}") from e

        now = self.clock.now()
        if new_datetime <= now:
            raise ValidationError("newDateTime must be in the future")

        lesson = self._lesson_for(session, lesson_id)
        if lesson.scheduled_at == new_datetime:
            raise ValidationError("newDateTime is the lesson's current time")

        existing = self.pending_for_session(session.id)
        if existing is not None:
            raise InvalidTransition(
                f"Session {session.id} already has pending reschedule request {existing.id}"
            )

        if priority_tutor_id is not None:
            self._check_priority_tutor(session, priority_tutor_id)
        elif session.assigned_tutor_id is not None:
            requested_by_assigned_tutor = (
                requester_type == RequesterType.TUTOR
                and str(requester_id) == str(session.assigned_tutor_id)
            )
            if not requested_by_assigned_tutor:
                priority_tutor_id = session.assigned_tutor_id

        request = RescheduleRequest(
            session_id=session.id,
            lesson_id=lesson.id,
            requester_type=requester_type.value,
            requester_id=str(requester_id) if requester_id is not None else None,
            reason=reason,
            original_datetime=lesson.scheduled_at,
            requested_datetime=new_datetime,
            priority_tutor_id=priority_tutor_id,
            priority_response_deadline=(now + self.window) if priority_tutor_id is not None else None,
            status=RescheduleStatus.PENDING.value,
            created_at=now,
        )
        self.db.add(request)
        self.db.flush()

        logger.info(
            f"🗓️ Reschedule request {request.id} for session {session.id}: "
            f"{request.original_datetime} → {new_datetime}"
            + (
                f", priority tutor {priority_tutor_id} until {request.priority_response_deadline}"
                if priority_tutor_id is not None
                else ""
            )
        )
        return request

    def _lesson_for(self, session: TrialSession, lesson_id: Optional[int]) -> TrialLesson:
        if lesson_id is None:
            lesson = session.first_lesson
            if lesson is None:
                raise InvalidTransition(f"Session {session.id} has no lesson to reschedule")
            return lesson
        for lesson in session.lessons:
            if lesson.id == lesson_id:
                return lesson
        raise NotFound(f"Lesson {lesson_id} not found on session {session.id}")

    def _check_priority_tutor(self, session: TrialSession, tutor_id: int) -> None:
        """An approval moves the lesson, so only the tutor who keeps it may hold priority"""
        if self.db.get(Tutor, tutor_id) is None:
            raise ValidationError(f"priorityTutorId {tutor_id} is not a known tutor")
        if session.assigned_tutor_id is not None and tutor_id != session.assigned_tutor_id:
            raise ValidationError(
                f"priorityTutorId {tutor_id} is not the tutor assigned to session {session.id}",
                context={"session_id": session.id, "assigned_tutor_id": session.assigned_tutor_id},
            )

    def is_expired(self, request: RescheduleRequest, now: Optional[datetime] = None) -> bool:
        if request.status != RescheduleStatus.PENDING.value:
            return False
        if request.priority_response_deadline is None:
            return False
        return (now or self.clock.now()) > request.priority_response_deadline

    def expire(self, request: RescheduleRequest) -> RescheduleRequest:
        request.status = RescheduleStatus.EXPIRED.value
        request.resolved_at = self.clock.now()
        request.resolved_by = "system"
        self.db.flush()
        logger.info(
            f"⌛ Reschedule request {request.id} expired (priority tutor {request.priority_tutor_id} did not respond)"
        )
        return request

    def respond(self, request: RescheduleRequest, tutor_id: int, response) -> RescheduleDecision:
        """
        Priority tutor's answer. The caller has already run the expiry check
        under the session lock.
        """
        response = parse_reschedule_response(response)

        if request.status != RescheduleStatus.PENDING.value:
            raise InvalidTransition(
                f"Reschedule request {request.id} is already {request.status}",
                context={"request_id": request.id, "status": request.status},
            )
        if request.priority_tutor_id is None:
            raise InvalidTransition(
                f"Reschedule request {request.id} has no priority tutor; an admin must resolve it"
            )
        if tutor_id != request.priority_tutor_id:
            raise InvalidTransition(
                f"Only tutor {request.priority_tutor_id} may respond to reschedule request {request.id}"
            )

        approved = response == RescheduleResponse.ACCEPTED
        self._close(request, approved, resolved_by=f"tutor:{tutor_id}")
        return RescheduleDecision(request=request, approved=approved)

    def resolve(self, request: RescheduleRequest, approve: bool, admin_id: str) -> RescheduleDecision:
        """Admin decision on a request that has no priority window"""
        if request.status != RescheduleStatus.PENDING.value:
            raise InvalidTransition(f"Reschedule request {request.id} is already {request.status}")
        if request.priority_tutor_id is not None:
            raise InvalidTransition(
                f"Reschedule request {request.id} is waiting on priority tutor {request.priority_tutor_id}"
            )
        self._close(request, approve, resolved_by=f"admin:{admin_id}")
        return RescheduleDecision(request=request, approved=approve)

    def _close(self, request: RescheduleRequest, approved: bool, resolved_by: str) -> None:
        request.status = (RescheduleStatus.APPROVED if approved else RescheduleStatus.REJECTED).value
        request.resolved_at = self.clock.now()
        request.resolved_by = resolved_by
        if approved:
            self.apply_new_time(request)
        self.db.flush()
        logger.info(f"🗓️ Reschedule request {request.id} {request.status} by {resolved_by}")

    def reject_pending(self, session_id: int, resolved_by: str = "system") -> Optional[RescheduleRequest]:
        """Close the open request of a session that no longer needs it"""
        request = self.pending_for_session(session_id)
        if request is not None:
            self._close(request, approved=False, resolved_by=resolved_by)
        return request

    def apply_new_time(self, request: RescheduleRequest) -> None:
        lesson = request.lesson or (request.session.first_lesson if request.session else None)
        if lesson is None:
            raise InvalidTransition(f"Reschedule request {request.id} has no lesson to move")
        lesson.scheduled_at = request.requested_datetime

    def due_for_expiry(self, now: Optional[datetime] = None) -> list[RescheduleRequest]:
        now = now or self.clock.now()
        return (
            self.db.query(RescheduleRequest)
            .filter(
                RescheduleRequest.status == RescheduleStatus.PENDING.value,
                RescheduleRequest.priority_response_deadline.isnot(None),
                RescheduleRequest.priority_response_deadline < now,
            )
            .order_by(RescheduleRequest.priority_response_deadline, RescheduleRequest.id)
            .all()
        )

    def list_with_counts(self) -> dict:
        requests = (
            self.db.query(RescheduleRequest)
            .order_by(RescheduleRequest.created_at.desc(), RescheduleRequest.id.desc())
            .all()
        )
        counts = {status.value: 0 for status in RescheduleStatus}
        rows = (
            self.db.query(RescheduleRequest.status, func.count(RescheduleRequest.id))
            .group_by(RescheduleRequest.status)
            .all()
        )
        for status, count in rows:
            if status in counts:
                counts[status] = count
        return {"requests": requests, "counts": counts}
