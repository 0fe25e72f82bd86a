"""
Outreach coordinator

Offers a session to a batch of tutors and resolves their answers. The first
acceptance wins; every other pending offer for the session is superseded.
Callers must hold the session's critical section (see shared.locks) around
respond() so two acceptances can never both observe "no winner yet".

The coordinator only touches outreach attempts. It reports what happened as an
OutreachOutcome and leaves the session status to SessionStateMachine.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy.orm import Session, joinedload

from ...enums import AttemptStatus, OutreachResponse
from ...exceptions import InvalidTransition, NotFound, ValidationError
from ...models import OutreachAttempt, TrialSession
from ...shared.clock import Clock, system_clock

logger = logging.getLogger(__name__)


class OutreachOutcome(str, Enum):
    CONFIRMED = "confirmed"
    ALREADY_ASSIGNED = "already_assigned"
    DECLINED = "declined"
    REQUIRE_DIFFERENT_TIME = "require_different_time"
    # every attempt answered and nobody accepted
    EXHAUSTED = "exhausted"


RESPONSE_TO_STATUS = {
    OutreachResponse.ACCEPTED: AttemptStatus.ACCEPTED,
    OutreachResponse.DECLINED: AttemptStatus.DECLINED,
    OutreachResponse.REQUIRE_DIFFERENT_TIME: AttemptStatus.REQUIRE_DIFFERENT_TIME,
}


@dataclass(frozen=True)
class OutreachResolution:
    outcome: OutreachOutcome
    attempt: OutreachAttempt
    replayed: bool = False


def parse_response(response) -> OutreachResponse:
    try:
        return OutreachResponse(response)
    except ValueError as e:
        allowed = ", ".join(r.value for r in OutreachResponse)
        raise ValidationError(f"Invalid response {response!r}; expected one of: {allowed}") from e


class OutreachCoordinator:
    def __init__(self, db: Session, clock: Clock = system_clock):
        self.db = db
        self.clock = clock

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_attempt(self, attempt_id: int) -> OutreachAttempt:
        attempt = self.db.query(OutreachAttempt).filter(OutreachAttempt.id == attempt_id).first()
        if not attempt:
            raise NotFound(f"Outreach attempt {attempt_id} not found")
        return attempt

    def attempts_for(self, session_id: int) -> list[OutreachAttempt]:
        return (
            self.db.query(OutreachAttempt)
            .filter(OutreachAttempt.session_id == session_id)
            .order_by(OutreachAttempt.id)
            .all()
        )

    def accepted_attempt(self, session_id: int) -> Optional[OutreachAttempt]:
        return (
            self.db.query(OutreachAttempt)
            .filter(
                OutreachAttempt.session_id == session_id,
                OutreachAttempt.status == AttemptStatus.ACCEPTED.value,
            )
            .first()
        )

    def pending_tutor_ids(self, session_id: int) -> list[int]:
        return [
            a.tutor_id
            for a in self.attempts_for(session_id)
            if a.status == AttemptStatus.PENDING.value
        ]

    def pending_for_tutor(self, tutor_id: int) -> list[OutreachAttempt]:
        """Offers the tutor dashboard lists under "New Trial Requests" """
        return (
            self.db.query(OutreachAttempt)
            .options(joinedload(OutreachAttempt.session))
            .filter(
                OutreachAttempt.tutor_id == tutor_id,
                OutreachAttempt.status == AttemptStatus.PENDING.value,
            )
            .order_by(OutreachAttempt.id)
            .all()
        )

    def flagged_for_different_time(self) -> list[OutreachAttempt]:
        """Attempts where the tutor asked for another time; surfaced on the admin dashboard"""
        return (
            self.db.query(OutreachAttempt)
            .filter(OutreachAttempt.status == AttemptStatus.REQUIRE_DIFFERENT_TIME.value)
            .order_by(OutreachAttempt.responded_at.desc(), OutreachAttempt.id.desc())
            .all()
        )

    # ------------------------------------------------------------------
    # Mutations (caller owns the transaction and the session lock)
    # ------------------------------------------------------------------

    def start_batch(self, session: TrialSession, tutor_ids: Iterable[int]) -> list[OutreachAttempt]:
        """Create one pending attempt per tutor, skipping tutors already holding one"""
        already_pending = set(self.pending_tutor_ids(session.id))
        created = []
        seen = set()
        for tutor_id in tutor_ids:
            if tutor_id in seen or tutor_id in already_pending:
                continue
            seen.add(tutor_id)
            attempt = OutreachAttempt(
                session_id=session.id,
                tutor_id=tutor_id,
                status=AttemptStatus.PENDING.value,
                created_at=self.clock.now(),
            )
            self.db.add(attempt)
            created.append(attempt)

        self.db.flush()
        logger.info(f"📨 Session {session.id}: outreach sent to {len(created)} tutors")
        return created

    def respond(self, attempt: OutreachAttempt, response) -> OutreachResolution:
        response = parse_response(response)
        target = RESPONSE_TO_STATUS[response]

        if attempt.is_terminal:
            return self._replay(attempt, response, target)

        if response == OutreachResponse.ACCEPTED:
            return self._accept(attempt)

        attempt.status = target.value
        attempt.responded_at = self.clock.now()
        self.db.flush()
        logger.info(f"📭 Attempt {attempt.id}: tutor {attempt.tutor_id} responded {response.value}")

        if self._all_resolved_without_winner(attempt.session_id):
            logger.info(f"⚠️ Session {attempt.session_id}: every tutor declined")
            return OutreachResolution(OutreachOutcome.EXHAUSTED, attempt)

        outcome = (
            OutreachOutcome.DECLINED
            if response == OutreachResponse.DECLINED
            else OutreachOutcome.REQUIRE_DIFFERENT_TIME
        )
        return OutreachResolution(outcome, attempt)

    def _accept(self, attempt: OutreachAttempt) -> OutreachResolution:
        winner = self.accepted_attempt(attempt.session_id)
        now = self.clock.now()
        if winner is not None:
            attempt.status = AttemptStatus.SUPERSEDED.value
            attempt.responded_at = now
            self.db.flush()
            logger.info(
                f"ℹ️ Attempt {attempt.id}: session {attempt.session_id} already filled by tutor {winner.tutor_id}"
            )
            return OutreachResolution(OutreachOutcome.ALREADY_ASSIGNED, attempt)

        attempt.status = AttemptStatus.ACCEPTED.value
        attempt.responded_at = now
        self.supersede_pending(attempt.session_id, keep_attempt_id=attempt.id)
        logger.info(f"✅ Attempt {attempt.id}: tutor {attempt.tutor_id} won session {attempt.session_id}")
        return OutreachResolution(OutreachOutcome.CONFIRMED, attempt)

    def _replay(self, attempt: OutreachAttempt, response: OutreachResponse, target: AttemptStatus) -> OutreachResolution:
        """A repeated answer to a resolved attempt, e.g. a retry after a network timeout"""
        if attempt.status == target.value:
            if response == OutreachResponse.ACCEPTED:
                outcome = OutreachOutcome.CONFIRMED
            elif self._all_resolved_without_winner(attempt.session_id):
                outcome = OutreachOutcome.EXHAUSTED
            else:
                outcome = OutreachOutcome(response.value)
            return OutreachResolution(outcome, attempt, replayed=True)

        if attempt.status == AttemptStatus.SUPERSEDED.value and response == OutreachResponse.ACCEPTED:
            return OutreachResolution(OutreachOutcome.ALREADY_ASSIGNED, attempt, replayed=True)

        raise InvalidTransition(
            f"Outreach attempt {attempt.id} is already {attempt.status}",
            context={"attempt_id": attempt.id, "status": attempt.status},
        )

    def _all_resolved_without_winner(self, session_id: int) -> bool:
        attempts = self.attempts_for(session_id)
        if not attempts:
            return False
        if any(a.status == AttemptStatus.ACCEPTED.value for a in attempts):
            return False
        return all(a.is_terminal for a in attempts)

    def supersede_pending(self, session_id: int, keep_attempt_id: Optional[int] = None) -> int:
        count = 0
        now = self.clock.now()
        for attempt in self.attempts_for(session_id):
            if attempt.id == keep_attempt_id or attempt.status != AttemptStatus.PENDING.value:
                continue
            attempt.status = AttemptStatus.SUPERSEDED.value
            attempt.responded_at = now
            count += 1
        self.db.flush()
        return count

    def accept_for_tutor(self, session: TrialSession, tutor_id: int) -> OutreachAttempt:
        """
        Manual assignment: the chosen tutor's pending attempt (created if missing)
        becomes the accepted one and all others are superseded.
        """
        current = self.accepted_attempt(session.id)
        if current is not None and current.tutor_id != tutor_id:
            raise InvalidTransition(
                f"Session {session.id} already accepted by tutor {current.tutor_id}"
            )
        if current is not None:
            return current

        attempt = next(
            (
                a
                for a in self.attempts_for(session.id)
                if a.tutor_id == tutor_id and a.status == AttemptStatus.PENDING.value
            ),
            None,
        )
        now = self.clock.now()
        if attempt is None:
            attempt = OutreachAttempt(session_id=session.id, tutor_id=tutor_id, created_at=now)
            self.db.add(attempt)
        attempt.status = AttemptStatus.ACCEPTED.value
        attempt.responded_at = now
        self.db.flush()
        self.supersede_pending(session.id, keep_attempt_id=attempt.id)
        return attempt

    def withdraw_accepted(self, session_id: int, tutor_id: int) -> Optional[OutreachAttempt]:
        attempt = self.accepted_attempt(session_id)
        if attempt is None or attempt.tutor_id != tutor_id:
            return None
        attempt.status = AttemptStatus.WITHDRAWN.value
        attempt.responded_at = self.clock.now()
        self.db.flush()
        return attempt

    def clear(self, session_id: int) -> int:
        deleted = (
            self.db.query(OutreachAttempt)
            .filter(OutreachAttempt.session_id == session_id)
            .delete(synchronize_session=False)
        )
        self.db.flush()
        self.db.expire_all()
        return deleted
