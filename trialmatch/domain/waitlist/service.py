"""Waitlist manager - tutors interested in sessions that are not theirs"""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from ...enums import SessionStatus
from ...exceptions import InvalidTransition
from ...models import TrialSession, WaitlistEntry
from ...shared.clock import Clock, system_clock

logger = logging.getLogger(__name__)

CLOSED_STATUSES = {SessionStatus.CANCELLED.value, SessionStatus.AWAITING_SCHEDULE.value}


@dataclass(frozen=True)
class WaitlistJoinResult:
    joined: bool
    already_assigned: bool = False
    already_listed: bool = False


class WaitlistManager:
    def __init__(self, db: Session, clock: Clock = system_clock):
        self.db = db
        self.clock = clock

    def _entry(self, session_id: int, tutor_id: int):
        return (
            self.db.query(WaitlistEntry)
            .filter(WaitlistEntry.session_id == session_id, WaitlistEntry.tutor_id == tutor_id)
            .first()
        )

    def join(self, session: TrialSession, tutor_id: int) -> WaitlistJoinResult:
        """
        Idempotent insert. Joining the waitlist of a session the tutor already
        holds is a successful no-op flagged with already_assigned.
        Caller owns the transaction.
        """
        if session.status in CLOSED_STATUSES:
            raise InvalidTransition(f"Session {session.id} is {session.status}; waitlist is closed")

        if session.assigned_tutor_id == tutor_id:
            logger.info(f"ℹ️ Tutor {tutor_id} already assigned to session {session.id}, waitlist join ignored")
            return WaitlistJoinResult(joined=False, already_assigned=True)

        if self._entry(session.id, tutor_id):
            return WaitlistJoinResult(joined=True, already_listed=True)

        self.db.add(WaitlistEntry(session_id=session.id, tutor_id=tutor_id, joined_at=self.clock.now()))
        self.db.flush()

        logger.info(f"📝 Tutor {tutor_id} joined waitlist for session {session.id}")
        return WaitlistJoinResult(joined=True)

    def leave(self, session_id: int, tutor_id: int) -> bool:
        entry = self._entry(session_id, tutor_id)
        if not entry:
            return False
        self.db.delete(entry)
        return True

    def tutor_ids(self, session_id: int) -> list[int]:
        """Waitlisted tutors in join order"""
        rows = (
            self.db.query(WaitlistEntry.tutor_id)
            .filter(WaitlistEntry.session_id == session_id)
            .order_by(WaitlistEntry.joined_at, WaitlistEntry.id)
            .all()
        )
        return [row.tutor_id for row in rows]
