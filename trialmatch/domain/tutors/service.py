"""Tutor score store - the only place tutor score components are written"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...exceptions import NotFound
from ...models import Tutor
from ...shared.clock import Clock, system_clock
from ...shared.locks import KeyedLockRegistry, tutor_locks
from .repository import TutorRepository
from .scoring import SCORE_FIELDS, effective_score, validate_score_input

logger = logging.getLogger(__name__)


class TutorService:
    """Service layer for tutor scores"""

    def __init__(self, db: Session, clock: Clock = system_clock, locks: KeyedLockRegistry = tutor_locks):
        self.db = db
        self.clock = clock
        self.locks = locks
        self.repo = TutorRepository()

    def get_tutor(self, tutor_id: int) -> Tutor:
        tutor = self.repo.get_tutor(self.db, tutor_id)
        if not tutor:
            raise NotFound(f"Tutor {tutor_id} not found")
        return tutor

    def get_tutor_for_update(self, tutor_id: int) -> Tutor:
        """Re-read the tutor row for a score write. Caller holds the tutor lock."""
        tutor = self.repo.get_tutor_for_update(self.db, tutor_id)
        if not tutor:
            raise NotFound(f"Tutor {tutor_id} not found")
        return tutor

    def update_scores(
        self,
        tutor_id: int,
        score_success,
        score_reliability,
        score_availability,
        admin_id: str,
        reason: Optional[str] = None,
    ) -> Tutor:
        """Admin manual score update, audited with old and new values"""
        new_scores = {
            "score_success": validate_score_input("score_success", score_success),
            "score_reliability": validate_score_input("score_reliability", score_reliability),
            "score_availability": validate_score_input("score_availability", score_availability),
        }

        with self.locks.hold(tutor_id):
            try:
                tutor = self.get_tutor_for_update(tutor_id)
                old_scores = {field: getattr(tutor, field) for field in SCORE_FIELDS}

                for field, value in new_scores.items():
                    setattr(tutor, field, value)

                message = (
                    f"Admin {admin_id} manually updated scores for {tutor.full_name}. "
                    f"Changes: success: {old_scores['score_success']} → {new_scores['score_success']}, "
                    f"reliability: {old_scores['score_reliability']} → {new_scores['score_reliability']}, "
                    f"availability: {old_scores['score_availability']} → {new_scores['score_availability']}"
                    + (f" | Reason: {reason}" if reason else "")
                )
                self.repo.add_log(
                    self.db,
                    message=message,
                    level="INFO",
                    action="manual_score_update",
                    actor_id=str(admin_id),
                    tutor_id=tutor.id,
                    details={"reason": reason, "old_scores": old_scores, "new_scores": new_scores},
                    created_at=self.clock.now(),
                )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(tutor)
        logger.info(f"✅ Scores updated for tutor {tutor.id}: composite={tutor.composite_score:.1f}")
        return tutor

    def adjust_reliability(self, tutor: Tutor, delta: float) -> float:
        """
        Apply an outcome-event delta to reliability (clamped by the model).

        The tutor must come from get_tutor_for_update() with the tutor lock
        held until the caller commits, otherwise a concurrent write is lost.
        """
        before = effective_score(tutor.score_reliability)
        tutor.score_reliability = before + delta
        logger.info(
            f"📉 Tutor {tutor.id} reliability {before:.2f} → {tutor.score_reliability:.2f} "
            f"(delta {delta:+.2f}), composite={tutor.composite_score:.1f}"
        )
        return tutor.score_reliability

    def performance_summary(self) -> dict:
        tutors = self.repo.list_for_performance(self.db)
        count = len(tutors)

        def average(field: str) -> float:
            if not count:
                return 5.0
            return sum(effective_score(getattr(t, field)) for t in tutors) / count

        return {
            "tutors": tutors,
            "avgSuccess": average("score_success"),
            "avgReliability": average("score_reliability"),
            "avgAvailability": average("score_availability"),
        }
