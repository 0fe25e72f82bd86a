"""
Cancellation penalty engine

When a confirmed tutor cancels, the engine works out how much notice they
gave, asks the sentiment scorer how genuine the reason sounds, derives a
provisional penalty and deducts it from the tutor's reliability score.
Admins can later replace the penalty; only the difference is applied.
"""

import logging
import math
from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...exceptions import InvalidTransition, NotFound, ValidationError
from ...models import CancellationAnalysis, TrialSession, Tutor
from ...services.sentiment_service import SentimentResult, SentimentService
from ...shared.clock import Clock, system_clock
from ...shared.locks import KeyedLockRegistry, session_locks, tutor_locks
from ...shared.validators import require_reason
from ..tutors.repository import TutorRepository
from ..tutors.service import TutorService
from .penalty import calculate_penalty, notice_hours_between, penalty_severity

logger = logging.getLogger(__name__)


class CancellationPenaltyEngine:
    def __init__(
        self,
        db: Session,
        sentiment_service: Optional[SentimentService] = None,
        clock: Clock = system_clock,
        locks: KeyedLockRegistry = session_locks,
        tutor_lock_registry: KeyedLockRegistry = tutor_locks,
    ):
        self.db = db
        self.sentiment = sentiment_service or SentimentService()
        self.clock = clock
        self.locks = locks
        self.tutors = TutorService(db, clock, tutor_lock_registry)

    def get_analysis(self, analysis_id: int) -> CancellationAnalysis:
        analysis = (
            self.db.query(CancellationAnalysis).filter(CancellationAnalysis.id == analysis_id).first()
        )
        if not analysis:
            raise NotFound(f"Cancellation analysis {analysis_id} not found")
        return analysis

    def score_reason(self, reason_text: Optional[str]) -> SentimentResult:
        """External call; run it before taking any lock"""
        return self.sentiment.score(reason_text or "")

    def analyze(
        self,
        session: TrialSession,
        tutor: Tutor,
        reason_text: Optional[str],
        cancellation_time: datetime,
        sentiment: SentimentResult,
    ) -> CancellationAnalysis:
        """
        Record a cancellation and apply the provisional penalty.
        Caller owns the transaction and holds the tutor lock; tutor comes
        from TutorService.get_tutor_for_update().
        """
        lesson = session.first_lesson
        if lesson is None:
            raise InvalidTransition(f"Session {session.id} has no scheduled lesson to cancel")

        notice_hours = notice_hours_between(lesson.scheduled_at, cancellation_time)
        penalty = calculate_penalty(notice_hours, sentiment.score)

        analysis = CancellationAnalysis(
            session_id=session.id,
            tutor_id=tutor.id,
            reason_text=reason_text,
            cancelled_at=cancellation_time,
            scheduled_lesson_at=lesson.scheduled_at,
            notice_hours=notice_hours,
            ai_sentiment_score=sentiment.score,
            ai_reasoning=sentiment.reasoning,
            sentiment_fallback=sentiment.fallback,
            calculated_penalty=penalty,
            admin_override=False,
        )
        self.db.add(analysis)
        self.tutors.adjust_reliability(tutor, -penalty)
        self.db.flush()

        logger.info(
            f"📉 Cancellation by tutor {tutor.id} on session {session.id}: "
            f"notice={notice_hours:.1f}h sentiment={sentiment.score:.2f} "
            f"penalty={penalty:.2f} ({penalty_severity(penalty)})"
            + (" [sentiment fallback]" if sentiment.fallback else "")
        )
        return analysis

    def override(
        self, analysis_id: int, override_penalty, reason: Optional[str], admin_id: str
    ) -> CancellationAnalysis:
        """
        Replace the effective penalty. Reliability moves by the difference
        between the old and new penalty, so repeating the same override
        changes nothing but the audit trail.
        """
        reason = require_reason(reason)
        try:
            new_penalty = float(override_penalty)
        except (TypeError, ValueError) as e:
            raise ValidationError("overridePenalty must be a number") from e
        if not math.isfinite(new_penalty):
            raise ValidationError("overridePenalty must be a finite number")

        analysis = self.get_analysis(analysis_id)
        with self.tutors.locks.hold(analysis.tutor_id), self.locks.hold(analysis.session_id):
            try:
                self.db.refresh(analysis)
                tutor = self.tutors.get_tutor_for_update(analysis.tutor_id)
                previous = analysis.effective_penalty
                delta = new_penalty - previous

                if delta:
                    self.tutors.adjust_reliability(tutor, -delta)

                now = self.clock.now()
                analysis.final_penalty = new_penalty
                analysis.admin_override = True
                analysis.override_reason = reason
                analysis.overridden_by = str(admin_id)
                analysis.overridden_at = now

                TutorRepository.add_log(
                    self.db,
                    message=(
                        f"Admin {admin_id} overrode cancellation penalty #{analysis.id} for "
                        f"{tutor.full_name}: {previous:.2f} → {new_penalty:.2f} | Reason: {reason}"
                    ),
                    level="INFO",
                    action="cancellation_penalty_override",
                    actor_id=str(admin_id),
                    tutor_id=tutor.id,
                    details={
                        "analysis_id": analysis.id,
                        "previous_penalty": previous,
                        "new_penalty": new_penalty,
                        "reliability_delta": -delta,
                        "reason": reason,
                    },
                    created_at=now,
                )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(analysis)
        logger.info(f"✅ Penalty override on analysis {analysis.id}: {previous:.2f} → {new_penalty:.2f}")
        return analysis

    def list_with_stats(self) -> dict:
        analyses = (
            self.db.query(CancellationAnalysis)
            .order_by(CancellationAnalysis.created_at.desc(), CancellationAnalysis.id.desc())
            .all()
        )
        total = len(analyses)
        avg_penalty = sum(a.effective_penalty for a in analyses) / total if total else 0.0
        overrides = (
            self.db.query(func.count(CancellationAnalysis.id))
            .filter(CancellationAnalysis.admin_override.is_(True))
            .scalar()
        )
        return {
            "analyses": analyses,
            "totalAnalyses": total,
            "avgPenalty": avg_penalty,
            "overrideCount": overrides or 0,
        }
