"""
Match ranker

Filters the approved tutor pool down to tutors who can take a session and
orders them by:

1. composite score, highest first
2. travel time, shortest first (unknown travel time after any known time)
3. tutor id, ascending

The last key makes the order total, so the same pool and the same session
always produce the same list. An empty list is a normal result; the caller
decides whether that means the session failed.

Waitlisted tutors asked for this particular session, so for them joining
counts as opting in to a short in-person trial. Every other filter applies.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...config import SHORT_TRIAL_THRESHOLD_MINUTES
from ...enums import LocationType
from ...models import TrialSession, Tutor
from ...services.travel_time_service import TravelEstimate, TravelTimeService
from ..tutors.repository import TutorRepository
from ..tutors.scoring import composite_score
from ..waitlist.service import WaitlistManager

logger = logging.getLogger(__name__)

SOURCE_RANKED = "ranked"
SOURCE_WAITLIST = "waitlist"


@dataclass(frozen=True)
class SessionRequirements:
    subject_ids: frozenset
    location: str
    location_type: LocationType
    # (start, end) of every lesson, earliest first
    windows: tuple
    duration_minutes: int

    @property
    def is_short_in_person(self) -> bool:
        return (
            self.location_type != LocationType.ONLINE
            and self.duration_minutes < SHORT_TRIAL_THRESHOLD_MINUTES
        )

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return any(start < lesson_end and end > lesson_start for lesson_start, lesson_end in self.windows)

    @classmethod
    def from_session(cls, session: TrialSession) -> "SessionRequirements":
        lessons = sorted(session.lessons, key=lambda item: item.scheduled_at)
        return cls(
            subject_ids=frozenset(item.subject_id for item in lessons),
            location=session.location,
            location_type=LocationType(session.location_type),
            windows=tuple(
                (item.scheduled_at, item.scheduled_at + timedelta(minutes=item.duration_minutes))
                for item in lessons
            ),
            # the shortest lesson decides whether the trial counts as short
            duration_minutes=min((item.duration_minutes for item in lessons), default=60),
        )


@dataclass(frozen=True)
class RankedCandidate:
    tutor_id: int
    full_name: str
    suburb: Optional[str]
    composite_score: float
    travel: TravelEstimate
    source: str = SOURCE_RANKED

    def sort_key(self):
        travel_minutes = self.travel.minutes if self.travel.minutes is not None else math.inf
        return (-self.composite_score, travel_minutes, self.tutor_id)

    def to_payload(self) -> dict:
        return {
            "id": self.tutor_id,
            "full_name": self.full_name,
            "suburb": self.suburb,
            "travelTimeText": self.travel.text,
            "travelTimeMinutes": self.travel.minutes,
            "composite_score": self.composite_score,
            "source": self.source,
        }


class MatchRanker:
    def __init__(self, db: Session, travel_time_service: Optional[TravelTimeService] = None):
        self.db = db
        self.travel = travel_time_service or TravelTimeService()
        self.tutors = TutorRepository()
        self.waitlist = WaitlistManager(db)

    @staticmethod
    def is_eligible(tutor: Tutor, requirements: SessionRequirements, opted_in: bool = False) -> bool:
        if not tutor.profile_complete:
            return False
        if not requirements.subject_ids.issubset(tutor.subject_ids):
            return False
        if requirements.is_short_in_person and not (opted_in or tutor.accepts_short_face_to_face_trials):
            return False
        return not any(requirements.overlaps(block.start_time, block.end_time) for block in tutor.unavailability)

    def _estimate(self, tutor: Tutor, requirements: SessionRequirements) -> TravelEstimate:
        if requirements.location_type == LocationType.ONLINE:
            return TravelEstimate(minutes=0, text="Online")
        return self.travel.lookup(tutor.suburb, requirements.location)

    def rank(
        self,
        requirements: SessionRequirements,
        exclude_tutor_ids: Iterable[int] = (),
        only_tutor_ids: Optional[Iterable[int]] = None,
        source: str = SOURCE_RANKED,
    ) -> list[RankedCandidate]:
        excluded = set(exclude_tutor_ids)
        allowed = set(only_tutor_ids) if only_tutor_ids is not None else None

        candidates = []
        for tutor in self.tutors.get_approved_tutors(self.db):
            if tutor.id in excluded:
                continue
            if allowed is not None and tutor.id not in allowed:
                continue
            if not self.is_eligible(tutor, requirements, opted_in=source == SOURCE_WAITLIST):
                continue
            candidates.append(
                RankedCandidate(
                    tutor_id=tutor.id,
                    full_name=tutor.full_name,
                    suburb=tutor.suburb,
                    composite_score=composite_score(
                        tutor.score_success, tutor.score_reliability, tutor.score_availability
                    ),
                    travel=self._estimate(tutor, requirements),
                    source=source,
                )
            )

        candidates.sort(key=RankedCandidate.sort_key)
        return candidates

    def rank_waitlist(self, session: TrialSession, exclude_tutor_ids: Iterable[int] = ()) -> list[RankedCandidate]:
        waitlisted = self.waitlist.tutor_ids(session.id)
        if not waitlisted:
            return []
        return self.rank(
            SessionRequirements.from_session(session),
            exclude_tutor_ids=exclude_tutor_ids,
            only_tutor_ids=waitlisted,
            source=SOURCE_WAITLIST,
        )

    def rank_for_session(self, session: TrialSession, exclude_tutor_ids: Iterable[int] = ()) -> list[RankedCandidate]:
        """Primary ranked pool, falling back to the session's waitlist when it is empty"""
        if not session.lessons:
            logger.warning(f"⚠️ Session {session.id} has no lessons, nothing to match")
            return []

        excluded = set(exclude_tutor_ids)
        ranked = self.rank(SessionRequirements.from_session(session), exclude_tutor_ids=excluded)
        if ranked:
            logger.info(f"🎯 Session {session.id}: {len(ranked)} ranked candidates")
            return ranked

        fallback = self.rank_waitlist(session, exclude_tutor_ids=excluded)
        logger.info(f"🎯 Session {session.id}: primary pool empty, {len(fallback)} waitlist candidates")
        return fallback
