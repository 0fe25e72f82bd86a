from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func

from .config import DEFAULT_SCORE, DEFAULT_TIMEZONE
from .database import Base
from .domain.tutors.scoring import SCORE_FIELDS, clamp_score, composite_score
from .enums import (
    ApprovalStatus,
    AttemptStatus,
    LocationType,
    RequesterType,
    RescheduleStatus,
    SessionStatus,
    coerce_status,
)
from .exceptions import ValidationError


def _checked(enum_cls, field: str, value) -> str:
    try:
        return coerce_status(enum_cls, value)
    except ValueError as e:
        raise ValidationError(f"Invalid {field}: {value!r}") from e


class Subject(Base):
    __tablename__ = "subjects"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    curriculum = Column(String(100), nullable=True)  # e.g. NSW, IB
    level = Column(String(100), nullable=True)  # e.g. Year 11


class Tutor(Base):
    __tablename__ = "tutors"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=True)
    phone_number = Column(String(50), nullable=True)
    suburb = Column(String(255), nullable=True)
    approval_status = Column(String(20), default=ApprovalStatus.PENDING.value, nullable=False)
    accepts_short_face_to_face_trials = Column(Boolean, default=False, nullable=False)

    # Ranking inputs, each clamped to [0, 10]; composite is their product
    score_success = Column(Float, default=DEFAULT_SCORE, nullable=False)
    score_reliability = Column(Float, default=DEFAULT_SCORE, nullable=False)
    score_availability = Column(Float, default=DEFAULT_SCORE, nullable=False)
    composite_score = Column(Float, default=DEFAULT_SCORE**3, nullable=False, index=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    subject_links = relationship("TutorSubject", back_populates="tutor", cascade="all, delete-orphan")
    unavailability = relationship(
        "TutorUnavailability", back_populates="tutor", cascade="all, delete-orphan"
    )

    @validates(*SCORE_FIELDS)
    def _validate_score(self, key, value):
        value = clamp_score(value)
        scores = {field: getattr(self, field) for field in SCORE_FIELDS}
        scores[key] = value
        # Recomputed in the same write as the component
        self.composite_score = composite_score(
            scores["score_success"], scores["score_reliability"], scores["score_availability"]
        )
        return value

    @validates("approval_status")
    def _validate_approval_status(self, key, value):
        return _checked(ApprovalStatus, key, value)

    @property
    def subject_ids(self) -> set:
        return {link.subject_id for link in self.subject_links}

    @property
    def profile_complete(self) -> bool:
        return bool(self.suburb and self.phone_number)


class TutorSubject(Base):
    __tablename__ = "tutor_subjects"
    __table_args__ = (UniqueConstraint("tutor_id", "subject_id", name="uq_tutor_subject"),)

    id = Column(Integer, primary_key=True, index=True)
    tutor_id = Column(Integer, ForeignKey("tutors.id", ondelete="CASCADE"), nullable=False, index=True)
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=False, index=True)

    tutor = relationship("Tutor", back_populates="subject_links")
    subject = relationship("Subject")


class TutorUnavailability(Base):
    """A blocked-out period during which the tutor cannot take lessons"""

    __tablename__ = "tutor_unavailability"

    id = Column(Integer, primary_key=True, index=True)
    tutor_id = Column(Integer, ForeignKey("tutors.id", ondelete="CASCADE"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)

    tutor = relationship("Tutor", back_populates="unavailability")


class TrialSession(Base):
    __tablename__ = "trial_sessions"

    id = Column(Integer, primary_key=True, index=True)
    parent_name = Column(String(255), nullable=False)
    parent_email = Column(String(255), nullable=True)
    parent_phone = Column(String(50), nullable=True)

    location = Column(Text, nullable=False)
    location_type = Column(String(20), default=LocationType.IN_HOME.value, nullable=False)

    assigned_tutor_id = Column(Integer, ForeignKey("tutors.id"), nullable=True, index=True)

    # Only SessionStateMachine writes this column
    status = Column(String(60), default=SessionStatus.PENDING.value, nullable=False, index=True)
    failure_reason = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    assigned_tutor = relationship("Tutor")
    lessons = relationship(
        "TrialLesson",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="TrialLesson.scheduled_at",
    )
    outreach_attempts = relationship(
        "OutreachAttempt", back_populates="session", cascade="all, delete-orphan"
    )
    reschedule_requests = relationship(
        "RescheduleRequest", back_populates="session", cascade="all, delete-orphan"
    )
    waitlist_entries = relationship(
        "WaitlistEntry", back_populates="session", cascade="all, delete-orphan"
    )

    @validates("status")
    def _validate_status(self, key, value):
        return _checked(SessionStatus, key, value)

    @validates("location_type")
    def _validate_location_type(self, key, value):
        return _checked(LocationType, key, value)

    @property
    def status_enum(self) -> SessionStatus:
        return SessionStatus(self.status)

    @property
    def first_lesson(self):
        return self.lessons[0] if self.lessons else None


class TrialLesson(Base):
    __tablename__ = "trial_lessons"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer, ForeignKey("trial_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subject_id = Column(Integer, ForeignKey("subjects.id"), nullable=False)
    lesson_number = Column(Integer, default=1, nullable=False)
    student_name = Column(String(255), nullable=False)
    student_grade = Column(String(50), nullable=True)

    scheduled_at = Column(DateTime, nullable=False)  # UTC
    timezone = Column(String(64), default=DEFAULT_TIMEZONE, nullable=False)
    duration_minutes = Column(Integer, default=60, nullable=False)

    # Feedback (the only fields writable once the session is settled)
    diagnostic_assessment = Column(Text, nullable=True)
    diagnostic_suggestions = Column(Text, nullable=True)
    diagnostic_submitted_at = Column(DateTime, nullable=True)
    reflection_summary = Column(Text, nullable=True)
    reflection_plan = Column(Text, nullable=True)
    reflection_submitted_at = Column(DateTime, nullable=True)

    session = relationship("TrialSession", back_populates="lessons")
    subject = relationship("Subject")


class OutreachAttempt(Base):
    __tablename__ = "outreach_attempts"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer, ForeignKey("trial_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tutor_id = Column(Integer, ForeignKey("tutors.id"), nullable=False, index=True)
    status = Column(String(30), default=AttemptStatus.PENDING.value, nullable=False, index=True)
    responded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    session = relationship("TrialSession", back_populates="outreach_attempts")
    tutor = relationship("Tutor")

    @validates("status")
    def _validate_status(self, key, value):
        return _checked(AttemptStatus, key, value)

    @property
    def is_terminal(self) -> bool:
        return self.status != AttemptStatus.PENDING.value


class RescheduleRequest(Base):
    __tablename__ = "reschedule_requests"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer, ForeignKey("trial_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    lesson_id = Column(Integer, ForeignKey("trial_lessons.id"), nullable=True)

    requester_type = Column(String(20), nullable=False)
    requester_id = Column(String(255), nullable=True)
    reason = Column(Text, nullable=True)

    original_datetime = Column(DateTime, nullable=False)
    requested_datetime = Column(DateTime, nullable=False)

    # Weak reference: no FK so tutor removal never cascades into history
    priority_tutor_id = Column(Integer, nullable=True, index=True)
    priority_response_deadline = Column(DateTime, nullable=True, index=True)

    status = Column(String(20), default=RescheduleStatus.PENDING.value, nullable=False, index=True)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, nullable=False)

    session = relationship("TrialSession", back_populates="reschedule_requests")
    lesson = relationship("TrialLesson")

    @validates("status")
    def _validate_status(self, key, value):
        return _checked(RescheduleStatus, key, value)

    @validates("requester_type")
    def _validate_requester_type(self, key, value):
        return _checked(RequesterType, key, value)


class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"
    __table_args__ = (UniqueConstraint("session_id", "tutor_id", name="uq_waitlist_session_tutor"),)

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        Integer, ForeignKey("trial_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tutor_id = Column(Integer, ForeignKey("tutors.id"), nullable=False, index=True)
    joined_at = Column(DateTime, nullable=False)

    session = relationship("TrialSession", back_populates="waitlist_entries")
    tutor = relationship("Tutor")


class CancellationAnalysis(Base):
    __tablename__ = "cancellation_analyses"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("trial_sessions.id"), nullable=False, index=True)
    tutor_id = Column(Integer, ForeignKey("tutors.id"), nullable=False, index=True)

    reason_text = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=False)
    scheduled_lesson_at = Column(DateTime, nullable=False)
    notice_hours = Column(Float, nullable=False)  # negative when cancelled after lesson start

    ai_sentiment_score = Column(Float, nullable=False)
    ai_reasoning = Column(Text, nullable=True)
    sentiment_fallback = Column(Boolean, default=False, nullable=False)

    calculated_penalty = Column(Float, nullable=False)
    final_penalty = Column(Float, nullable=True)
    admin_override = Column(Boolean, default=False, nullable=False)
    override_reason = Column(Text, nullable=True)
    overridden_by = Column(String(255), nullable=True)
    overridden_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    session = relationship("TrialSession")
    tutor = relationship("Tutor")

    @property
    def effective_penalty(self) -> float:
        return self.final_penalty if self.final_penalty is not None else self.calculated_penalty


class AdminLog(Base):
    """Audit trail for admin actions on tutor scores and penalties"""

    __tablename__ = "logs"

    id = Column(Integer, primary_key=True, index=True)
    message = Column(Text, nullable=False)
    level = Column(String(20), default="INFO", nullable=False)
    action = Column(String(100), nullable=False, index=True)
    actor_id = Column(String(255), nullable=True)
    tutor_id = Column(Integer, nullable=True, index=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False)
