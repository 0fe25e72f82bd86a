"""Session domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from ...enums import SessionStatus
from ...shared.clock import to_naive_utc
from ..cancellations.schemas import CancellationAnalysisResponse
from .states import feedback_type, next_action


class LessonCreate(BaseModel):
    subjectId: int
    studentName: str
    studentGrade: Optional[str] = None
    scheduledAt: datetime
    timezone: Optional[str] = None
    durationMinutes: int = 60

    def to_model_data(self) -> dict:
        data = {
            "subject_id": self.subjectId,
            "student_name": self.studentName,
            "student_grade": self.studentGrade,
            "scheduled_at": to_naive_utc(self.scheduledAt),
            "duration_minutes": self.durationMinutes,
        }
        if self.timezone:
            data["timezone"] = self.timezone
        return data


class SessionCreate(BaseModel):
    parentName: str
    parentEmail: Optional[str] = None
    parentPhone: Optional[str] = None
    location: str
    lessons: list[LessonCreate] = Field(min_length=1)


class TutorRef(BaseModel):
    id: int


class StartOutreachRequest(BaseModel):
    """The client sends back either tutor ids or the matchedTutors objects it was given"""

    matchedTutors: list[Union[int, TutorRef]]

    def tutor_ids(self) -> list[int]:
        return [t if isinstance(t, int) else t.id for t in self.matchedTutors]


class TutorIdRequest(BaseModel):
    tutorId: int


class ReasonRequest(BaseModel):
    reason: Optional[str] = None


class DiagnosticRequest(BaseModel):
    tutorId: int
    assessment: str
    suggestions: str


class ReflectionRequest(BaseModel):
    tutorId: int
    reflection: str
    plan: str


class CancelRequest(BaseModel):
    cancelingTutorId: int
    reason: Optional[str] = None


class RescheduleCreateRequest(BaseModel):
    newDateTime: datetime
    reason: Optional[str] = None
    requesterId: Optional[str] = None
    requesterType: str
    priorityTutorId: Optional[int] = None
    lessonId: Optional[int] = None

    @field_validator("newDateTime")
    @classmethod
    def normalize_datetime(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @field_validator("requesterId", mode="before")
    @classmethod
    def stringify_requester(cls, v):
        return str(v) if v is not None else v


class LessonResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lesson_number: int
    subject_id: int
    student_name: str
    student_grade: Optional[str] = None
    scheduled_at: datetime
    timezone: str
    duration_minutes: int
    diagnostic_assessment: Optional[str] = None
    diagnostic_suggestions: Optional[str] = None
    diagnostic_submitted_at: Optional[datetime] = None
    reflection_summary: Optional[str] = None
    reflection_plan: Optional[str] = None
    reflection_submitted_at: Optional[datetime] = None


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    parent_name: str
    parent_email: Optional[str] = None
    parent_phone: Optional[str] = None
    location: str
    location_type: str
    status: str
    assigned_tutor_id: Optional[int] = None
    failure_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None
    lessons: list[LessonResponse] = []

    @computed_field
    @property
    def next_action(self) -> Optional[str]:
        return next_action(SessionStatus(self.status))

    @computed_field
    @property
    def feedback_type(self) -> Optional[str]:
        return feedback_type(SessionStatus(self.status))


class SessionEnvelope(BaseModel):
    session: SessionResponse


class MatchedTutor(BaseModel):
    id: int
    full_name: str
    suburb: Optional[str] = None
    travelTimeText: str
    travelTimeMinutes: Optional[float] = None
    composite_score: float
    source: str


class MatchResponse(BaseModel):
    matchedTutors: list[MatchedTutor]


class StartOutreachResponse(BaseModel):
    session: SessionResponse
    attemptsCreated: int


class CancelResponse(BaseModel):
    session: SessionResponse
    analysis: CancellationAnalysisResponse
    matchedTutors: list[MatchedTutor] = []


class WaitlistJoinResponse(BaseModel):
    joined: bool
    alreadyAssigned: bool
    alreadyListed: bool = False
