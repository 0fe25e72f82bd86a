"""Tutor domain schemas - Pydantic models for validation"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TutorScoreUpdate(BaseModel):
    """Manual score update from the performance screen"""

    score_success: float
    score_reliability: float
    score_availability: float
    reason: Optional[str] = None
    adminId: str = Field(..., min_length=1)


class TutorScoreResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    full_name: str
    suburb: Optional[str] = None
    approval_status: str
    score_success: float
    score_reliability: float
    score_availability: float
    composite_score: float


class TutorPerformanceResponse(BaseModel):
    tutors: list[TutorScoreResponse]
    avgSuccess: float
    avgReliability: float
    avgAvailability: float
