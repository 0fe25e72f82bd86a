"""Cancellation domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, computed_field

from .penalty import penalty_severity


class PenaltyOverrideRequest(BaseModel):
    overridePenalty: float
    overrideReason: Optional[str] = None
    adminId: str


class CancellationAnalysisResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: int
    tutor_id: int
    reason_text: Optional[str] = None
    cancelled_at: datetime
    scheduled_lesson_at: datetime
    notice_hours: float
    ai_sentiment_score: float
    ai_reasoning: Optional[str] = None
    sentiment_fallback: bool
    calculated_penalty: float
    final_penalty: Optional[float] = None
    admin_override: bool
    override_reason: Optional[str] = None
    overridden_by: Optional[str] = None
    overridden_at: Optional[datetime] = None

    @computed_field
    @property
    def effective_penalty(self) -> float:
        return self.final_penalty if self.final_penalty is not None else self.calculated_penalty

    @computed_field
    @property
    def severity(self) -> str:
        return penalty_severity(self.effective_penalty)


class CancellationListResponse(BaseModel):
    analyses: list[CancellationAnalysisResponse]
    totalAnalyses: int
    avgPenalty: float
    overrideCount: int
