"""Outreach domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class OutreachRespondRequest(BaseModel):
    """accepted | declined | require_different_time"""

    response: str


class AttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: int
    tutor_id: int
    status: str
    responded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class OutreachRespondResponse(BaseModel):
    outcome: str
    message: str
    attempt: AttemptResponse
    sessionStatus: str
    assignedTutorId: Optional[int] = None
