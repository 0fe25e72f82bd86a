"""Reschedule domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class RescheduleRespondRequest(BaseModel):
    """accepted | declined"""

    response: str
    tutorId: int


class RescheduleResolveRequest(BaseModel):
    approve: bool
    adminId: str


class RescheduleRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: int
    lesson_id: Optional[int] = None
    requester_type: str
    requester_id: Optional[str] = None
    reason: Optional[str] = None
    original_datetime: datetime
    requested_datetime: datetime
    priority_tutor_id: Optional[int] = None
    priority_response_deadline: Optional[datetime] = None
    status: str
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    created_at: datetime


class RescheduleRespondResponse(BaseModel):
    request: RescheduleRequestResponse
    matchedTutors: list[dict] = []


class RescheduleListResponse(BaseModel):
    requests: list[RescheduleRequestResponse]
    counts: dict[str, int]
