"""Reschedule router - priority tutor answers and the admin reschedule manager"""

import logging

from fastapi import APIRouter, Depends

from ..sessions.dependencies import get_state_machine
from ..sessions.service import SessionStateMachine
from .schemas import (
    RescheduleListResponse,
    RescheduleRequestResponse,
    RescheduleResolveRequest,
    RescheduleRespondRequest,
    RescheduleRespondResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reschedule-requests", tags=["Reschedules"])


@router.get("", response_model=RescheduleListResponse)
def list_requests(machine: SessionStateMachine = Depends(get_state_machine)):
    """All requests with per-status counts. Lapsed priority windows are expired first."""
    machine.expire_reschedule_windows()
    result = machine.reschedules.list_with_counts()
    return RescheduleListResponse(
        requests=[RescheduleRequestResponse.model_validate(r) for r in result["requests"]],
        counts=result["counts"],
    )


@router.post("/{request_id}/respond", response_model=RescheduleRespondResponse)
def respond_to_request(
    request_id: int,
    data: RescheduleRespondRequest,
    machine: SessionStateMachine = Depends(get_state_machine),
):
    """
    Priority tutor accepts or declines the new time. On decline the session is
    reopened and fresh candidates for the new time are returned.
    """
    request, candidates = machine.respond_to_reschedule(request_id, data.tutorId, data.response)
    return RescheduleRespondResponse(
        request=RescheduleRequestResponse.model_validate(request),
        matchedTutors=[c.to_payload() for c in candidates],
    )


@router.post("/{request_id}/resolve", response_model=RescheduleRequestResponse)
def resolve_request(
    request_id: int,
    data: RescheduleResolveRequest,
    machine: SessionStateMachine = Depends(get_state_machine),
):
    """Admin decision on a request with no priority tutor"""
    request = machine.resolve_reschedule(request_id, data.approve, data.adminId)
    return RescheduleRequestResponse.model_validate(request)
