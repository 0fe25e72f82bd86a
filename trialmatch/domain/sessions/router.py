"""Session router - FastAPI endpoints for the trial session lifecycle"""

import logging

from fastapi import APIRouter, Depends, status

from ..cancellations.schemas import CancellationAnalysisResponse
from ..reschedules.schemas import RescheduleRequestResponse
from .schemas import (
    CancelRequest,
    CancelResponse,
    DiagnosticRequest,
    MatchedTutor,
    MatchResponse,
    ReasonRequest,
    ReflectionRequest,
    RescheduleCreateRequest,
    SessionCreate,
    SessionEnvelope,
    SessionResponse,
    StartOutreachRequest,
    StartOutreachResponse,
    TutorIdRequest,
    WaitlistJoinResponse,
)
from .dependencies import get_state_machine
from .service import SessionStateMachine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


def _envelope(session) -> SessionEnvelope:
    return SessionEnvelope(session=SessionResponse.model_validate(session))


def _matched(candidates) -> list[MatchedTutor]:
    return [MatchedTutor(**c.to_payload()) for c in candidates]


# ============================================================================
# READ / CREATE
# ============================================================================


@router.get("/{session_id}", response_model=SessionResponse)
def get_session(session_id: int, machine: SessionStateMachine = Depends(get_state_machine)):
    """Session with lessons, plus the next action the UI should offer"""
    return SessionResponse.model_validate(machine.get_session(session_id))


@router.post("", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def create_session(data: SessionCreate, machine: SessionStateMachine = Depends(get_state_machine)):
    session = machine.create_session(
        parent_name=data.parentName,
        location=data.location,
        lessons=[lesson.to_model_data() for lesson in data.lessons],
        parent_email=data.parentEmail,
        parent_phone=data.parentPhone,
    )
    return SessionResponse.model_validate(session)


# ============================================================================
# MATCHING & OUTREACH
# ============================================================================


@router.post("/{session_id}/match", response_model=MatchResponse)
def match_tutors(session_id: int, machine: SessionStateMachine = Depends(get_state_machine)):
    """Ranked candidate tutors; does not change the session"""
    return MatchResponse(matchedTutors=_matched(machine.request_match(session_id)))


@router.post("/{session_id}/start-outreach", response_model=StartOutreachResponse)
def start_outreach(
    session_id: int,
    data: StartOutreachRequest,
    machine: SessionStateMachine = Depends(get_state_machine),
):
    session, attempts = machine.start_outreach(session_id, data.tutor_ids())
    return StartOutreachResponse(
        session=SessionResponse.model_validate(session), attemptsCreated=len(attempts)
    )


@router.post("/{session_id}/assign", response_model=SessionEnvelope)
def assign_tutor(
    session_id: int,
    data: TutorIdRequest,
    machine: SessionStateMachine = Depends(get_state_machine),
):
    return _envelope(machine.assign_tutor(session_id, data.tutorId))


@router.post("/{session_id}/retry-outreach", response_model=SessionEnvelope)
def retry_outreach(session_id: int, machine: SessionStateMachine = Depends(get_state_machine)):
    return _envelope(machine.retry_outreach(session_id))


@router.post("/{session_id}/mark-failed", response_model=SessionEnvelope)
def mark_failed(
    session_id: int,
    data: ReasonRequest,
    machine: SessionStateMachine = Depends(get_state_machine),
):
    return _envelope(machine.mark_failed(session_id, data.reason))


# ============================================================================
# FEEDBACK
# ============================================================================


@router.post("/{session_id}/submit-diagnostic-enhanced", response_model=SessionEnvelope)
def submit_diagnostic(
    session_id: int,
    data: DiagnosticRequest,
    machine: SessionStateMachine = Depends(get_state_machine),
):
    """Trial 1 diagnostic report from the assigned tutor"""
    return _envelope(
        machine.submit_diagnostic(session_id, data.tutorId, data.assessment, data.suggestions)
    )


@router.post("/{session_id}/submit-reflection-enhanced", response_model=SessionEnvelope)
def submit_reflection(
    session_id: int,
    data: ReflectionRequest,
    machine: SessionStateMachine = Depends(get_state_machine),
):
    return _envelope(machine.submit_reflection(session_id, data.tutorId, data.reflection, data.plan))


@router.post("/{session_id}/confirm-continuation", response_model=SessionEnvelope)
def confirm_continuation(session_id: int, machine: SessionStateMachine = Depends(get_state_machine)):
    return _envelope(machine.confirm_continuation(session_id))


# ============================================================================
# WITHDRAWAL, CANCELLATION, WAITLIST, RESCHEDULE
# ============================================================================


@router.post("/{session_id}/withdraw", response_model=SessionEnvelope)
def withdraw(
    session_id: int,
    data: ReasonRequest,
    machine: SessionStateMachine = Depends(get_state_machine),
):
    return _envelope(machine.withdraw(session_id, data.reason))


@router.post("/{session_id}/cancel", response_model=CancelResponse)
def cancel(
    session_id: int,
    data: CancelRequest,
    machine: SessionStateMachine = Depends(get_state_machine),
):
    """Tutor cancellation: penalty recorded, session sent back out"""
    session, analysis, pool = machine.cancel(session_id, data.cancelingTutorId, data.reason)
    return CancelResponse(
        session=SessionResponse.model_validate(session),
        analysis=CancellationAnalysisResponse.model_validate(analysis),
        matchedTutors=_matched(pool),
    )


@router.post("/{session_id}/join-waitlist", response_model=WaitlistJoinResponse)
def join_waitlist(
    session_id: int,
    data: TutorIdRequest,
    machine: SessionStateMachine = Depends(get_state_machine),
):
    result = machine.join_waitlist(session_id, data.tutorId)
    return WaitlistJoinResponse(
        joined=result.joined,
        alreadyAssigned=result.already_assigned,
        alreadyListed=result.already_listed,
    )


@router.post(
    "/{session_id}/reschedule",
    response_model=RescheduleRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_reschedule(
    session_id: int,
    data: RescheduleCreateRequest,
    machine: SessionStateMachine = Depends(get_state_machine),
):
    request = machine.create_reschedule(
        session_id,
        data.newDateTime,
        data.reason,
        data.requesterId,
        data.requesterType,
        priority_tutor_id=data.priorityTutorId,
        lesson_id=data.lessonId,
    )
    return RescheduleRequestResponse.model_validate(request)
