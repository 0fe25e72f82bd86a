"""Outreach router - tutor answers to trial offers"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...database import get_db
from ..sessions.dependencies import get_state_machine
from ..sessions.service import SessionStateMachine
from .schemas import AttemptResponse, OutreachRespondRequest, OutreachRespondResponse
from .service import OutreachCoordinator, OutreachOutcome

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/outreach-attempts", tags=["Outreach"])

OUTCOME_MESSAGES = {
    OutreachOutcome.CONFIRMED: "You have successfully accepted the trial.",
    OutreachOutcome.ALREADY_ASSIGNED: "Thanks for responding - this trial has already been filled.",
    OutreachOutcome.DECLINED: "You have declined the trial.",
    OutreachOutcome.REQUIRE_DIFFERENT_TIME: "Thanks - we've noted that you need a different time.",
    OutreachOutcome.EXHAUSTED: "You have declined the trial.",
}


@router.get("/flagged", response_model=list[AttemptResponse])
def get_flagged_attempts(db: Session = Depends(get_db)):
    """Attempts where the tutor asked for a different time"""
    attempts = OutreachCoordinator(db).flagged_for_different_time()
    return [AttemptResponse.model_validate(a) for a in attempts]


@router.post("/{attempt_id}/respond", response_model=OutreachRespondResponse)
def respond_to_outreach(
    attempt_id: int,
    data: OutreachRespondRequest,
    machine: SessionStateMachine = Depends(get_state_machine),
):
    """
    Record a tutor's answer. Losing an acceptance race is not an error:
    the response is 200 with outcome "already_assigned".
    """
    resolution, session = machine.respond_to_outreach(attempt_id, data.response)
    return OutreachRespondResponse(
        outcome=resolution.outcome.value,
        message=OUTCOME_MESSAGES[resolution.outcome],
        attempt=AttemptResponse.model_validate(resolution.attempt),
        sessionStatus=session.status,
        assignedTutorId=session.assigned_tutor_id,
    )
