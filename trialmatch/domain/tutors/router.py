"""Tutor router - score store endpoints for the admin performance screen"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...database import get_db
from ..outreach.schemas import AttemptResponse
from ..outreach.service import OutreachCoordinator
from .schemas import TutorPerformanceResponse, TutorScoreResponse, TutorScoreUpdate
from .service import TutorService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tutors", tags=["Tutors"])


def get_tutor_service(db: Session = Depends(get_db)) -> TutorService:
    """Dependency injection for TutorService"""
    return TutorService(db)


@router.get("/performance", response_model=TutorPerformanceResponse)
def get_performance(service: TutorService = Depends(get_tutor_service)):
    """All tutors ranked by composite score, with averages"""
    summary = service.performance_summary()
    return TutorPerformanceResponse(
        tutors=[TutorScoreResponse.model_validate(t) for t in summary["tutors"]],
        avgSuccess=summary["avgSuccess"],
        avgReliability=summary["avgReliability"],
        avgAvailability=summary["avgAvailability"],
    )


@router.put("/{tutor_id}/scores", response_model=TutorScoreResponse)
def update_scores(
    tutor_id: int,
    data: TutorScoreUpdate,
    service: TutorService = Depends(get_tutor_service),
):
    """Manually set a tutor's three score components"""
    tutor = service.update_scores(
        tutor_id,
        data.score_success,
        data.score_reliability,
        data.score_availability,
        admin_id=data.adminId,
        reason=data.reason,
    )
    return TutorScoreResponse.model_validate(tutor)


@router.get("/{tutor_id}/outreach-attempts", response_model=list[AttemptResponse])
def get_pending_attempts(tutor_id: int, db: Session = Depends(get_db)):
    """Trial offers awaiting this tutor's answer"""
    attempts = OutreachCoordinator(db).pending_for_tutor(tutor_id)
    return [AttemptResponse.model_validate(a) for a in attempts]
