"""Cancellation analysis router - admin review of tutor cancellations"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...database import get_db
from .schemas import (
    CancellationAnalysisResponse,
    CancellationListResponse,
    PenaltyOverrideRequest,
)
from .service import CancellationPenaltyEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cancellation-analysis", tags=["Cancellations"])


def get_penalty_engine(db: Session = Depends(get_db)) -> CancellationPenaltyEngine:
    """Dependency injection for CancellationPenaltyEngine"""
    return CancellationPenaltyEngine(db)


@router.get("", response_model=CancellationListResponse)
def list_analyses(engine: CancellationPenaltyEngine = Depends(get_penalty_engine)):
    """All cancellation analyses, newest first, with summary stats"""
    result = engine.list_with_stats()
    return CancellationListResponse(
        analyses=[CancellationAnalysisResponse.model_validate(a) for a in result["analyses"]],
        totalAnalyses=result["totalAnalyses"],
        avgPenalty=result["avgPenalty"],
        overrideCount=result["overrideCount"],
    )


@router.get("/{analysis_id}", response_model=CancellationAnalysisResponse)
def get_analysis(analysis_id: int, engine: CancellationPenaltyEngine = Depends(get_penalty_engine)):
    return CancellationAnalysisResponse.model_validate(engine.get_analysis(analysis_id))


@router.post("/{analysis_id}/override", response_model=CancellationAnalysisResponse)
def override_penalty(
    analysis_id: int,
    data: PenaltyOverrideRequest,
    engine: CancellationPenaltyEngine = Depends(get_penalty_engine),
):
    """Replace the calculated penalty; a reason is mandatory"""
    analysis = engine.override(
        analysis_id, data.overridePenalty, data.overrideReason, admin_id=data.adminId
    )
    return CancellationAnalysisResponse.model_validate(analysis)
