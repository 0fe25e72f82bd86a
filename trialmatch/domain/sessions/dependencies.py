"""FastAPI dependencies shared by the session, outreach and reschedule routers"""

from fastapi import Depends
from sqlalchemy.orm import Session

from ...database import get_db
from ...services.sentiment_service import SentimentService
from ...services.travel_time_service import TravelTimeService
from ...shared.clock import Clock, system_clock
from .service import SessionStateMachine


def get_clock() -> Clock:
    return system_clock


def get_travel_time_service() -> TravelTimeService:
    return TravelTimeService()


def get_sentiment_service() -> SentimentService:
    return SentimentService()


def get_state_machine(
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    travel_time_service: TravelTimeService = Depends(get_travel_time_service),
    sentiment_service: SentimentService = Depends(get_sentiment_service),
) -> SessionStateMachine:
    """Dependency injection for SessionStateMachine"""
    return SessionStateMachine(
        db,
        clock=clock,
        travel_time_service=travel_time_service,
        sentiment_service=sentiment_service,
    )
