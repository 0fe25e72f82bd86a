"""
Pytest configuration and fixtures.

Every test gets a fresh in-memory SQLite database, a frozen clock and fake
travel time / sentiment providers, so nothing touches the network or sleeps.
"""

from datetime import datetime, timedelta
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from trialmatch import models
from trialmatch.database import Base, get_db
from trialmatch.domain.sessions.service import SessionStateMachine
from trialmatch.enums import ApprovalStatus, LocationType, SessionStatus
from trialmatch.services.sentiment_service import SentimentResult
from trialmatch.services.travel_time_service import TravelEstimate
from trialmatch.shared.clock import FrozenClock

NOW = datetime(2025, 3, 3, 9, 0)


class FakeTravelTimeService:
    """Travel minutes keyed by tutor suburb; unknown suburbs have no estimate"""

    def __init__(self, minutes_by_suburb=None):
        self.minutes_by_suburb = minutes_by_suburb or {}
        self.calls = []

    def lookup(self, origin, destination):
        self.calls.append((origin, destination))
        minutes = self.minutes_by_suburb.get(origin)
        if minutes is None:
            return TravelEstimate.unknown()
        return TravelEstimate(minutes=minutes, text=f"{minutes} mins")


class FakeSentimentService:
    def __init__(self, value=0.5, fallback=False):
        self.value = value
        self.fallback = fallback
        self.texts = []

    def score(self, reason_text):
        self.texts.append(reason_text)
        return SentimentResult(score=self.value, reasoning="test scorer", fallback=self.fallback)


def make_engine(url="sqlite://", **kwargs):
    if url == "sqlite://":
        kwargs.setdefault("poolclass", StaticPool)
    engine = create_engine(url, connect_args={"check_same_thread": False, "timeout": 30}, **kwargs)
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def engine():
    engine = make_engine()
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine) -> Generator[Session, None, None]:
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def travel():
    return FakeTravelTimeService()


@pytest.fixture
def sentiment():
    return FakeSentimentService()


@pytest.fixture
def machine(db, clock, travel, sentiment) -> SessionStateMachine:
    return SessionStateMachine(db, clock=clock, travel_time_service=travel, sentiment_service=sentiment)


@pytest.fixture
def subject(db):
    maths = models.Subject(name="Mathematics", curriculum="NSW", level="Year 10")
    db.add(maths)
    db.commit()
    return maths


@pytest.fixture
def make_tutor(db, subject):
    counter = {"n": 0}

    def _make(
        name=None,
        suburb="Parramatta",
        phone="0400 000 000",
        subjects=None,
        approval=ApprovalStatus.APPROVED,
        accepts_short=False,
        **scores,
    ):
        counter["n"] += 1
        tutor = models.Tutor(
            full_name=name or f"Tutor {counter['n']}",
            email=f"tutor{counter['n']}@example.com",
            suburb=suburb,
            phone_number=phone,
            approval_status=approval,
            accepts_short_face_to_face_trials=accepts_short,
            **scores,
        )
        for item in subjects if subjects is not None else [subject]:
            tutor.subject_links.append(models.TutorSubject(subject_id=item.id))
        db.add(tutor)
        db.commit()
        return tutor

    return _make


@pytest.fixture
def make_session(db, subject):
    def _make(
        scheduled_at=None,
        duration=60,
        location="12 Smith St, Parramatta",
        location_type=LocationType.IN_HOME,
        status=SessionStatus.PENDING,
        lessons=1,
        assigned_tutor_id=None,
    ):
        scheduled_at = scheduled_at or NOW + timedelta(days=3)
        session = models.TrialSession(
            parent_name="Jane Parent",
            parent_email="jane@example.com",
            location=location,
            location_type=location_type,
            status=status,
            assigned_tutor_id=assigned_tutor_id,
        )
        for number in range(lessons):
            session.lessons.append(
                models.TrialLesson(
                    subject_id=subject.id,
                    lesson_number=number + 1,
                    student_name="Sam Student",
                    scheduled_at=scheduled_at + timedelta(days=7 * number),
                    duration_minutes=duration,
                )
            )
        db.add(session)
        db.commit()
        return session

    return _make


@pytest.fixture
def confirmed_session(machine, make_session, make_tutor):
    """A session confirmed with one tutor through outreach"""
    tutor = make_tutor(name="Confirmed Tutor")
    session = make_session()
    _, attempts = machine.start_outreach(session.id, [tutor.id])
    machine.respond_to_outreach(attempts[0].id, "accepted")
    return session, tutor


def words(n: int) -> str:
    return " ".join(f"word{i}" for i in range(n))


@pytest.fixture
def client(db, clock, travel, sentiment):
    from trialmatch.domain.sessions import dependencies
    from trialmatch.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[dependencies.get_clock] = lambda: clock
    app.dependency_overrides[dependencies.get_travel_time_service] = lambda: travel
    app.dependency_overrides[dependencies.get_sentiment_service] = lambda: sentiment
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
