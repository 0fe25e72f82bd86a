"""Session repository - Database operations for trial sessions"""

from typing import Optional

from sqlalchemy.orm import Session, selectinload

from ...models import Subject, TrialLesson, TrialSession


class SessionRepository:
    """Repository for trial session database operations"""

    @staticmethod
    def get_session(db: Session, session_id: int) -> Optional[TrialSession]:
        return (
            db.query(TrialSession)
            .options(selectinload(TrialSession.lessons))
            .filter(TrialSession.id == session_id)
            .first()
        )

    @staticmethod
    def get_for_update(db: Session, session_id: int) -> Optional[TrialSession]:
        """Fresh read of the session row, locked until the transaction ends"""
        return (
            db.query(TrialSession)
            .options(selectinload(TrialSession.lessons))
            .filter(TrialSession.id == session_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    @staticmethod
    def get_subjects(db: Session, subject_ids: set) -> list[Subject]:
        if not subject_ids:
            return []
        return db.query(Subject).filter(Subject.id.in_(subject_ids)).all()

    @staticmethod
    def create_session(db: Session, lessons: list[dict], **session_data) -> TrialSession:
        session = TrialSession(**session_data)
        for number, lesson_data in enumerate(lessons, start=1):
            session.lessons.append(TrialLesson(lesson_number=number, **lesson_data))
        db.add(session)
        db.commit()
        db.refresh(session)
        return session
