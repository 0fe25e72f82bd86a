"""Tutor repository - Database operations for tutors and their scores"""

from typing import Optional

from sqlalchemy.orm import Session, selectinload

from ...enums import ApprovalStatus
from ...models import AdminLog, Tutor


class TutorRepository:
    """Repository for tutor database operations"""

    @staticmethod
    def get_tutor(db: Session, tutor_id: int) -> Optional[Tutor]:
        return db.query(Tutor).filter(Tutor.id == tutor_id).first()

    @staticmethod
    def get_tutor_for_update(db: Session, tutor_id: int) -> Optional[Tutor]:
        """Fresh read of the tutor row, locked until the transaction ends"""
        return (
            db.query(Tutor)
            .filter(Tutor.id == tutor_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    @staticmethod
    def get_approved_tutors(db: Session) -> list[Tutor]:
        """Approved tutors with subjects and blockouts loaded, in id order"""
        return (
            db.query(Tutor)
            .options(selectinload(Tutor.subject_links), selectinload(Tutor.unavailability))
            .filter(Tutor.approval_status == ApprovalStatus.APPROVED.value)
            .order_by(Tutor.id)
            .all()
        )

    @staticmethod
    def list_for_performance(db: Session) -> list[Tutor]:
        return db.query(Tutor).order_by(Tutor.composite_score.desc(), Tutor.id).all()

    @staticmethod
    def add_log(db: Session, **fields) -> AdminLog:
        entry = AdminLog(**fields)
        db.add(entry)
        return entry
