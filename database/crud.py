"""
CRUD helpers for exams
"""

from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from database.models import Exam, ExamStatus, Image, Question


def get_exam(db: Session, exam_id: str) -> Optional[Exam]:
    return db.query(Exam).filter(Exam.id == exam_id).first()


def get_exam_by_hash(db: Session, file_hash: str) -> Optional[Exam]:
    """Most recent exam with this file hash (failed uploads may be retried, so prefer newest)."""
    return (
        db.query(Exam)
        .filter(Exam.file_hash == file_hash.lower())
        .order_by(Exam.created_at.desc())
        .first()
    )


def create_exam(db: Session, filename: str, pdf_key: str, file_hash: str, file_size: Optional[int] = None) -> Exam:
    exam = Exam(
        filename=filename,
        pdf_key=pdf_key,
        file_hash=file_hash.lower(),
        file_size=file_size,
        status=ExamStatus.PENDING,
    )
    db.add(exam)
    db.commit()
    db.refresh(exam)
    return exam


def update_exam_status(
    db: Session,
    exam_id: str,
    status: ExamStatus,
    error_message: Optional[str] = None,
) -> Optional[Exam]:
    exam = get_exam(db, exam_id)
    if not exam:
        return None
    exam.status = status
    exam.error_message = error_message
    db.commit()
    return exam


def question_count(db: Session, exam_id: str) -> int:
    return db.query(func.count(Question.id)).filter(Question.exam_id == exam_id).scalar() or 0


def list_exams(db: Session, skip: int = 0, limit: int = 100) -> List[Tuple[Exam, int]]:
    """Exams newest first, each with its question count."""
    counts = (
        db.query(Question.exam_id, func.count(Question.id).label("n"))
        .group_by(Question.exam_id)
        .subquery()
    )
    rows = (
        db.query(Exam, func.coalesce(counts.c.n, 0))
        .outerjoin(counts, counts.c.exam_id == Exam.id)
        .order_by(Exam.created_at.desc(), Exam.id)
        .offset(skip)
        .limit(limit)
        .all()
    )
    return [(exam, int(n)) for exam, n in rows]


def image_keys_for_exam(db: Session, exam_id: str) -> List[str]:
    return [k for (k,) in db.query(Image.storage_key).filter(Image.exam_id == exam_id).all()]


def all_referenced_keys(db: Session) -> set:
    """Every object key the database points at (exam PDFs and images)."""
    keys = {k for (k,) in db.query(Exam.pdf_key).all()}
    keys.update(k for (k,) in db.query(Image.storage_key).all())
    return keys


def delete_exam(db: Session, exam: Exam) -> None:
    db.delete(exam)
    db.commit()
