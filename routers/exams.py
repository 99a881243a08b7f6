"""
Exam read / delete endpoints.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from database import crud
from database.database import get_db
from database.schemas import DeleteResponse, ExamDetailResponse, ExamStatusResponse, ExamSummary
from services import exam_reader
from storage.object_store import get_object_store

router = APIRouter(prefix="/exams", tags=["exams"])


@router.get("", response_model=List[ExamSummary])
def list_exams(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """All exams, newest first, with question counts"""
    return exam_reader.list_exams(db, skip=skip, limit=limit)


@router.get("/{exam_id}/status", response_model=ExamStatusResponse)
def get_exam_status(exam_id: str, db: Session = Depends(get_db)):
    """Processing status for polling after upload"""
    result = exam_reader.get_exam_status(db, exam_id)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Exam {exam_id} not found"
        )
    return result


@router.get("/{exam_id}", response_model=ExamDetailResponse)
def get_exam(exam_id: str, db: Session = Depends(get_db), store=Depends(get_object_store)):
    """Exam with sections, questions, options and signed image URLs"""
    result = exam_reader.get_exam_with_questions(db, exam_id, store)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Exam {exam_id} not found"
        )
    return result


@router.delete("/{exam_id}", response_model=DeleteResponse)
def delete_exam(exam_id: str, db: Session = Depends(get_db), store=Depends(get_object_store)):
    """Delete an exam, its rows (cascade) and its stored objects"""
    exam = crud.get_exam(db, exam_id)
    if exam is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Exam {exam_id} not found"
        )
    return exam_reader.delete_exam(db, exam, store)
