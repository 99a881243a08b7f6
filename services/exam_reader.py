"""
Read side for extracted exams.

Image URLs are short-lived signed URLs generated at read time. A failing URL
drops only that image (logged); the rest of the exam is still returned.
"""

import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from database import crud
from database.models import Exam, Image, Question
from database.schemas import (
    AnswerOptionResponse,
    DeleteResponse,
    ExamDetailResponse,
    ExamStatusResponse,
    ExamSummary,
    ImageResponse,
    QuestionResponse,
    SectionResponse,
)
from parsing.markdown import replace_markdown_image_urls
from storage.keys import exam_image_prefix

log = logging.getLogger(__name__)


def exam_summary(exam: Exam, question_count: int = 0) -> ExamSummary:
    summary = ExamSummary.model_validate(exam)
    summary.question_count = question_count
    return summary


def list_exams(db: Session, skip: int = 0, limit: int = 100) -> List[ExamSummary]:
    return [exam_summary(exam, n) for exam, n in crud.list_exams(db, skip=skip, limit=limit)]


def get_exam_status(db: Session, exam_id: str) -> Optional[ExamStatusResponse]:
    exam = crud.get_exam(db, exam_id)
    return ExamStatusResponse.model_validate(exam) if exam else None


def _signed_images(exam_id: str, images: List[Image], store) -> Dict[int, ImageResponse]:
    signed: Dict[int, ImageResponse] = {}
    for image in images:
        try:
            url = store.get_download_url(image.storage_key)
        except Exception as e:
            log.warning("[%s] skipping image %s: could not sign URL: %s", exam_id, image.storage_key, e)
            continue
        signed[image.id] = ImageResponse(
            id=image.id,
            source_image_id=image.source_image_id,
            image_type=image.image_type,
            url=url,
            alt_text=image.alt_text,
            page_number=image.page_number,
        )
    return signed


def get_exam_with_questions(db: Session, exam_id: str, store) -> Optional[ExamDetailResponse]:
    """Exam → sections → questions (options, images) plus section and exam-level images."""
    exam = (
        db.query(Exam)
        .options(
            selectinload(Exam.sections),
            selectinload(Exam.questions).selectinload(Question.options),
            selectinload(Exam.images),
        )
        .filter(Exam.id == exam_id)
        .first()
    )
    if exam is None:
        return None

    signed = _signed_images(exam.id, exam.images, store)
    url_by_source = {
        image.source_image_id: signed[image.id].url for image in exam.images if image.id in signed
    }

    images_by_question: Dict[int, List[ImageResponse]] = {}
    images_by_section: Dict[int, List[ImageResponse]] = {}
    exam_images: List[ImageResponse] = []
    for image in exam.images:
        response = signed.get(image.id)
        if response is None:
            continue
        if image.question_id is not None:
            images_by_question.setdefault(image.question_id, []).append(response)
        elif image.section_id is not None:
            images_by_section.setdefault(image.section_id, []).append(response)
        else:
            exam_images.append(response)

    questions_by_section: Dict[Optional[int], List[QuestionResponse]] = {}
    for q in exam.questions:
        questions_by_section.setdefault(q.section_id, []).append(QuestionResponse(
            id=q.id,
            question_number=q.question_number,
            question_text=q.question_text,
            question_type=q.question_type,
            page_number=q.page_number,
            marks=q.marks,
            expected_answer=q.expected_answer,
            options=[AnswerOptionResponse.model_validate(o) for o in q.options],
            images=images_by_question.get(q.id, []),
        ))

    sections = [
        SectionResponse(
            id=s.id,
            name=s.name,
            instructions=replace_markdown_image_urls(s.instructions, url_by_source) if s.instructions else None,
            images=images_by_section.get(s.id, []),
            questions=questions_by_section.get(s.id, []),
        )
        for s in exam.sections
    ]

    return ExamDetailResponse(
        **exam_summary(exam, len(exam.questions)).model_dump(),
        answer_key_confidence=exam.answer_key_confidence,
        sections=sections,
        exam_images=exam_images,
    )


def delete_exam(db: Session, exam: Exam, store) -> DeleteResponse:
    """
    Delete rows first (cascade from exam), then storage objects.
    Storage failures are logged; leftovers are picked up by the reconciler.
    """
    exam_id = exam.id
    keys = crud.image_keys_for_exam(db, exam_id) + [exam.pdf_key]
    crud.delete_exam(db, exam)

    removed = 0
    for key in keys:
        try:
            if store.delete(key):
                removed += 1
        except Exception as e:
            log.warning("[%s] could not delete object %s: %s", exam_id, key, e)
    try:
        removed += store.delete_prefix(exam_image_prefix(exam_id))
    except Exception as e:
        log.warning("[%s] could not delete image prefix: %s", exam_id, e)

    log.info("[%s] exam deleted (objects removed=%s)", exam_id, removed)
    return DeleteResponse(id=exam_id, deleted=True, storage_objects_deleted=removed)
