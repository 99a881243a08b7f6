"""
Persistence & Linking — Step 6 of the Exam Pipeline

1. upload_extracted_images(): push kept images to the object store. Runs
   BEFORE the transaction; object writes are not transactional, so a later
   rollback leaves orphans (removed by the processor's cleanup or by the
   storage reconciler).
2. save_extracted_data(): one transaction writes exam metadata, sections,
   questions, options, images and answer-key links. Readers never see a
   partially written exam.

Image → question association:
  - image id in a question's related_image_ids      → question image
  - image id referenced in section instructions      → section image
  - anything else                                    → exam-level image
"""

import base64
import binascii
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from database.models import AnswerOption, Exam, Image, ImageType, Question, Section
from enrichment.schemas import AnswerKeyEntry, AnswerKeyResult, ExtractedExam, ImageClassification
from ingestion.schemas import OcrPage
from parsing.markdown import find_image_refs
from parsing.question_numbers import normalize_question_number
from parsing.sections import DEFAULT_SECTION_NAME
from storage.keys import image_key

log = logging.getLogger(__name__)


@dataclass
class UploadedImage:
    """An OCR image that made it into the object store"""
    image_id: str
    storage_key: str
    mime_type: str
    page_number: int
    classification: Optional[ImageClassification] = None
    alt_text: Optional[str] = None


def upload_extracted_images(
    exam_id: str,
    pages: List[OcrPage],
    classifications: Dict[str, ImageClassification],
    store,
    alt_texts: Optional[Dict[str, str]] = None,
) -> List[UploadedImage]:
    """
    Upload every image except confidently administrative ones.
    Returns the uploaded images in document order.
    """
    uploaded: List[UploadedImage] = []
    skipped = 0
    for page in pages:
        for image in page.images:
            verdict = classifications.get(image.id)
            if verdict is not None and verdict.is_discardable:
                skipped += 1
                continue
            if not image.image_base64:
                log.warning("[%s] image %s has no bitmap, not stored", exam_id, image.id)
                continue
            try:
                data = base64.b64decode(image.image_base64, validate=False)
            except (binascii.Error, ValueError) as e:
                log.warning("[%s] image %s has an undecodable bitmap: %s", exam_id, image.id, e)
                continue

            key = image_key(exam_id, image.id, image.mime_type)
            store.upload_bytes(key, data, content_type=image.mime_type)
            uploaded.append(UploadedImage(
                image_id=image.id,
                storage_key=key,
                mime_type=image.mime_type,
                page_number=image.page_number,
                classification=verdict,
                alt_text=(alt_texts or {}).get(image.id) or None,
            ))

    log.info("Step 6 (persist): uploaded images=%s skipped_administrative=%s", len(uploaded), skipped)
    return uploaded


def link_answers_to_questions(questions: Iterable, entries: List[AnswerKeyEntry]) -> int:
    """
    Write answer-key answers into expected_answer by normalized question number.

    Never adds or removes questions; only expected_answer changes.
    Two entries collapsing to the same key: the later one wins (logged).
    Returns the number of questions updated.
    """
    lookup: Dict[str, AnswerKeyEntry] = {}
    for entry in entries:
        key = normalize_question_number(entry.question_number)
        if not key:
            continue
        previous = lookup.get(key)
        if previous is not None and previous.answer != entry.answer:
            log.warning(
                "Answer-key collision on %r: %r (%s) replaced by %r (%s)",
                key, previous.question_number, previous.answer, entry.question_number, entry.answer,
            )
        lookup[key] = entry

    questions = list(questions)
    key_counts = Counter(normalize_question_number(q.question_number) for q in questions)
    for key, n in key_counts.items():
        if n > 1 and key in lookup:
            log.warning("Question-number collision on %r: %s questions share one answer", key, n)

    linked = 0
    for question in questions:
        entry = lookup.get(normalize_question_number(question.question_number))
        if entry is None:
            continue
        question.expected_answer = entry.answer
        linked += 1
    return linked


def _image_type(question_row: Optional[Question], section_row: Optional[Section]) -> str:
    if question_row is not None:
        return ImageType.QUESTION_DIAGRAM.value
    if section_row is not None:
        return ImageType.SECTION_CONTENT.value
    return ImageType.EXAM_CONTENT.value


def save_extracted_data(
    db: Session,
    exam_id: str,
    extracted: ExtractedExam,
    uploaded: List[UploadedImage],
    answer_key: Optional[AnswerKeyResult] = None,
) -> Dict[str, int]:
    """
    Write the whole extraction in one transaction; rollback on any failure.
    Returns row counts.
    """
    answer_key = answer_key or AnswerKeyResult()

    try:
        exam = db.query(Exam).filter(Exam.id == exam_id).first()
        if exam is None:
            raise ValueError(f"Exam {exam_id} not found")

        exam.subject = extracted.subject
        exam.grade = extracted.grade
        exam.school_name = extracted.school_name
        exam.total_marks = extracted.total_marks
        exam.has_answer_key = answer_key.found
        exam.answer_key_confidence = answer_key.confidence if answer_key.found else None

        section_rows: Dict[str, Section] = {}
        section_image_owner: Dict[str, Section] = {}
        for idx, section in enumerate(extracted.sections):
            row = Section(
                exam_id=exam_id,
                name=section.name,
                instructions=section.instructions,
                order_index=idx,
            )
            db.add(row)
            section_rows[section.name] = row
            for image_id, _ in find_image_refs(section.instructions or ""):
                section_image_owner.setdefault(image_id, row)

        question_rows: List[Question] = []
        image_owner: Dict[str, Question] = {}
        for idx, q in enumerate(extracted.questions):
            section_row = section_rows.get(q.section or DEFAULT_SECTION_NAME)
            if section_row is None:
                # question outside every section list: attach to the default group
                section_row = Section(exam_id=exam_id, name=DEFAULT_SECTION_NAME, order_index=len(section_rows))
                db.add(section_row)
                section_rows[DEFAULT_SECTION_NAME] = section_row

            row = Question(
                exam_id=exam_id,
                section=section_row,
                question_number=q.question_number,
                question_text=q.text,
                question_type=q.question_type,
                page_number=q.page_number,
                marks=q.marks,
                expected_answer=q.expected_answer,
                order_index=idx,
            )
            if q.question_type == "mcq":
                for opt_idx, opt in enumerate(q.options or []):
                    row.options.append(AnswerOption(label=opt.label, text=opt.text, order_index=opt_idx))
            db.add(row)
            question_rows.append(row)
            for image_id in q.related_image_ids:
                image_owner.setdefault(image_id, row)

        for idx, up in enumerate(uploaded):
            question_row = image_owner.get(up.image_id)
            section_row = None if question_row is not None else section_image_owner.get(up.image_id)
            verdict = up.classification
            db.add(Image(
                exam_id=exam_id,
                question=question_row,
                section=section_row,
                source_image_id=up.image_id,
                storage_key=up.storage_key,
                image_type=_image_type(question_row, section_row),
                mime_type=up.mime_type,
                alt_text=up.alt_text,
                page_number=up.page_number,
                classification=verdict.classification if verdict else None,
                classification_confidence=verdict.confidence if verdict else None,
                order_index=idx,
            ))

        linked = 0
        if answer_key.found:
            linked = link_answers_to_questions(question_rows, answer_key.entries)

        db.commit()
    except Exception:
        db.rollback()
        raise

    counts = {
        "sections": len(section_rows),
        "questions": len(question_rows),
        "images": len(uploaded),
        "linked_answers": linked,
    }
    log.info("Step 6 (persist): done exam=%s %s", exam_id, counts)
    return counts
