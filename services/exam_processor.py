"""
Exam Processing Pipeline

  1. OCR                 ingestion.ocr
  2. Structural pre-pass parsing.structural_parser
  3. Semantic enrichment enrichment.semantic_enricher
  4. Answer key          enrichment.answer_key
  5. Image classes       enrichment.image_classifier
  6. Persist + link      services.exam_persistence

Stages run strictly in order; no stage re-invokes an earlier one. Each run
touches only rows of its own exam, so runs for different exams need no
coordination.

Status: pending → processing → completed | failed (error_message set).
This is the single run-level error handler: failures are logged and stored
on the exam, never raised to the caller.
"""

import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from database.database import SessionLocal
from database import crud
from database.models import ExamStatus
from enrichment.answer_key import extract_answer_key
from enrichment.image_classifier import classify_images
from enrichment.llm_client import LLMClient, get_llm_client
from enrichment.semantic_enricher import enrich_structure
from ingestion.ocr import OcrClient, document_url_for
from parsing.sections import section_image_refs
from parsing.structural_parser import parse_structure
from services.exam_persistence import save_extracted_data, upload_extracted_images
from storage.keys import exam_image_prefix
from storage.object_store import get_object_store

log = logging.getLogger(__name__)

MAX_ERROR_MESSAGE_CHARS = 1000


def _failure_message(error: Exception) -> str:
    message = str(error).strip() or error.__class__.__name__
    return f"Processing failed: {message}"[:MAX_ERROR_MESSAGE_CHARS]


def _discard_uploaded_images(store, exam_id: str) -> None:
    try:
        removed = store.delete_prefix(exam_image_prefix(exam_id))
        if removed:
            log.info("[%s] removed %s orphaned image object(s)", exam_id, removed)
    except Exception as e:
        log.warning("[%s] could not remove uploaded images, reconciler will: %s", exam_id, e)


async def process_exam(
    exam_id: str,
    pdf_key: str,
    session_factory: Callable[[], Session] = SessionLocal,
    store=None,
    ocr_client: Optional[OcrClient] = None,
    llm: Optional[LLMClient] = None,
) -> bool:
    """
    Run the full pipeline for one exam. Returns True on success.

    Collaborators are injectable; defaults are the process-wide clients.
    """
    store = store or get_object_store()
    ocr_client = ocr_client or OcrClient()
    llm = llm or get_llm_client()

    db = session_factory()
    images_uploaded = False
    try:
        crud.update_exam_status(db, exam_id, ExamStatus.PROCESSING)
        log.info("[%s] processing started (pdf=%s)", exam_id, pdf_key)

        # Step 1: OCR
        log.info("Step 1 (ocr): start")
        ocr = await ocr_client.process_document(document_url_for(store, pdf_key))
        exam = crud.get_exam(db, exam_id)
        if exam is not None:
            exam.raw_ocr_result = ocr.raw_json
            db.commit()
        log.info("Step 1 (ocr): done pages=%s images=%s", len(ocr.pages), len(ocr.all_images()))

        # Step 2: structural pre-pass
        structural = parse_structure(ocr.pages)

        # Step 3: semantic enrichment
        enriched = await enrich_structure(structural, llm)
        extracted = enriched.value

        # Step 4: answer key
        answer_key = await extract_answer_key(ocr.pages, llm)

        # Step 5: image classification
        required = section_image_refs(extracted.sections)
        classifications = await classify_images(ocr.pages, llm, required_ids=required)

        # Step 6: upload + single transaction
        alt_texts = {p.image_id: p.alt_text for p in structural.image_positions if p.alt_text}
        images_uploaded = True
        uploaded = upload_extracted_images(exam_id, ocr.pages, classifications, store, alt_texts)
        save_extracted_data(db, exam_id, extracted, uploaded, answer_key)

        crud.update_exam_status(db, exam_id, ExamStatus.COMPLETED)
        log.info(
            "[%s] processing completed questions=%s enrichment=%s answer_key=%s",
            exam_id, len(extracted.questions),
            "fallback" if enriched.is_fallback else "confirmed", answer_key.found,
        )
        return True

    except Exception as e:
        log.exception("[%s] processing failed", exam_id)
        db.rollback()
        if images_uploaded:
            _discard_uploaded_images(store, exam_id)
        try:
            crud.update_exam_status(db, exam_id, ExamStatus.FAILED, _failure_message(e))
        except Exception:
            db.rollback()
            log.exception("[%s] could not record failure status", exam_id)
        return False
    finally:
        db.close()
