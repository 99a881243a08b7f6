"""
Exam paper upload.

Flow: validate → sha256 duplicate check → store PDF → create pending exam →
run the extraction pipeline in the background. The client polls
GET /exams/{id}/status.

Duplicates: an identical file whose exam has not failed is not processed
again; the existing exam is returned instead.
"""

import logging
import os
from pathlib import Path

from fastapi import APIRouter, BackgroundTasks, Depends, File, HTTPException, UploadFile, status
from sqlalchemy.orm import Session

from database import crud
from database.database import get_db
from database.models import ExamStatus
from database.schemas import CheckHashRequest, CheckHashResponse, UploadResponse
from services.exam_processor import process_exam
from services.exam_reader import exam_summary
from storage.keys import pdf_key
from storage.object_store import get_object_store
from utils.hashing import sha256_hex

log = logging.getLogger(__name__)

router = APIRouter(prefix="/uploads", tags=["uploads"])

# Configuration
MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", 52428800))  # 50MB
ALLOWED_EXTENSIONS = {"pdf"}
PDF_MAGIC = b"%PDF-"


def validate_file(file: UploadFile) -> str:
    """Validate uploaded file name / type; returns the cleaned filename"""
    if not file.filename or not file.filename.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Filename is required"
        )

    filename = Path(file.filename.strip()).name
    extension = Path(filename).suffix.lower().lstrip(".")
    if extension not in ALLOWED_EXTENSIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported file type: .{extension or '?'}. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    return filename


async def read_upload(file: UploadFile) -> bytes:
    """Read the upload in 1MB chunks, enforcing MAX_UPLOAD_SIZE"""
    chunks = []
    size = 0
    while True:
        chunk = await file.read(1024 * 1024)
        if not chunk:
            break
        size += len(chunk)
        if size > MAX_UPLOAD_SIZE:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File too large. Max: {MAX_UPLOAD_SIZE} bytes"
            )
        chunks.append(chunk)
    data = b"".join(chunks)
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File is empty")
    if not data.startswith(PDF_MAGIC):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File is not a valid PDF")
    return data


@router.post("/check-hash", response_model=CheckHashResponse)
def check_hash(request: CheckHashRequest, db: Session = Depends(get_db)):
    """Duplicate check before upload (client hashes the file with sha256)"""
    exam = crud.get_exam_by_hash(db, request.file_hash)
    if exam is None or exam.status == ExamStatus.FAILED:
        return CheckHashResponse(is_duplicate=False)
    return CheckHashResponse(
        is_duplicate=True,
        existing_exam=exam_summary(exam, crud.question_count(db, exam.id)),
    )


@router.post("", response_model=UploadResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_exam(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(..., description="Exam paper (PDF)"),
    db: Session = Depends(get_db),
    store=Depends(get_object_store),
):
    """
    Upload an exam paper and start extraction.

    Status flow: pending → processing → completed | failed
    """
    filename = validate_file(file)
    data = await read_upload(file)
    file_hash = sha256_hex(data)

    existing = crud.get_exam_by_hash(db, file_hash)
    if existing is not None and existing.status != ExamStatus.FAILED:
        log.info("[%s] duplicate upload of %s", existing.id, filename)
        return UploadResponse(
            exam_id=existing.id,
            status=existing.status,
            is_duplicate=True,
            message="Identical file already uploaded",
        )

    key = pdf_key()
    store.upload_bytes(key, data, content_type="application/pdf")
    try:
        exam = crud.create_exam(db, filename=filename, pdf_key=key, file_hash=file_hash, file_size=len(data))
    except Exception:
        db.rollback()
        store.delete(key)
        raise

    log.info("[%s] upload accepted: %s (%s bytes)", exam.id, filename, len(data))
    background_tasks.add_task(process_exam, exam.id, key, store=store)

    return UploadResponse(
        exam_id=exam.id,
        status=exam.status,
        is_duplicate=False,
        message="Upload accepted, processing started",
    )
