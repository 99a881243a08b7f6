"""
Pydantic schemas for request/response validation
Separate from SQLAlchemy models for clean API contracts
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime

from database.models import ExamStatus


# ==========================================
# UPLOAD SCHEMAS
# ==========================================

class CheckHashRequest(BaseModel):
    """Client-side sha256 of the PDF, checked before uploading"""
    file_hash: str = Field(..., min_length=64, max_length=64, pattern=r"^[0-9a-fA-F]{64}$")


class ExamSummary(BaseModel):
    """Exam row without questions"""
    id: str
    filename: str
    subject: Optional[str] = None
    grade: Optional[str] = None
    school_name: Optional[str] = None
    total_marks: Optional[int] = None
    status: ExamStatus
    error_message: Optional[str] = None
    has_answer_key: bool = False
    created_at: Optional[datetime] = None
    question_count: int = 0

    model_config = ConfigDict(from_attributes=True)


class CheckHashResponse(BaseModel):
    is_duplicate: bool
    existing_exam: Optional[ExamSummary] = None


class UploadResponse(BaseModel):
    exam_id: str
    status: ExamStatus
    is_duplicate: bool = False
    message: str = ""

    class Config:
        json_schema_extra = {
            "example": {
                "exam_id": "0b6f4c1e-6d0e-4a53-a2f5-0f0f2a1c9b11",
                "status": "pending",
                "is_duplicate": False,
                "message": "Upload accepted, processing started",
            }
        }


# ==========================================
# EXAM READ SCHEMAS
# ==========================================

class ExamStatusResponse(BaseModel):
    id: str
    status: ExamStatus
    error_message: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AnswerOptionResponse(BaseModel):
    label: str
    text: str

    model_config = ConfigDict(from_attributes=True)


class ImageResponse(BaseModel):
    id: int
    source_image_id: str
    image_type: str
    url: str
    alt_text: Optional[str] = None
    page_number: Optional[int] = None


class QuestionResponse(BaseModel):
    id: int
    question_number: str
    question_text: str
    question_type: str
    page_number: Optional[int] = None
    marks: Optional[int] = None
    expected_answer: Optional[str] = None
    options: List[AnswerOptionResponse] = Field(default_factory=list)
    images: List[ImageResponse] = Field(default_factory=list)


class SectionResponse(BaseModel):
    id: int
    name: str
    instructions: Optional[str] = None
    images: List[ImageResponse] = Field(default_factory=list)
    questions: List[QuestionResponse] = Field(default_factory=list)


class ExamDetailResponse(ExamSummary):
    """Full exam with signed image URLs"""
    answer_key_confidence: Optional[str] = None
    sections: List[SectionResponse] = Field(default_factory=list)
    exam_images: List[ImageResponse] = Field(default_factory=list)


class DeleteResponse(BaseModel):
    id: str
    deleted: bool
    storage_objects_deleted: int = 0
