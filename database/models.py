"""
SQLAlchemy models for extracted exams
Exam → Section → Question → AnswerOption, plus Image rows

Exam owns everything transitively; deleting an exam cascades downward.
Rows are written once per processing run inside a single transaction.
"""

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Text, JSON, Enum as SQLEnum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
import enum
from database.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class ExamStatus(str, enum.Enum):
    """Processing lifecycle of an uploaded exam"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ImageType(str, enum.Enum):
    """Where an image is attached"""
    QUESTION_DIAGRAM = "question_diagram"
    SECTION_CONTENT = "section_content"
    EXAM_CONTENT = "exam_content"


# ==========================================
# EXAMS
# ==========================================

class Exam(Base):
    """
    One uploaded exam paper.
    file_hash (sha256 of the PDF) backs duplicate detection on upload.
    raw_ocr_result keeps the OCR payload (without bitmaps) for re-parsing.
    """
    __tablename__ = "exams"

    id = Column(String(36), primary_key=True, default=_uuid)
    filename = Column(String(255), nullable=False)
    pdf_key = Column(String(512), nullable=False)
    file_hash = Column(String(64), nullable=False, index=True)
    file_size = Column(Integer, nullable=True)

    subject = Column(String(100), nullable=True)
    grade = Column(String(50), nullable=True)
    school_name = Column(String(255), nullable=True)
    total_marks = Column(Integer, nullable=True)

    status = Column(
        SQLEnum(ExamStatus, name="exam_status", values_callable=lambda e: [m.value for m in e]),
        default=ExamStatus.PENDING,
        nullable=False,
        index=True,
    )
    error_message = Column(Text, nullable=True)
    raw_ocr_result = Column(JSON, nullable=True)
    has_answer_key = Column(Boolean, default=False, nullable=False)
    answer_key_confidence = Column(String(10), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    sections = relationship(
        "Section", back_populates="exam", cascade="all, delete-orphan",
        order_by="Section.order_index", passive_deletes=True,
    )
    questions = relationship(
        "Question", back_populates="exam", cascade="all, delete-orphan",
        order_by="Question.order_index", passive_deletes=True,
    )
    images = relationship(
        "Image", back_populates="exam", cascade="all, delete-orphan",
        order_by="Image.order_index", passive_deletes=True,
    )

    def __repr__(self):
        return f"<Exam(id='{self.id}', filename='{self.filename}', status='{self.status}')>"


class Section(Base):
    """
    Group of questions sharing instructions (word bank, passage, table).
    name == "" is the default group for questions with no section header.
    """
    __tablename__ = "sections"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(String(36), ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False, default="")
    instructions = Column(Text, nullable=True)
    order_index = Column(Integer, nullable=False, default=0)

    exam = relationship("Exam", back_populates="sections")
    questions = relationship("Question", back_populates="section", order_by="Question.order_index")
    images = relationship("Image", back_populates="section")

    def __repr__(self):
        return f"<Section(id={self.id}, exam_id='{self.exam_id}', name='{self.name}')>"


class Question(Base):
    """
    Extracted question.
    expected_answer holds the correct answer for every question type;
    for MCQ it is the correct option's label (e.g. "B").
    """
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(String(36), ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    section_id = Column(Integer, ForeignKey("sections.id", ondelete="CASCADE"), nullable=True, index=True)
    question_number = Column(String(50), nullable=False)
    question_text = Column(Text, nullable=False, default="")
    question_type = Column(String(20), nullable=False, default="short_answer")
    page_number = Column(Integer, nullable=True)
    marks = Column(Integer, nullable=True)
    expected_answer = Column(Text, nullable=True)
    order_index = Column(Integer, nullable=False, default=0)

    exam = relationship("Exam", back_populates="questions")
    section = relationship("Section", back_populates="questions")
    options = relationship(
        "AnswerOption", back_populates="question", cascade="all, delete-orphan",
        order_by="AnswerOption.order_index", passive_deletes=True,
    )
    images = relationship("Image", back_populates="question", order_by="Image.order_index")

    def __repr__(self):
        return f"<Question(id={self.id}, number='{self.question_number}', type='{self.question_type}')>"


class AnswerOption(Base):
    """MCQ option; correctness lives in Question.expected_answer"""
    __tablename__ = "answer_options"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
    label = Column(String(5), nullable=False)
    text = Column(Text, nullable=False, default="")
    order_index = Column(Integer, nullable=False, default=0)

    question = relationship("Question", back_populates="options")


class Image(Base):
    """
    Image kept from OCR and stored under storage_key.
    question_id / section_id are both null for exam-level images.
    """
    __tablename__ = "images"

    id = Column(Integer, primary_key=True, index=True)
    exam_id = Column(String(36), ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="SET NULL"), nullable=True, index=True)
    section_id = Column(Integer, ForeignKey("sections.id", ondelete="SET NULL"), nullable=True, index=True)
    source_image_id = Column(String(255), nullable=False)
    storage_key = Column(String(512), nullable=False)
    image_type = Column(String(30), nullable=False, default=ImageType.EXAM_CONTENT.value)
    mime_type = Column(String(50), nullable=True)
    alt_text = Column(Text, nullable=True)
    page_number = Column(Integer, nullable=True)
    classification = Column(String(20), nullable=True)
    classification_confidence = Column(String(10), nullable=True)
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    exam = relationship("Exam", back_populates="images")
    question = relationship("Question", back_populates="images")
    section = relationship("Section", back_populates="images")

    def __repr__(self):
        return f"<Image(id={self.id}, key='{self.storage_key}', type='{self.image_type}')>"
