"""
Pydantic schemas for the structural pre-pass
Question skeletons, section markers and image positions derived purely from OCR text layout
"""

from pydantic import BaseModel, Field
from typing import Optional, List


class McqOption(BaseModel):
    """A single multiple-choice option (label is always an uppercase letter)"""
    label: str = Field(..., min_length=1, max_length=1, description="Option label, e.g. 'A'")
    text: str = Field(..., description="Option text as printed")


class StructuralQuestion(BaseModel):
    """
    One question located by the structural pre-pass.

    start_line / end_line are global line numbers in the concatenated
    document; the range is half-open [start_line, end_line).
    """
    question_number: str = Field(..., description="Free-form label as detected, e.g. '2a', '3(i)'")
    raw_text: str = Field(..., description="Untouched text of the question span")
    text: str = Field(..., description="Cleaned question text (no images, marks, options, page markers)")
    page_number: int = Field(..., ge=1)
    marks: Optional[int] = Field(None, ge=0)
    section: Optional[str] = Field(None, description="Name of the section header preceding the question")
    options: Optional[List[McqOption]] = Field(None, description="MCQ options (only when >= 2 distinct labels)")
    nearby_image_ids: List[str] = Field(default_factory=list)
    start_line: int = Field(..., ge=0)
    end_line: int = Field(..., ge=0)

    class Config:
        json_schema_extra = {
            "example": {
                "question_number": "1",
                "raw_text": "1. What is 2+2? A. 3 B. 4 C. 5",
                "text": "What is 2+2?",
                "page_number": 1,
                "marks": None,
                "section": None,
                "options": [
                    {"label": "A", "text": "3"},
                    {"label": "B", "text": "4"},
                    {"label": "C", "text": "5"},
                ],
                "nearby_image_ids": [],
                "start_line": 1,
                "end_line": 2,
            }
        }


class ImagePosition(BaseModel):
    """Markdown image reference anchored to a (page, global line) coordinate"""
    image_id: str
    page_number: int = Field(..., ge=1)
    line_number: int = Field(..., ge=0)
    alt_text: str = ""


class SectionMarker(BaseModel):
    """A 'Section X' / 'Part N' header and the instruction text that follows it"""
    name: str
    instructions: Optional[str] = None
    line_number: int = Field(..., ge=0)
    page_number: int = Field(..., ge=1)


class ExamMetadataGuess(BaseModel):
    """Regex-sniffed metadata from the first page"""
    total_marks: Optional[int] = None
    possible_subject: Optional[str] = None
    possible_grade: Optional[str] = None
    possible_school: Optional[str] = None


class StructuralResult(BaseModel):
    """Output of parse_structure()"""
    questions: List[StructuralQuestion] = Field(default_factory=list)
    metadata: ExamMetadataGuess = Field(default_factory=ExamMetadataGuess)
    image_positions: List[ImagePosition] = Field(default_factory=list)
    section_markers: List[SectionMarker] = Field(default_factory=list)
    full_document: str = ""
    total_lines: int = 0


class Section(BaseModel):
    """
    Ordered group of questions sharing instructions (word banks, passages, tables).
    An empty name marks the default group for ungrouped questions.
    """
    name: str = ""
    instructions: Optional[str] = None
    question_numbers: List[str] = Field(default_factory=list)
