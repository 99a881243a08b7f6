"""
Pydantic schemas for the generative stages

Two kinds of models live here:
  - *Response models* describe what the LLM must return (validated with
    model_validate; anything that does not validate counts as "no output")
  - *Result models* are what the pipeline hands to persistence
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from parsing.schemas import McqOption, Section

QuestionType = Literal["mcq", "fill_blank", "short_answer", "long_answer"]
Confidence = Literal["high", "medium", "low"]
ImageLabel = Literal["content", "administrative"]

CONFIDENCE_RANK = {"low": 0, "medium": 1, "high": 2}


# ==========================================
# SEMANTIC ENRICHMENT
# ==========================================

class QuestionEnrichment(BaseModel):
    """LLM verdict for one question"""
    question_number: str
    question_type: QuestionType
    related_image_ids: List[str] = Field(default_factory=list)
    expected_answer: Optional[str] = None


class EnrichmentResponse(BaseModel):
    """Schema the enrichment call is constrained to"""
    subject: Optional[str] = None
    grade: Optional[str] = None
    school_name: Optional[str] = None
    questions: List[QuestionEnrichment] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "subject": "Math",
                "grade": "Primary 4",
                "school_name": "Rosyth School",
                "questions": [
                    {
                        "question_number": "1",
                        "question_type": "mcq",
                        "related_image_ids": ["img-0.jpeg"],
                        "expected_answer": None,
                    }
                ],
            }
        }


class ExtractedQuestion(BaseModel):
    """Structural question plus the semantic fields resolved by enrichment"""
    question_number: str
    text: str
    raw_text: str = ""
    page_number: int = Field(..., ge=1)
    marks: Optional[int] = None
    section: Optional[str] = None
    options: Optional[List[McqOption]] = None
    nearby_image_ids: List[str] = Field(default_factory=list)
    start_line: int = 0
    end_line: int = 0
    question_type: QuestionType = "short_answer"
    related_image_ids: List[str] = Field(default_factory=list)
    expected_answer: Optional[str] = None


class ExtractedExam(BaseModel):
    subject: Optional[str] = None
    grade: Optional[str] = None
    school_name: Optional[str] = None
    total_marks: Optional[int] = None
    sections: List[Section] = Field(default_factory=list)
    questions: List[ExtractedQuestion] = Field(default_factory=list)


# ==========================================
# ANSWER KEY
# ==========================================

class AnswerKeyDetection(BaseModel):
    """Pass 1 response"""
    has_answer_key: bool = False
    answer_key_page_numbers: List[int] = Field(default_factory=list)
    confidence: Confidence = "low"
    reason: str = ""


class AnswerKeyEntry(BaseModel):
    question_number: str
    answer: str
    answer_type: Literal["mcq_option", "text"] = "text"


class AnswerKeyExtraction(BaseModel):
    """Pass 2 response"""
    entries: List[AnswerKeyEntry] = Field(default_factory=list)


class AnswerKeyResult(BaseModel):
    found: bool = False
    entries: List[AnswerKeyEntry] = Field(default_factory=list)
    confidence: Confidence = "low"
    source_page_numbers: List[int] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "found": True,
                "entries": [{"question_number": "Q.1", "answer": "B", "answer_type": "mcq_option"}],
                "confidence": "high",
                "source_page_numbers": [12],
            }
        }


# ==========================================
# IMAGE CLASSIFICATION
# ==========================================

class VisionVerdict(BaseModel):
    """Vision-model response"""
    classification: ImageLabel
    confidence: Confidence = "medium"
    reason: str = ""


class ImageClassification(BaseModel):
    image_id: str
    classification: ImageLabel
    confidence: Confidence
    reason: str = ""
    source: Literal["position", "vision", "instructions"] = "position"

    @property
    def is_discardable(self) -> bool:
        """Only confidently administrative images are dropped before persistence."""
        return self.classification == "administrative" and self.confidence == "high"
