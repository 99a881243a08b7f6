"""
Semantic Enrichment — Step 3 of the Exam Pipeline

Sends the structural skeleton (never the raw OCR) to the LLM and asks only for
what a language model can infer:
  - question_type:      mcq | fill_blank | short_answer | long_answer
  - related_image_ids:  subset of each question's nearby images that are content
  - expected_answer:    an answer visibly printed next to the question, if any
  - subject / grade / school_name

Merge rules:
  - Structural data stays authoritative for text, page, marks and line ranges
  - Related images are intersected with nearby_image_ids
  - Metadata: enrichment value, else structural guess, else None
  - No usable output → heuristic type (>= 2 options ⇒ mcq, else short_answer),
    no related images, structural metadata; the outcome is tagged Fallback
"""

import json
import logging
from collections import defaultdict, deque
from typing import Deque, Dict, List, Optional

from enrichment.llm_client import ENRICHMENT_MODEL, LLMClient
from enrichment.outcome import Confirmed, Fallback, Outcome
from enrichment.schemas import (
    EnrichmentResponse,
    ExtractedExam,
    ExtractedQuestion,
    QuestionEnrichment,
)
from parsing.question_numbers import normalize_question_number
from parsing.schemas import StructuralQuestion, StructuralResult
from parsing.sections import build_sections

log = logging.getLogger(__name__)

# ── Configuration ─────────────────────────────────────────────────────────────
EXAM_CONTEXT_CHARS = 1500
MAX_QUESTION_TEXT_CHARS = 500

_SYSTEM_PROMPT = """You analyse Singapore Primary school exam papers that have already been split into questions.

For EACH question decide:
- question_type: "mcq" if the pupil picks one of lettered options, "fill_blank" if the pupil fills a blank
  in a sentence or table, "short_answer" for a word / number / short phrase, "long_answer" for working,
  explanations or compositions.
- related_image_ids: ONLY ids from that question's nearby_image_ids that are needed to answer it
  (diagrams, graphs, pictures). Leave out logos, score boxes and decorations. Use [] when unsure.
- expected_answer: the answer ONLY if it is visibly printed with the question (e.g. a worked example).
  Otherwise null. Never solve the question yourself.

Also identify the exam subject, grade (e.g. "Primary 4") and school name if stated; otherwise null.
Return one entry per input question using the same question_number."""


def _truncate(text: str, max_chars: int = MAX_QUESTION_TEXT_CHARS) -> str:
    if not text:
        return ""
    t = text.strip()
    return t[:max_chars] + ("…" if len(t) > max_chars else "")


def heuristic_question_type(question: StructuralQuestion) -> str:
    return "mcq" if question.options and len(question.options) >= 2 else "short_answer"


def build_enrichment_prompt(structural: StructuralResult) -> str:
    questions = []
    for q in structural.questions:
        questions.append({
            "question_number": q.question_number,
            "page_number": q.page_number,
            "section": q.section,
            "text": _truncate(q.text),
            "options": [o.model_dump() for o in q.options] if q.options else None,
            "marks": q.marks,
            "nearby_image_ids": q.nearby_image_ids,
        })
    return (
        f"Exam context (first page excerpt):\n{structural.full_document[:EXAM_CONTEXT_CHARS]}\n\n"
        f"Questions ({len(questions)}):\n{json.dumps(questions, ensure_ascii=False, indent=1)}"
    )


def _clean_answer(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _index_enrichments(items: List[QuestionEnrichment]) -> Dict[str, Deque[QuestionEnrichment]]:
    """Normalized number → enrichments in reply order (duplicate numbers consumed in order)."""
    index: Dict[str, Deque[QuestionEnrichment]] = defaultdict(deque)
    for item in items:
        index[normalize_question_number(item.question_number)].append(item)
    return index


def merge_question(question: StructuralQuestion, enrichment: Optional[QuestionEnrichment]) -> ExtractedQuestion:
    """Structural fields + semantic fields; heuristics fill in when enrichment is missing."""
    base = question.model_dump()
    if enrichment is None:
        return ExtractedQuestion(**base, question_type=heuristic_question_type(question))

    nearby = set(question.nearby_image_ids)
    related: List[str] = []
    for image_id in enrichment.related_image_ids:
        if image_id in nearby and image_id not in related:
            related.append(image_id)

    return ExtractedQuestion(
        **base,
        question_type=enrichment.question_type,
        related_image_ids=related,
        expected_answer=_clean_answer(enrichment.expected_answer),
    )


def merge_enrichment(structural: StructuralResult, response: Optional[EnrichmentResponse]) -> ExtractedExam:
    index = _index_enrichments(response.questions) if response else {}
    questions = []
    for q in structural.questions:
        queue = index.get(normalize_question_number(q.question_number))
        questions.append(merge_question(q, queue.popleft() if queue else None))

    meta = structural.metadata
    return ExtractedExam(
        subject=(response and _clean_answer(response.subject)) or meta.possible_subject,
        grade=(response and _clean_answer(response.grade)) or meta.possible_grade,
        school_name=(response and _clean_answer(response.school_name)) or meta.possible_school,
        total_marks=meta.total_marks,
        sections=build_sections(questions, structural.section_markers),
        questions=questions,
    )


async def enrich_structure(structural: StructuralResult, llm: LLMClient) -> Outcome[ExtractedExam]:
    """
    One enrichment call over the structural skeleton.

    LLMError (retries exhausted) propagates: it is a run-level failure.
    """
    log.info("Step 3 (enrich): start questions=%s", len(structural.questions))

    response: Optional[EnrichmentResponse] = None
    if structural.questions:
        response = await llm.generate(
            build_enrichment_prompt(structural),
            EnrichmentResponse,
            system=_SYSTEM_PROMPT,
            model=ENRICHMENT_MODEL,
        )

    exam = merge_enrichment(structural, response)

    if response is None:
        reason = "no questions to enrich" if not structural.questions else "enrichment returned no output"
        log.warning("Step 3 (enrich): fallback to heuristics (%s)", reason)
        return Fallback(exam, reason)

    missing = len(structural.questions) - len(response.questions)
    if missing > 0:
        log.warning("Step 3 (enrich): %s question(s) not covered by the model, heuristics used", missing)
    log.info("Step 3 (enrich): done subject=%s grade=%s", exam.subject, exam.grade)
    return Confirmed(exam, "high" if missing <= 0 else "medium")
