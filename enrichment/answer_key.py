"""
Answer-Key Extraction — Step 4 of the Exam Pipeline (two passes)

Pass 1 (detection): look only at the trailing pages and decide whether they
hold an answer-key section (dense "number + short answer" pairs, no full
question text), and on which pages.

Pass 2 (extraction): runs only when Pass 1 found a key, and sees only the
detected pages. Returns ordered {question_number, answer, answer_type}.

Keeping the passes apart stops an MCQ question's own options ("A. 5  B. 6")
from being read as answers.

Degradation:
  - Pass 1 no output  → {has_answer_key: False, confidence: low}
  - Pass 2 no output  → no entries
  - any provider error (transport, unknown model, auth) → logged, treated
    as "no answer key"
"""

import logging
import os
import re
from typing import List, Optional

from openai import APIError

from enrichment.llm_client import ANSWER_KEY_MODEL, LLMClient, LLMError
from enrichment.outcome import Confirmed, Fallback, Outcome
from enrichment.schemas import (
    AnswerKeyDetection,
    AnswerKeyEntry,
    AnswerKeyExtraction,
    AnswerKeyResult,
)
from ingestion.schemas import OcrPage

log = logging.getLogger(__name__)

# ── Configuration ─────────────────────────────────────────────────────────────
ANSWER_KEY_PAGE_WINDOW = int(os.getenv("ANSWER_KEY_PAGE_WINDOW", "4"))

_MCQ_LETTER = re.compile(r"^\(?\s*([A-Da-d1-4])\s*[\).:]?\s*$")
_MCQ_LEADING_LETTER = re.compile(r"^\(?([A-Da-d])[\).:]\s+")
_NUMERIC_CHOICE = {"1": "A", "2": "B", "3": "C", "4": "D"}

_DETECT_SYSTEM = """You inspect the LAST pages of a school exam paper.

Decide whether these pages contain an ANSWER KEY section, distinct from the questions themselves.
An answer key looks like a dense list of question numbers each followed by a short answer
(e.g. "1. B", "2. 3/4", "Q5 (a) 24 cm"), usually under a heading like "Answer Key" or "Answers".
Pages that still show full question text, or MCQ options listed under a question, are NOT an answer key.

Return has_answer_key, the page numbers that hold the key (use the numbers from the page markers),
your confidence (high | medium | low) and a one-sentence reason."""

_EXTRACT_SYSTEM = """You extract the answer key of a school exam paper.

Return every answer in order as {question_number, answer, answer_type}.
- question_number: exactly as printed, including sub-parts (e.g. "1", "5a", "6(ii)").
- answer_type: "mcq_option" when the answer is an option choice, otherwise "text".
- For mcq_option give only the option letter (A, B, C or D). If the key gives the option number
  (1-4), convert it to the letter.
- For text answers copy the answer literally, including units."""


def answer_key_window(pages: List[OcrPage], window: int = ANSWER_KEY_PAGE_WINDOW) -> List[OcrPage]:
    ordered = sorted(pages, key=lambda p: p.page_number)
    return ordered[-window:] if window > 0 else []


def _render_pages(pages: List[OcrPage]) -> str:
    return "\n\n".join(f"--- Page {p.page_number} ---\n{p.markdown}" for p in pages)


def normalize_mcq_answer(answer: str) -> str:
    """
    'b', '(B)', 'B.', '2', 'B. 4 apples' → 'B'.
    Answers with no recognizable option letter are returned stripped.
    """
    value = (answer or "").strip()
    m = _MCQ_LETTER.match(value)
    if m:
        token = m.group(1).upper()
        return _NUMERIC_CHOICE.get(token, token)
    m = _MCQ_LEADING_LETTER.match(value)
    if m:
        return m.group(1).upper()
    return value


def normalize_entries(entries: List[AnswerKeyEntry]) -> List[AnswerKeyEntry]:
    cleaned = []
    for entry in entries:
        number = entry.question_number.strip()
        answer = entry.answer.strip()
        if not number or not answer:
            continue
        if entry.answer_type == "mcq_option":
            answer = normalize_mcq_answer(answer)
        cleaned.append(AnswerKeyEntry(question_number=number, answer=answer, answer_type=entry.answer_type))
    return cleaned


async def detect_answer_key(pages: List[OcrPage], llm: LLMClient) -> Outcome[AnswerKeyDetection]:
    """Pass 1 over the trailing-page window."""
    window = answer_key_window(pages)
    if not window:
        return Fallback(AnswerKeyDetection(reason="document has no pages"), "empty document")

    detection = await llm.generate(
        f"Last {len(window)} page(s) of the exam:\n\n{_render_pages(window)}",
        AnswerKeyDetection,
        system=_DETECT_SYSTEM,
        model=ANSWER_KEY_MODEL,
    )
    if detection is None:
        return Fallback(
            AnswerKeyDetection(has_answer_key=False, confidence="low", reason="no detection output"),
            "detection returned no output",
        )

    # pages outside the window cannot be part of the key
    window_numbers = {p.page_number for p in window}
    detection.answer_key_page_numbers = sorted(
        {n for n in detection.answer_key_page_numbers if n in window_numbers}
    )
    return Confirmed(detection, detection.confidence)


async def extract_answers(pages: List[OcrPage], llm: LLMClient) -> Outcome[List[AnswerKeyEntry]]:
    """Pass 2, restricted to the given (detected) pages."""
    if not pages:
        return Fallback([], "no answer-key pages")
    extraction = await llm.generate(
        f"Answer key page(s):\n\n{_render_pages(pages)}",
        AnswerKeyExtraction,
        system=_EXTRACT_SYSTEM,
        model=ANSWER_KEY_MODEL,
    )
    if extraction is None:
        return Fallback([], "extraction returned no output")
    return Confirmed(normalize_entries(extraction.entries))


async def extract_answer_key(pages: List[OcrPage], llm: LLMClient) -> AnswerKeyResult:
    """
    Run both passes. Never raises for LLM failures: an answer key is optional
    and the run continues without one.
    """
    log.info("Step 4 (answer key): start pages=%s window=%s", len(pages), ANSWER_KEY_PAGE_WINDOW)
    try:
        detected = await detect_answer_key(pages, llm)
        detection = detected.value
        if not detection.has_answer_key:
            log.info("Step 4 (answer key): none detected (%s)", detection.reason or "no reason")
            return AnswerKeyResult(found=False, confidence=detection.confidence)

        page_numbers = set(detection.answer_key_page_numbers)
        if not page_numbers:
            log.warning("Step 4 (answer key): detected but no page numbers inside the window")
            return AnswerKeyResult(found=False, confidence="low")

        key_pages = [p for p in answer_key_window(pages) if p.page_number in page_numbers]
        extracted = await extract_answers(key_pages, llm)
    except (LLMError, APIError) as e:
        log.warning("Step 4 (answer key): LLM unavailable, continuing without key: %s", e)
        return AnswerKeyResult(found=False, confidence="low")

    if extracted.is_fallback:
        log.warning("Step 4 (answer key): %s", extracted.reason)

    entries = extracted.value
    log.info("Step 4 (answer key): done entries=%s pages=%s", len(entries), sorted(page_numbers))
    return AnswerKeyResult(
        found=bool(entries),
        entries=entries,
        confidence=detection.confidence,
        source_page_numbers=sorted(page_numbers),
    )
