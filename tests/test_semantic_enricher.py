import pytest

from enrichment.llm_client import LLMError
from enrichment.semantic_enricher import build_enrichment_prompt, enrich_structure
from parsing.structural_parser import parse_structure
from tests.conftest import FakeLLM, make_page

PAGES = [
    make_page(1, "\n".join([
        "Primary 5 Science",
        "1. What is 2+2? A. 3 B. 4 C. 5",
        "2. Look at the picture below. Name the animal.",
        "![img-0.jpeg](img-0.jpeg)",
        "![img-1.jpeg](img-1.jpeg)",
    ])),
]


async def test_no_output_falls_back_to_heuristics():
    structural = parse_structure(PAGES)
    outcome = await enrich_structure(structural, FakeLLM())

    assert outcome.is_fallback
    exam = outcome.value
    types = {q.question_number: q.question_type for q in exam.questions}
    assert types == {"1": "mcq", "2": "short_answer"}
    assert all(q.related_image_ids == [] for q in exam.questions)
    # structural metadata survives
    assert exam.subject == "Science"
    assert exam.grade == "Primary 5"


async def test_confirmed_merge_keeps_structural_fields():
    llm = FakeLLM({"EnrichmentResponse": {
        "subject": "Science",
        "grade": "Primary 5",
        "school_name": "Nanyang Primary",
        "questions": [
            {"question_number": "Q1", "question_type": "mcq"},
            {
                "question_number": "2",
                "question_type": "short_answer",
                "related_image_ids": ["img-1.jpeg", "img-9.png", "img-1.jpeg"],
                "expected_answer": "  ",
            },
        ],
    }})
    structural = parse_structure(PAGES)
    outcome = await enrich_structure(structural, llm)

    assert not outcome.is_fallback
    assert outcome.confidence == "high"
    exam = outcome.value
    q1, q2 = exam.questions
    assert q1.text == structural.questions[0].text
    assert [o.label for o in q1.options] == ["A", "B", "C"]
    # only ids that were nearby, no duplicates
    assert q2.related_image_ids == ["img-1.jpeg"]
    assert q2.expected_answer is None
    assert exam.school_name == "Nanyang Primary"
    assert [s.question_numbers for s in exam.sections] == [["1", "2"]]


async def test_missing_questions_use_heuristics_with_medium_confidence():
    llm = FakeLLM({"EnrichmentResponse": {
        "subject": None,
        "questions": [{"question_number": "2", "question_type": "long_answer"}],
    }})
    outcome = await enrich_structure(parse_structure(PAGES), llm)

    assert outcome.confidence == "medium"
    types = {q.question_number: q.question_type for q in outcome.value.questions}
    assert types == {"1": "mcq", "2": "long_answer"}
    assert outcome.value.subject == "Science"


async def test_no_questions_skips_the_call():
    llm = FakeLLM()
    outcome = await enrich_structure(parse_structure([make_page(1, "Just a cover page")]), llm)

    assert outcome.is_fallback
    assert outcome.value.questions == []
    assert llm.calls == []


async def test_transport_failure_propagates():
    llm = FakeLLM({"EnrichmentResponse": LLMError("down")})
    with pytest.raises(LLMError):
        await enrich_structure(parse_structure(PAGES), llm)


def test_prompt_carries_nearby_images_not_raw_ocr_bitmaps():
    prompt = build_enrichment_prompt(parse_structure(PAGES))
    assert '"nearby_image_ids"' in prompt
    assert "img-0.jpeg" in prompt
    assert "base64" not in prompt
