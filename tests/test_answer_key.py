import httpx
import openai
import pytest

from enrichment.answer_key import (
    answer_key_window,
    detect_answer_key,
    extract_answer_key,
    normalize_mcq_answer,
)
from enrichment.llm_client import LLMError
from tests.conftest import FakeLLM, make_page


def _exam_pages(count=6, key_page=None):
    pages = []
    for n in range(1, count + 1):
        if n == key_page:
            pages.append(make_page(n, "Answer Key\n1. B\n2. 24 cm\n3(a) 3/4"))
        else:
            pages.append(make_page(n, f"{n}. Question on page {n}? A. 1 B. 2 C. 3"))
    return pages


async def test_no_answer_key_section():
    llm = FakeLLM({"AnswerKeyDetection": {"has_answer_key": False, "confidence": "high", "reason": "only questions"}})
    result = await extract_answer_key(_exam_pages(), llm)

    assert result.found is False
    assert result.entries == []
    # extraction pass never runs
    assert llm.calls_for("AnswerKeyExtraction") == []


async def test_detection_only_sees_trailing_window():
    llm = FakeLLM()
    await detect_answer_key(_exam_pages(count=8), llm)

    prompt = llm.calls_for("AnswerKeyDetection")[0]["prompt"]
    assert "--- Page 5 ---" in prompt
    assert "--- Page 8 ---" in prompt
    assert "--- Page 4 ---" not in prompt


async def test_detection_without_output_is_a_low_confidence_fallback():
    outcome = await detect_answer_key(_exam_pages(), FakeLLM())
    assert outcome.is_fallback
    assert outcome.value.has_answer_key is False
    assert outcome.value.confidence == "low"


async def test_extraction_is_restricted_to_detected_pages():
    llm = FakeLLM({
        "AnswerKeyDetection": {"has_answer_key": True, "answer_key_page_numbers": [6, 1], "confidence": "high"},
        "AnswerKeyExtraction": {"entries": [
            {"question_number": "1", "answer": "(b)", "answer_type": "mcq_option"},
            {"question_number": "2", "answer": " 24 cm ", "answer_type": "text"},
            {"question_number": "3(a)", "answer": "", "answer_type": "text"},
        ]},
    })
    result = await extract_answer_key(_exam_pages(key_page=6), llm)

    assert result.found is True
    assert result.confidence == "high"
    assert result.source_page_numbers == [6]
    assert [(e.question_number, e.answer) for e in result.entries] == [("1", "B"), ("2", "24 cm")]

    prompt = llm.calls_for("AnswerKeyExtraction")[0]["prompt"]
    assert "--- Page 6 ---" in prompt
    assert "--- Page 5 ---" not in prompt


async def test_detected_but_nothing_extracted_is_not_found():
    llm = FakeLLM({
        "AnswerKeyDetection": {"has_answer_key": True, "answer_key_page_numbers": [6], "confidence": "medium"},
    })
    result = await extract_answer_key(_exam_pages(key_page=6), llm)
    assert result.found is False
    assert result.entries == []


async def test_transport_failure_degrades_to_no_key():
    llm = FakeLLM({"AnswerKeyDetection": LLMError("rate limited")})
    result = await extract_answer_key(_exam_pages(), llm)
    assert result.found is False
    assert result.confidence == "low"


async def test_unknown_answer_key_model_degrades_to_no_key():
    request = httpx.Request("POST", "https://api.groq.com/openai/v1/chat/completions")
    error = openai.NotFoundError(
        "model `kimi` does not exist", response=httpx.Response(404, request=request), body=None,
    )
    llm = FakeLLM({"AnswerKeyDetection": error})
    result = await extract_answer_key(_exam_pages(key_page=6), llm)
    assert result.found is False
    assert result.confidence == "low"


@pytest.mark.parametrize("raw,expected", [
    ("b", "B"),
    ("(B)", "B"),
    ("B.", "B"),
    ("2", "B"),
    ("B. 4 apples", "B"),
    (" d ", "D"),
    ("24 cm", "24 cm"),
])
def test_normalize_mcq_answer(raw, expected):
    assert normalize_mcq_answer(raw) == expected


def test_window_takes_last_pages_in_order():
    pages = [make_page(n, "") for n in (3, 1, 2)]
    assert [p.page_number for p in answer_key_window(pages, window=2)] == [2, 3]
