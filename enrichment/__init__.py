"""
Generative stages of the exam pipeline.

  semantic_enricher.py  → Step 3: question type, related images, visible answers, metadata
  answer_key.py         → Step 4: two-pass answer-key detection + extraction
  image_classifier.py   → Step 5: content vs administrative images
  llm_client.py         → schema-constrained calls (returns None on unusable output)
  outcome.py            → Confirmed / Fallback tagged results
"""

from .outcome import Confirmed, Fallback
from .llm_client import LLMClient, LLMError, get_llm_client
from .semantic_enricher import enrich_structure
from .answer_key import extract_answer_key
from .image_classifier import classify_images, classify_image, classify_by_position

__all__ = [
    "Confirmed",
    "Fallback",
    "LLMClient",
    "LLMError",
    "get_llm_client",
    "enrich_structure",
    "extract_answer_key",
    "classify_images",
    "classify_image",
    "classify_by_position",
]
