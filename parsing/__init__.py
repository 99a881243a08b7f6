"""
Deterministic parsing layer (no AI/LLM usage).

  structural_parser — question / section / image boundaries from OCR markdown
  sections          — section membership
  question_numbers  — canonical question-number keys
  markdown          — image-reference helpers
"""

from .structural_parser import StructuralParser, parse_structure
from .sections import build_sections, section_image_refs
from .question_numbers import normalize_question_number

__all__ = [
    "StructuralParser",
    "parse_structure",
    "build_sections",
    "section_image_refs",
    "normalize_question_number",
]
