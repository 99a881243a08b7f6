"""
Ingestion package — Step 1 of the exam pipeline.

Pipeline:
  1. ocr.py       → PDF → per-page markdown + embedded images (Mistral OCR)
  2. schemas.py   → OcrImage / OcrPage / OcrResult
"""

from .schemas import OcrImage, OcrPage, OcrResult
from .ocr import OcrClient, OcrError, parse_ocr_response, document_url_for

__all__ = [
    "OcrImage",
    "OcrPage",
    "OcrResult",
    "OcrClient",
    "OcrError",
    "parse_ocr_response",
    "document_url_for",
]
