"""
Document Ingestion — Step 1 of the Exam Pipeline

Sends a stored PDF to Mistral OCR and converts the response into OcrPage
objects: per-page markdown plus embedded images with bounding boxes and raw
bitmaps.

Design decisions:
  - One OCR call per document, images requested inline (base64)
  - Bounded retries; failure after the last attempt raises OcrError and the
    processing run is marked failed by the caller
  - The provider payload is kept (minus bitmaps) for debugging / re-parsing
"""

import asyncio
import base64
import copy
import logging
import os
import re
from typing import Any, Dict, Optional

from mistralai import Mistral

from ingestion.schemas import OcrImage, OcrPage, OcrResult

log = logging.getLogger(__name__)

# ── Configuration ─────────────────────────────────────────────────────────────
OCR_MODEL = os.getenv("OCR_MODEL", "mistral-ocr-latest")
OCR_MAX_RETRIES = int(os.getenv("OCR_MAX_RETRIES", "2"))
# Local object stores are not reachable by the OCR provider; send the PDF inline.
OCR_INLINE_DOCUMENTS = os.getenv("OCR_INLINE_DOCUMENTS", "true").lower() in ("1", "true", "yes")

DATA_URL_PATTERN = re.compile(r"^data:([\w/+.-]+);base64,", re.IGNORECASE)

EXTENSION_MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
}
DEFAULT_IMAGE_MIME = "image/jpeg"


class OcrError(Exception):
    """OCR call failed after exhausting retries, or returned an unusable payload."""


def _split_data_url(data: Optional[str], image_id: str):
    """Return (bare base64, mime type) for a possibly data-URL-prefixed bitmap."""
    ext = image_id.rsplit(".", 1)[-1].lower() if "." in image_id else ""
    mime = EXTENSION_MIME_TYPES.get(ext, DEFAULT_IMAGE_MIME)
    if not data:
        return None, mime
    m = DATA_URL_PATTERN.match(data)
    if m:
        return data[m.end():], m.group(1).lower()
    return data, mime


def parse_ocr_response(payload: Dict[str, Any], model: Optional[str] = None) -> OcrResult:
    """
    Convert a provider payload (dict form of the OCR response) into OcrResult.

    Page numbers are 1-based. Image ids missing from the payload are replaced
    by 'page-{n}-img-{i}'. Page dimensions are copied onto every image so the
    classifier can compute relative positions.
    """
    pages = []
    for position, raw_page in enumerate(payload.get("pages") or []):
        index = raw_page.get("index")
        page_number = (index + 1) if isinstance(index, int) else position + 1
        dims = raw_page.get("dimensions") or {}
        width = dims.get("width")
        height = dims.get("height")

        images = []
        for i, raw_img in enumerate(raw_page.get("images") or []):
            image_id = raw_img.get("id") or f"page-{page_number}-img-{i}"
            bitmap, mime = _split_data_url(raw_img.get("image_base64"), image_id)
            images.append(OcrImage(
                id=image_id,
                image_base64=bitmap,
                mime_type=mime,
                page_number=page_number,
                top_left_x=raw_img.get("top_left_x"),
                top_left_y=raw_img.get("top_left_y"),
                bottom_right_x=raw_img.get("bottom_right_x"),
                bottom_right_y=raw_img.get("bottom_right_y"),
                page_width=width,
                page_height=height,
            ))

        pages.append(OcrPage(
            page_number=page_number,
            markdown=raw_page.get("markdown") or "",
            images=images,
            width=width,
            height=height,
        ))

    pages.sort(key=lambda p: p.page_number)
    return OcrResult(pages=pages, model=model or payload.get("model"), raw_json=strip_bitmaps(payload))


def strip_bitmaps(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of the payload without image_base64 blobs (what gets stored on the exam row)."""
    slim = copy.deepcopy(payload)
    for page in slim.get("pages") or []:
        for img in page.get("images") or []:
            img.pop("image_base64", None)
    return slim


def pdf_data_url(pdf_bytes: bytes) -> str:
    return "data:application/pdf;base64," + base64.b64encode(pdf_bytes).decode("ascii")


def document_url_for(store, key: str) -> str:
    """URL the OCR provider fetches the PDF from: inline data URL or a signed read URL."""
    if OCR_INLINE_DOCUMENTS:
        return pdf_data_url(store.read_bytes(key))
    return store.get_download_url(key)


class OcrClient:
    """
    Thin async wrapper around Mistral OCR.
    The SDK client is created lazily so importing this module never needs a key.
    """

    def __init__(self, api_key: Optional[str] = None, model: str = OCR_MODEL, max_retries: int = OCR_MAX_RETRIES):
        self.api_key = api_key
        self.model = model
        self.max_retries = max(1, max_retries)
        self._client: Optional[Mistral] = None

    def _get_client(self) -> Mistral:
        if self._client is None:
            api_key = self.api_key or os.getenv("MISTRAL_API_KEY")
            if not api_key:
                raise RuntimeError(
                    "MISTRAL_API_KEY is not set. Add it to your .env file."
                )
            self._client = Mistral(api_key=api_key)
        return self._client

    async def process_document(self, document_url: str) -> OcrResult:
        client = self._get_client()
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                response = await client.ocr.process_async(
                    model=self.model,
                    document={"type": "document_url", "document_url": document_url},
                    include_image_base64=True,
                )
                payload = response.model_dump() if hasattr(response, "model_dump") else dict(response)
                result = parse_ocr_response(payload, model=self.model)
                if not result.pages:
                    raise OcrError("OCR returned no pages")
                return result
            except OcrError:
                raise
            except Exception as e:
                last_error = e
                log.warning("Step 1 (ocr): attempt %s/%s failed: %s", attempt + 1, self.max_retries, e)
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(1.0 * (attempt + 1))

        raise OcrError(f"OCR failed after {self.max_retries} attempts: {last_error}") from last_error
