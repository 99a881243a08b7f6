"""
Deterministic object-store key scheme.

  pdfs/{uuid}.pdf                      uploaded exam papers
  images/{exam_id}/{image_id}.{ext}    images kept from OCR

Image keys are collision-free per exam because OCR image ids are unique
within a document.
"""

import uuid
from typing import Optional

MIME_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
}
EXTENSION_MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
    "pdf": "application/pdf",
}
DEFAULT_EXTENSION = "png"

IMAGE_PREFIX = "images"
PDF_PREFIX = "pdfs"


def extension_for(mime_type: Optional[str]) -> str:
    return MIME_EXTENSIONS.get((mime_type or "").lower(), DEFAULT_EXTENSION)


def mime_type_for_key(key: str) -> str:
    ext = key.rsplit(".", 1)[-1].lower() if "." in key else ""
    return EXTENSION_MIME_TYPES.get(ext, "application/octet-stream")


def _stem(image_id: str) -> str:
    """'img-0.jpeg' → 'img-0' (the stored extension comes from the mime type)."""
    return image_id.rsplit(".", 1)[0] if "." in image_id else image_id


def image_key(exam_id: str, image_id: str, mime_type: Optional[str]) -> str:
    return f"{IMAGE_PREFIX}/{exam_id}/{_stem(image_id)}.{extension_for(mime_type)}"


def exam_image_prefix(exam_id: str) -> str:
    return f"{IMAGE_PREFIX}/{exam_id}/"


def pdf_key() -> str:
    return f"{PDF_PREFIX}/{uuid.uuid4()}.pdf"
