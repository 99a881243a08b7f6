from .object_store import LocalObjectStore, StorageError, get_object_store
from .keys import image_key, pdf_key, exam_image_prefix

__all__ = [
    "LocalObjectStore",
    "StorageError",
    "get_object_store",
    "image_key",
    "pdf_key",
    "exam_image_prefix",
]
