"""
Local object store.

Objects live under STORAGE_ROOT (default ./uploads) using the key as relative
path. Read access goes through short-lived signed URLs: a JWT carrying the key
and an expiry, checked by the /storage route.

Writes are not transactional; the storage reconciler cleans up objects that
no database row refers to.
"""

import logging
import os
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from jose import JWTError, jwt

log = logging.getLogger(__name__)

# ─── Config ───────────────────────────────────────────────────────────────────

STORAGE_ROOT = os.getenv("STORAGE_ROOT", "uploads")
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8001")
STORAGE_SIGNING_KEY = os.getenv("STORAGE_SIGNING_KEY", "exam-storage-key-change-in-production")
SIGNED_URL_TTL_SECONDS = int(os.getenv("SIGNED_URL_TTL_SECONDS", "3600"))
ALGORITHM = "HS256"


class StorageError(Exception):
    """Invalid key, missing object or rejected signature."""


class LocalObjectStore:

    def __init__(
        self,
        root: str = STORAGE_ROOT,
        public_base_url: str = PUBLIC_BASE_URL,
        signing_key: str = STORAGE_SIGNING_KEY,
        ttl_seconds: int = SIGNED_URL_TTL_SECONDS,
    ):
        self.root = Path(root).resolve()
        self.public_base_url = public_base_url.rstrip("/")
        self.signing_key = signing_key
        self.ttl_seconds = ttl_seconds

    # ── Paths ─────────────────────────────────────────────────────────────

    def _path(self, key: str) -> Path:
        if not key or key.startswith("/") or "\\" in key or ".." in key.split("/"):
            raise StorageError(f"Invalid storage key: {key!r}")
        return self.root / key

    # ── Writes ────────────────────────────────────────────────────────────

    def upload_bytes(self, key: str, data: bytes, content_type: Optional[str] = None) -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".part")
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
        log.debug("stored %s (%s bytes, %s)", key, len(data), content_type)
        return key

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.is_file():
            return False
        path.unlink()
        return True

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under prefix (e.g. 'images/{exam_id}/'). Returns count."""
        base = self._path(prefix.rstrip("/"))
        if not base.exists():
            return 0
        if base.is_file():
            base.unlink()
            return 1
        count = sum(1 for p in base.rglob("*") if p.is_file())
        shutil.rmtree(base)
        return count

    # ── Reads ─────────────────────────────────────────────────────────────

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def read_bytes(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise StorageError(f"Object not found: {key}")
        return path.read_bytes()

    def local_path(self, key: str) -> Path:
        path = self._path(key)
        if not path.is_file():
            raise StorageError(f"Object not found: {key}")
        return path

    def list_keys(self, prefix: str = "") -> List[str]:
        if not self.root.exists():
            return []
        keys = []
        for p in self.root.rglob("*"):
            if p.is_file() and not p.name.endswith(".part"):
                key = p.relative_to(self.root).as_posix()
                if key.startswith(prefix):
                    keys.append(key)
        return sorted(keys)

    # ── Signed URLs ───────────────────────────────────────────────────────

    def create_download_token(self, key: str, expires_in: Optional[int] = None) -> str:
        expire = datetime.now(timezone.utc) + timedelta(seconds=expires_in or self.ttl_seconds)
        return jwt.encode({"key": key, "exp": expire}, self.signing_key, algorithm=ALGORITHM)

    def get_download_url(self, key: str, expires_in: Optional[int] = None) -> str:
        """Short-lived signed read URL for an existing object."""
        if not self.exists(key):
            raise StorageError(f"Object not found: {key}")
        token = self.create_download_token(key, expires_in)
        return f"{self.public_base_url}/storage/{quote(key)}?token={token}"

    def verify_download_token(self, key: str, token: str) -> bool:
        try:
            payload = jwt.decode(token, self.signing_key, algorithms=[ALGORITHM])
        except JWTError:
            return False
        return payload.get("key") == key


# Lazy singleton
_store: Optional[LocalObjectStore] = None


def get_object_store() -> LocalObjectStore:
    global _store
    if _store is None:
        _store = LocalObjectStore()
    return _store
