"""
Signed object reads: GET /storage/{key}?token=...
Tokens are issued by LocalObjectStore.get_download_url().
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse

from storage.keys import mime_type_for_key
from storage.object_store import StorageError, get_object_store

router = APIRouter(prefix="/storage", tags=["storage"])


@router.get("/{key:path}")
def read_object(key: str, token: str = Query(...), store=Depends(get_object_store)):
    if not store.verify_download_token(key, token):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired link"
        )
    try:
        path = store.local_path(key)
    except StorageError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Object not found"
        )
    return FileResponse(path, media_type=mime_type_for_key(key))
