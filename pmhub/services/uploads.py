import os
import random
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

import structlog
from fastapi import HTTPException, UploadFile
from slugify import slugify

from ..config import settings
from ..storage.provider import StorageProvider


log = structlog.get_logger()

ALLOWED_MIME_TYPES = {
    "image/jpeg",
    "image/png",
    "image/webp",
    "application/pdf",
    "video/mp4",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


@dataclass
class StoredFile:
    url: str
    key: str
    mimetype: str
    size: int
    original_name: str


def _file_size(upload: UploadFile) -> int:
    stream = upload.file
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def build_key(field: str, original_name: str) -> str:
    stem, ext = os.path.splitext(original_name or "")
    suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9 - 1):09d}"
    name_part = slugify(stem)[:60]
    name_part = f"-{name_part}" if name_part else ""
    return f"uploads/{slugify(field) or 'file'}-{suffix}{name_part}{ext.lower()}"


def validate_uploads(files: List[UploadFile]) -> None:
    if len(files) > settings.upload_max_files:
        raise HTTPException(status_code=400, detail=f"Too many files (max {settings.upload_max_files})")
    for f in files:
        if (f.content_type or "") not in ALLOWED_MIME_TYPES:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid file type for {f.filename}. Only images, PDFs, MP4 videos, text and Office documents are allowed.",
            )
        if _file_size(f) > settings.upload_max_bytes:
            raise HTTPException(status_code=400, detail=f"File {f.filename} exceeds the upload size limit")


def store_uploads(storage: StorageProvider, files: Optional[List[UploadFile]], field: str = "files") -> List[StoredFile]:
    """Validate then store every file. Either all files are stored or none remain."""
    files = [f for f in (files or []) if f is not None and f.filename]
    if not files:
        return []
    validate_uploads(files)
    stored: List[StoredFile] = []
    try:
        for f in files:
            size = _file_size(f)
            key = build_key(field, f.filename)
            url = storage.put(key, f.file, f.content_type)
            stored.append(
                StoredFile(url=url, key=key, mimetype=f.content_type, size=size, original_name=f.filename)
            )
    except Exception as e:
        log.error("upload_store_failed", error=str(e), stored=len(stored))
        discard_uploads(storage, stored)
        raise HTTPException(status_code=500, detail={"message": "Failed to store uploaded files", "details": str(e)})
    return stored


def discard_uploads(storage: StorageProvider, stored: Iterable[StoredFile]) -> None:
    """Compensating cleanup for files whose database write failed."""
    for s in stored:
        try:
            storage.delete(s.key)
        except Exception as e:
            log.warning("upload_discard_failed", key=s.key, error=str(e))


def delete_stored_urls(storage: StorageProvider, urls: Optional[Iterable[str]]) -> int:
    """Best-effort delete of stored objects by URL. Returns how many were deleted."""
    deleted = 0
    for url in urls or []:
        key = storage.key_from_url(url)
        if not key:
            log.warning("storage_key_unresolved", url=url)
            continue
        try:
            storage.delete(key)
            deleted += 1
        except Exception as e:
            log.warning("storage_delete_failed", key=key, error=str(e))
    return deleted


def first_upload(files: Optional[List[UploadFile]]) -> Optional[UploadFile]:
    """The first named file of a multipart `files` field, for endpoints that keep one."""
    for f in files or []:
        if f is not None and f.filename:
            return f
    return None
