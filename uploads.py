"""
Product image uploads, stored on disk under UPLOAD_DIR and served at /files
"""
import os
import uuid
from typing import List

import structlog
from fastapi import UploadFile

logger = structlog.get_logger(__name__)

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
FILES_URL_PREFIX = "/files"
MAX_FILE_SIZE = 4 * 1024 * 1024
MAX_FILE_COUNT = 3
ALLOWED_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
}


class UploadRejected(ValueError):
    pass


def save_uploads(files: List[UploadFile]) -> List[str]:
    """Validate every file first, then write them all. Returns their URLs."""
    if not files:
        raise UploadRejected("No files uploaded")
    if len(files) > MAX_FILE_COUNT:
        raise UploadRejected(f"At most {MAX_FILE_COUNT} files per upload")

    accepted = []
    for upload in files:
        extension = ALLOWED_TYPES.get(upload.content_type or "")
        if extension is None:
            raise UploadRejected(f"Unsupported file type: {upload.content_type}")
        data = upload.file.read(MAX_FILE_SIZE + 1)
        if len(data) > MAX_FILE_SIZE:
            raise UploadRejected(f"{upload.filename} is larger than 4MB")
        accepted.append((f"{uuid.uuid4().hex}{extension}", data))

    os.makedirs(UPLOAD_DIR, exist_ok=True)
    urls = []
    for name, data in accepted:
        with open(os.path.join(UPLOAD_DIR, name), "wb") as fh:
            fh.write(data)
        urls.append(f"{FILES_URL_PREFIX}/{name}")
    logger.info("files_uploaded", count=len(urls))
    return urls
