"""
Community logo validation and storage.
"""

from __future__ import annotations

import logging
import os
import re
import time
from typing import Optional

from backend.errors import UploadError
from backend.storage import StorageClient
from shared.firebase_constants import COMMUNITY_LOGOS_PREFIX

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = re.compile(r"jpeg|jpg|png|gif")
DEFAULT_MAX_LOGO_BYTES = 5 * 1024 * 1024


def validate_logo(
    filename: str,
    content_type: Optional[str],
    size: int,
    max_bytes: int = DEFAULT_MAX_LOGO_BYTES,
) -> None:
    extension = os.path.splitext(filename or "")[1].lower()
    if not (
        ALLOWED_IMAGE_TYPES.search(extension)
        and ALLOWED_IMAGE_TYPES.search(content_type or "")
    ):
        raise UploadError("Only image files are allowed")
    if size > max_bytes:
        raise UploadError("File upload error: File too large")


async def read_logo(upload, max_bytes: int = DEFAULT_MAX_LOGO_BYTES) -> bytes:
    """
    Read at most one byte past the limit, enough for `validate_logo` to
    reject an oversized file without buffering all of it.
    """
    return await upload.read(max_bytes + 1)


def logo_storage_path(filename: str, now: Optional[float] = None) -> str:
    base = os.path.basename((filename or "logo").replace("\\", "/"))
    safe = re.sub(r"[^A-Za-z0-9._-]", "_", base) or "logo"
    millis = int((now if now is not None else time.time()) * 1000)
    return f"{COMMUNITY_LOGOS_PREFIX}/{millis}-{safe}"


def store_logo(
    storage: StorageClient,
    filename: str,
    content_type: Optional[str],
    data: bytes,
    max_bytes: int = DEFAULT_MAX_LOGO_BYTES,
) -> tuple[str, str]:
    """Validate and upload a logo. Returns (storage_path, public_url)."""
    validate_logo(filename, content_type, len(data), max_bytes)
    path = logo_storage_path(filename)
    url = storage.upload_bytes(path, data, content_type or "application/octet-stream")
    return path, url


def legacy_logo_path(logo_url: str) -> str:
    """Blob path for records that only stored the public URL."""
    return f"{COMMUNITY_LOGOS_PREFIX}/{logo_url.rstrip('/').split('/')[-1]}"


def delete_logo_quietly(storage: StorageClient, path: str) -> None:
    try:
        storage.delete(path)
    except Exception:
        logger.exception("Error deleting old logo %s", path)
