from __future__ import annotations

import logging
import os

from fastapi import UploadFile

from deployhub.core.config import settings
from deployhub.core.errors import ValidationError
from deployhub.services.deployments import StoredBlob
from deployhub.services.keys import build_storage_path
from deployhub.services.storage import S3ObjectStore

logger = logging.getLogger(__name__)

ALLOWED_SCRIPT_EXTENSIONS = {".lua", ".luau", ".txt"}
SCRIPT_CONTENT_TYPE = "text/plain; charset=utf-8"


def validate_script_filename(filename: str | None) -> str:
    name = os.path.basename(str(filename or "").strip())
    ext = os.path.splitext(name)[1].lower()
    if ext not in ALLOWED_SCRIPT_EXTENSIONS:
        raise ValidationError("Invalid file type. Only .lua, .luau, and .txt files are allowed.")
    return name


async def ingest_script_upload(
    store: S3ObjectStore,
    *,
    user_id: str,
    deploy_key: str,
    file: UploadFile,
) -> StoredBlob:
    """Store an uploaded script and hand back a reference to it.

    Scripts are stored as text/plain so browsers opening the public URL
    display them inline instead of downloading.
    """
    validate_script_filename(file.filename)

    data = await file.read(settings.max_upload_bytes + 1)
    if not data:
        raise ValidationError("No file uploaded")
    if len(data) > settings.max_upload_bytes:
        raise ValidationError(f"File too large (max {settings.max_upload_size_mb} MB)")

    path = build_storage_path(user_id, deploy_key)
    await store.put(path, data, SCRIPT_CONTENT_TYPE)
    logger.info("Ingested upload %s (%s bytes) for user %s", path, len(data), user_id)
    return StoredBlob(path=path, size_bytes=len(data), mime_type=SCRIPT_CONTENT_TYPE)
