# app/utils/storage.py
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import HTTPException, UploadFile, status
from storage3.exceptions import StorageApiError
from supabase import Client, create_client
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


def get_storage_client() -> Client:
    """Created on first use so the app starts without storage credentials."""
    global _client
    if _client is None:
        if not settings.supabase_url or not settings.supabase_key:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="File storage is not configured"
            )
        _client = create_client(settings.supabase_url, settings.supabase_key)
    return _client


@dataclass
class StoredFile:
    path: str
    url: str
    size: int
    content_type: Optional[str]


async def upload_file(file: UploadFile, bucket_name: str, folder: str = "") -> StoredFile:
    """
    Upload to Supabase Storage and return the stored path and public URL.
    """
    file_ext = file.filename.rsplit(".", 1)[-1] if "." in (file.filename or "") else "bin"
    path = f"{folder.strip('/')}/{uuid.uuid4()}.{file_ext}".lstrip("/")
    content = await file.read()
    bucket = get_storage_client().storage.from_(bucket_name)

    try:
        bucket.upload(path=path, file=content, file_options={"content-type": file.content_type})
        url = bucket.get_public_url(path)
    except StorageApiError as e:
        error_msg = str(e).lower()
        if "payload too large" in error_msg or "413" in error_msg:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File '{file.filename}' is too large"
            )
        logger.error(f"Storage upload failed for {file.filename}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="File storage error"
        )

    logger.info(f"Stored {file.filename} as {bucket_name}/{path}")
    return StoredFile(path=path, url=url, size=len(content), content_type=file.content_type)


def remove_file(bucket_name: str, path: str):
    try:
        get_storage_client().storage.from_(bucket_name).remove([path])
    except StorageApiError as e:
        # The database row is already gone; a stray object is only logged
        logger.error(f"Storage delete failed for {bucket_name}/{path}: {e}")
