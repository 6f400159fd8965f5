# app/services/imports/uploads.py
from typing import Optional

from fastapi import HTTPException, UploadFile, status

from app.core.config import settings
from app.services.imports.parser import ImportFileError, check_extension
from app.services.imports.pipeline import SKIP, UPSERT

SUPPORTED_MODES = (SKIP, UPSERT)


def parse_flag(value, default: bool) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in ("false", "0", "no", "off")


def resolve_mode(mode: Optional[str]) -> str:
    mode = (mode or SKIP).strip().lower()
    if mode not in SUPPORTED_MODES:
        raise HTTPException(status_code=400, detail=f"Unsupported import mode '{mode}'. Use 'skip' or 'upsert'")
    return mode


async def read_upload(file: UploadFile) -> bytes:
    """Extension and size checks happen before any parsing."""
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    try:
        check_extension(file.filename)
    except ImportFileError as e:
        raise HTTPException(status_code=400, detail=str(e))

    limit = settings.max_import_file_size
    too_large = HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail=f"File too large. Maximum size is {limit // (1024 * 1024)}MB",
    )
    if file.size is not None and file.size > limit:
        raise too_large
    content = await file.read(limit + 1)
    if len(content) > limit:
        raise too_large
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    return content
