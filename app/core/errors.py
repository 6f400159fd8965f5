# app/core/errors.py
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

# Postgres SQLSTATE codes
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"


def constraint_violation_code(exc: IntegrityError) -> Optional[str]:
    """SQLSTATE of an IntegrityError, read from the driver (or the SQLite message)."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None)
    if code:
        return code
    message = str(orig or exc).upper()
    if "UNIQUE CONSTRAINT" in message:
        return UNIQUE_VIOLATION
    if "FOREIGN KEY CONSTRAINT" in message:
        return FOREIGN_KEY_VIOLATION
    return None


def conflict_from_integrity_error(
    exc: IntegrityError,
    unique_message: str = "Record already exists",
    foreign_key_message: str = "Record is referenced by other records",
) -> HTTPException:
    code = constraint_violation_code(exc)
    if code == UNIQUE_VIOLATION:
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=unique_message)
    if code == FOREIGN_KEY_VIOLATION:
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=foreign_key_message)
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Database constraint violation")


def field_errors(exc: RequestValidationError) -> List[dict]:
    errors = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path", "form")]
        errors.append({
            "field": ".".join(loc) or "request",
            "message": error.get("msg", "Invalid value"),
        })
    return errors


# ===========================
# EXCEPTION HANDLERS
# ===========================
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, str):
        request.state.error_message = exc.detail
    body = {"success": False, "message": exc.detail}
    if isinstance(exc.detail, dict):
        body = {"success": False, **exc.detail}
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = field_errors(exc)
    logger.warning(f"Validation error on {request.method} {request.url.path}: {errors}")
    # Picked up by the security logging post-response hooks
    request.state.validation_errors = errors
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "message": "Validation failed", "errors": errors},
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=True)
    content = {"success": False, "message": "Internal server error"}
    if settings.is_development:
        content["error"] = str(exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=content)


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
