"""
Response envelope and exception handlers.

Every response carries ``success``.  Successful responses put their
payload under ``data`` (and side-effect warnings under ``errors``);
failures carry a human-readable ``error``, the stable error ``code`` and,
where useful, ``errors`` or ``data`` with details.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from blogflow.exceptions import (
    BlogflowError,
    EditConflictError,
    EditLockedError,
    ManualResolutionRequiredError,
)

logger = logging.getLogger(__name__)

# HTTP status per error code; unlisted codes map to 400.
STATUS_BY_CODE: Dict[str, int] = {
    "ValidationError": 400,
    "NoChange": 400,
    "InvalidSchedule": 400,
    "IncompletePost": 422,
    "Unauthorized": 401,
    "PermissionDenied": 403,
    "PostNotFound": 404,
    "VersionNotFound": 404,
    "SessionNotFound": 404,
    "QueueItemNotFound": 404,
    "AlreadyProcessed": 409,
    "EditConflict": 409,
    "NoCommonAncestor": 409,
    "ManualResolutionRequired": 409,
    "EditLocked": 423,
    "StorageUnavailable": 503,
}


def ok(data: Any = None, errors: Optional[List[str]] = None) -> Dict[str, Any]:
    """Success envelope."""
    body: Dict[str, Any] = {"success": True, "data": data}
    if errors:
        body["errors"] = errors
    return body


def failure(
    status_code: int,
    error: str,
    code: str,
    errors: Optional[List[Any]] = None,
    data: Any = None,
) -> JSONResponse:
    """Failure envelope as a ``JSONResponse``."""
    body: Dict[str, Any] = {"success": False, "error": error, "code": code}
    if errors:
        body["errors"] = errors
    if data is not None:
        body["data"] = data
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


async def blogflow_error_handler(request: Request, exc: BlogflowError) -> JSONResponse:
    status_code = STATUS_BY_CODE.get(exc.code, 400)
    errors: Optional[List[Any]] = None
    data: Any = None

    if isinstance(exc, EditConflictError):
        errors = exc.conflicts
        data = {"remote_version_id": exc.remote_version_id}
    elif isinstance(exc, ManualResolutionRequiredError):
        data = {"choices": exc.choices}
    elif isinstance(exc, EditLockedError):
        data = {"session_id": exc.session_id}

    if status_code >= 500:
        logger.error("[API] %s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("[API] %s %s -> %s: %s", request.method, request.url.path, exc.code, exc)
    return failure(status_code, str(exc), exc.code, errors=errors, data=data)


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
        for err in exc.errors()
    ]
    return failure(400, "Invalid request", "ValidationError", errors=errors)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("[API] Unhandled error on %s %s", request.method, request.url.path)
    return failure(500, "An unexpected error occurred", "InternalError")


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BlogflowError, blogflow_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)


__all__ = ["STATUS_BY_CODE", "ok", "failure", "install_error_handlers"]
