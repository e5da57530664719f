"""
Error taxonomy for upload sessions and its mapping onto HTTP responses.

Every failure raised by the session core carries a stable ``reason`` string
so clients can tell whether to retry a part, retry completion, restart the
session, or abort.
"""

import logging
from typing import Iterable, List, Optional

import pydantic
from fastapi import Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class UploadError(Exception):
    """Base class for failures reported to upload clients."""

    reason = "upload_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.reason, "message": self.message}


class ValidationError(UploadError):
    """Bad or missing fields, or a size over the configured ceiling."""

    reason = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(UploadError):
    """Unknown session or file id."""

    reason = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class InvalidStateError(UploadError):
    """Operation not valid for the session's current state."""

    reason = "invalid_state"
    status_code = status.HTTP_409_CONFLICT


class IncompleteUploadError(UploadError):
    """The manifest names parts that were never confirmed."""

    reason = "incomplete_upload"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, missing_parts: Optional[Iterable[int]] = None):
        super().__init__(message)
        self.missing_parts: List[int] = sorted(missing_parts or [])

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["missing_parts"] = self.missing_parts
        return body


class BackendError(UploadError):
    """Storage backend failure: transient fault or remote rejection."""

    reason = "backend_error"
    status_code = status.HTTP_502_BAD_GATEWAY


class BackendTimeoutError(BackendError):
    """A storage backend call exceeded its time budget."""

    reason = "backend_timeout"
    status_code = status.HTTP_504_GATEWAY_TIMEOUT


class BufferCapacityError(BackendError):
    """The in-process chunk buffer is full; retry the part later."""

    reason = "buffer_full"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ChunkTooLargeError(UploadError):
    """Raised by the ingress layer before a chunk reaches the session core."""

    reason = "chunk_too_large"
    status_code = 413


async def handle_upload_errors(request: Request, exc: UploadError) -> JSONResponse:
    """Render an :class:`UploadError` with its reason string."""
    if isinstance(exc, BackendError):
        logger.error(f"{request.method} {request.url.path} failed: {exc.reason}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.reason}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def handle_pydantic_validation_errors(request: Request, exc: pydantic.ValidationError) -> JSONResponse:
    errors = exc.errors()
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": ValidationError.reason,
            "message": "; ".join(
                f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}" for error in errors
            ),
        },
    )


async def handle_broad_exceptions(request: Request, call_next):
    """Handle any exception that propagates out of a route."""
    try:
        return await call_next(request)
    except Exception as err:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}: {err}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "internal_error", "message": "Internal server error"},
        )
