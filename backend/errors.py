"""
errors.py
=========
HTTP-side error taxonomy and the exception handlers that turn every failure
into an ErrorResponse JSON body. Stack traces are logged, never returned.

  ValidationError     → 400  (bad / missing / oversized upload)
  DecodeError         → 400  (bytes are not a decodable image)
  ModelNotReadyError  → 503  (retry later)
  InferenceError      → 500
  anything else       → 500
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Type

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.schemas.response import ErrorResponse
from ml_models.errors import DecodeError, InferenceError, ModelNotReadyError, PipelineError

logger = logging.getLogger(__name__)


class ValidationError(PipelineError):
    """The upload was missing, not an image, empty, or too large."""

    kind = "ValidationError"


STATUS_BY_ERROR: Dict[Type[PipelineError], int] = {
    ValidationError:    status.HTTP_400_BAD_REQUEST,
    DecodeError:        status.HTTP_400_BAD_REQUEST,
    ModelNotReadyError: status.HTTP_503_SERVICE_UNAVAILABLE,
    InferenceError:     status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(exc: PipelineError) -> int:
    for err_type, code in STATUS_BY_ERROR.items():
        if isinstance(exc, err_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response(code: int, error: str, detail: Optional[str] = None) -> JSONResponse:
    body = ErrorResponse(error=error, detail=detail)
    headers = {"Retry-After": "5"} if code == status.HTTP_503_SERVICE_UNAVAILABLE else None
    return JSONResponse(status_code=code, content=body.model_dump(), headers=headers)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

async def _pipeline_error_handler(request: Request, exc: PipelineError) -> JSONResponse:
    return error_response(status_for(exc), exc.message, detail=exc.kind)


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    messages = {
        status.HTTP_404_NOT_FOUND:          "Endpoint not found.",
        status.HTTP_405_METHOD_NOT_ALLOWED: "HTTP method not allowed for this endpoint.",
    }
    message = messages.get(exc.status_code, str(exc.detail))
    response = error_response(exc.status_code, message)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(status.HTTP_400_BAD_REQUEST, "Malformed request.", detail="ValidationError")


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error.")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PipelineError, _pipeline_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
