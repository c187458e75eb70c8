"""
Application exceptions and the FastAPI handlers that render them.

Every client-facing failure is returned as ``{"error": <message>}``. Internal
detail is only ever written to the server log.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class PredictionError(Exception):
    """Base for all application-level exceptions."""

    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(PredictionError):
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid input"


class PayloadTooLargeError(ValidationError):
    http_status = status.HTTP_413_CONTENT_TOO_LARGE
    default_message = "Request too large"


class RateLimitError(PredictionError):
    http_status = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Please wait before submitting again"


class ConflictError(PredictionError):
    # Duplicate usernames are reported as a plain bad request.
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "Username already taken"


class InternalError(PredictionError):
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Server error"


def _error_response(http_status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=http_status, content={"error": message})


async def _handle_prediction_error(
    request: Request, exc: PredictionError
) -> JSONResponse:
    level = logging.ERROR if exc.http_status >= 500 else logging.INFO
    logger.log(
        level,
        "%s %s rejected with %s: %s",
        request.method,
        request.url.path,
        exc.http_status,
        exc.message,
    )
    return _error_response(exc.http_status, exc.message)


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error on %s %s", request.method, request.url.path, exc_info=exc
    )
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, InternalError.default_message
    )


def add_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PredictionError, _handle_prediction_error)
    app.add_exception_handler(Exception, _handle_unexpected)
