"""
HTTP routes for the predictions API.
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool

from bubble_backend.config import Settings, get_settings
from bubble_backend.db import DbClient
from bubble_backend.dependencies import get_db_client
from bubble_backend.errors import (
    InternalError,
    PayloadTooLargeError,
    PredictionError,
    ValidationError,
)
from bubble_backend import service
from bubble_backend.schemas import (
    CLIENT_ERROR_TYPES,
    AverageResponse,
    PredictionSubmission,
    StatsResponse,
    SubmitPredictionResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _client_ip(request: Request, settings: Settings) -> str:
    forwarded = request.headers.get(settings.client_ip_header)
    if forwarded:
        return forwarded.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _check_headers(request: Request, settings: Settings) -> None:
    content_type = request.headers.get("content-type", "")
    if "application/json" not in content_type.lower():
        raise ValidationError("Invalid content type")

    content_length = request.headers.get("content-length")
    if content_length:
        try:
            declared = int(content_length)
        except ValueError:
            raise ValidationError("Invalid input") from None
        if declared > settings.max_request_bytes:
            raise PayloadTooLargeError()


async def _parse_submission(request: Request) -> PredictionSubmission:
    try:
        body = json.loads(await request.body())
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError("Invalid input") from None
    if not isinstance(body, dict):
        raise ValidationError("Invalid input")

    try:
        return PredictionSubmission.model_validate(body)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        if first["type"] in CLIENT_ERROR_TYPES:
            raise ValidationError(first["msg"]) from None
        raise ValidationError("Invalid input") from None


@router.post("/predictions", response_model=SubmitPredictionResponse)
async def submit_prediction(
    request: Request,
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
):
    """
    Validate and store a prediction, then return the refreshed average.
    """
    _check_headers(request, settings)
    submission = await _parse_submission(request)
    client_ip = _client_ip(request, settings)
    try:
        return await run_in_threadpool(
            service.submit_prediction,
            db,
            submission,
            client_ip,
            rate_limit_seconds=settings.rate_limit_seconds,
        )
    except PredictionError:
        raise
    except Exception:
        logger.exception("Error submitting prediction")
        raise InternalError("Server error") from None


@router.get("/predictions/average", response_model=AverageResponse)
def get_average(db: DbClient = Depends(get_db_client)):
    try:
        return service.get_average(db)
    except Exception:
        logger.exception("Error getting average")
        raise InternalError("Failed to get average") from None


@router.get("/predictions/stats", response_model=StatsResponse)
def get_stats(db: DbClient = Depends(get_db_client)):
    try:
        stats = service.get_stats(db)
    except Exception:
        logger.exception("Error getting stats")
        raise InternalError("Failed to get stats") from None
    return StatsResponse(**stats.as_dict())
