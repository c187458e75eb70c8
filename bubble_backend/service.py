"""
Prediction submission and aggregation logic shared by the HTTP routes.
"""

from __future__ import annotations

import hashlib
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from bubble_backend.db import DbClient, PredictionStats
from bubble_backend.schemas import (
    AverageResponse,
    PredictionSubmission,
    SubmitPredictionResponse,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hash_ip(ip: str) -> str:
    """Return the SHA-256 hex digest used to track a client without storing its address."""
    return hashlib.sha256(ip.encode("utf-8")).hexdigest()


def round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; 2.5 must become 3 here.
    return math.floor(value + 0.5)


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a trailing Z."""
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _project_average(
    avg_days: Optional[float], total: int, now: datetime
) -> AverageResponse:
    if not total or avg_days is None:
        return AverageResponse(averageDate=None, averageDays=None, totalPredictions=0)
    average_days = round_half_up(avg_days)
    return AverageResponse(
        averageDate=format_timestamp(now + timedelta(days=average_days)),
        averageDays=average_days,
        totalPredictions=total,
    )


def get_average(db: DbClient, clock: Clock = utcnow) -> AverageResponse:
    avg_days, total = db.get_average()
    return _project_average(avg_days, total, clock())


def get_stats(db: DbClient) -> PredictionStats:
    return db.get_stats()


def submit_prediction(
    db: DbClient,
    submission: PredictionSubmission,
    client_ip: str,
    *,
    rate_limit_seconds: int,
    clock: Clock = utcnow,
) -> SubmitPredictionResponse:
    """
    Store a validated submission and return the refreshed average.

    Raises RateLimitError when the same client submitted inside the window and
    ConflictError when the username is already in use.
    """
    now = clock()
    record = db.submit_prediction(
        username=submission.username,
        days_until_pop=submission.days_until_pop,
        ip_hash=hash_ip(client_ip),
        submitted_at=now,
        rate_limit_seconds=rate_limit_seconds,
    )
    logger.info(
        "Stored prediction %s (%s days)", record.id, record.days_until_pop
    )
    avg_days, total = db.get_average()
    average = _project_average(avg_days, total, now)
    return SubmitPredictionResponse(success=True, **average.model_dump())
