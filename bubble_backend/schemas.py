"""
Pydantic schemas for the predictions API.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_core import PydanticCustomError

from bubble_backend.db import (
    MAX_DAYS_UNTIL_POP,
    MAX_USERNAME_LENGTH,
    MIN_DAYS_UNTIL_POP,
)

INVALID_INPUT = "invalid_input"
INVALID_DAYS = "invalid_days"
USERNAME_TOO_LONG = "username_too_long"

# Error types whose message is safe and meaningful to show the client.
CLIENT_ERROR_TYPES = {INVALID_INPUT, INVALID_DAYS, USERNAME_TOO_LONG}


def _utf16_length(value: str) -> int:
    # Browsers count UTF-16 code units, so an emoji uses two characters.
    return len(value.encode("utf-16-le")) // 2


class PredictionSubmission(BaseModel):
    """
    Body of ``POST /api/predictions``.

    Fields are declared in the order they are checked, so the first reported
    error is the one the client sees.
    """

    model_config = ConfigDict(extra="ignore")

    days_until_pop: int = Field(..., alias="daysUntilPop")
    username: Optional[str] = None

    @field_validator("days_until_pop", mode="before")
    @classmethod
    def _check_days(cls, value: Any) -> int:
        # bool is an int subclass but true/false are not day counts.
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise PydanticCustomError(INVALID_INPUT, "Invalid input")
        if isinstance(value, float):
            if not value.is_integer():
                raise PydanticCustomError(INVALID_INPUT, "Invalid input")
            value = int(value)
        if not MIN_DAYS_UNTIL_POP <= value <= MAX_DAYS_UNTIL_POP:
            raise PydanticCustomError(INVALID_DAYS, "Invalid days value")
        return value

    @field_validator("username", mode="before")
    @classmethod
    def _check_username(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str):
            raise PydanticCustomError(INVALID_INPUT, "Invalid input")
        value = value.strip()
        if _utf16_length(value) > MAX_USERNAME_LENGTH:
            raise PydanticCustomError(USERNAME_TOO_LONG, "Username too long")
        return value or None


class AverageResponse(BaseModel):
    averageDate: Optional[str]
    averageDays: Optional[int]
    totalPredictions: int


class SubmitPredictionResponse(BaseModel):
    success: bool
    averageDate: str
    averageDays: int
    totalPredictions: int


class StatsResponse(BaseModel):
    total_predictions: int
    avg_days: Optional[float] = None
    min_days: Optional[int] = None
    max_days: Optional[int] = None
