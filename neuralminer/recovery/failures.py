"""Failure taxonomy and recovery decisions."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class FailureKind(StrEnum):
    """What went wrong, independent of the exception type that carried it."""

    MODEL_ERROR = "model_error"
    PARSING_ERROR = "parsing_error"
    TIMEOUT_ERROR = "timeout_error"
    VALIDATION_ERROR = "validation_error"
    EXTERNAL_API_ERROR = "external_api_error"
    UNKNOWN_ERROR = "unknown_error"


class RecoveryStrategy(StrEnum):
    RETRY = "retry"
    FALLBACK = "fallback"
    SKIP = "skip"
    ROLLBACK = "rollback"
    ABORT = "abort"


class FailureRecord(BaseModel):
    """
    One recorded failure of an origin (agent or tool).

    `attempt` counts prior records of the same kind for the same origin,
    plus one. It is not a global attempt counter.
    """

    origin_id: str
    kind: FailureKind
    timestamp: float
    message: str
    attempt: int = Field(ge=1)
    context: dict[str, Any] | None = None


class RecoveryAction(BaseModel):
    """Advisory decision for a failure; the caller acts on it."""

    strategy: RecoveryStrategy
    delay: float | None = Field(default=None, description="Seconds to wait before retrying")
    message: str = ""
