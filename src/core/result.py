"""
Result Module for Futures Trading Bot.

The execution pipeline and position monitor report outcomes as values
instead of raising, so callers decide whether to retry.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Optional, TypeVar


T = TypeVar("T")


class ErrorKind(str, Enum):
    """Failure categories surfaced to callers."""

    DATA_UNAVAILABLE = "data_unavailable"
    VALIDATION_FAILURE = "validation_failure"
    RISK_LIMIT_EXCEEDED = "risk_limit_exceeded"
    EXCHANGE_ERROR = "exchange_error"
    AI_SERVICE_FAILURE = "ai_service_failure"
    NOT_FOUND = "not_found"
    STORAGE_ERROR = "storage_error"


# Exchange hiccups are transient; everything else needs new input.
RETRYABLE_KINDS = frozenset({ErrorKind.EXCHANGE_ERROR})


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success value or categorized failure."""

    ok: bool
    value: Optional[T] = None
    error_kind: Optional[ErrorKind] = None
    error: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def retryable(self) -> bool:
        return not self.ok and self.error_kind in RETRYABLE_KINDS

    @classmethod
    def success(cls, value: Optional[T] = None, **details: Any) -> "Result[T]":
        return cls(ok=True, value=value, details=details)

    @classmethod
    def failure(cls, kind: ErrorKind, error: str, **details: Any) -> "Result[T]":
        return cls(ok=False, error_kind=kind, error=error, details=details)

    def __bool__(self) -> bool:
        return self.ok
