"""Application-level exception types.

This module defines domain errors used across services and the HTTP layer,
enabling consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    http_status: int
    retry_after: float
    category: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class AuthenticationAppError(AppError):
    """Raised when operator authentication fails."""


@dataclass
class RateLimitExceededError(AppError):
    """Raised by the admission dependency when a request is rejected.

    Rendered as HTTP 429 with ``Retry-After`` by the exception handlers.

    Attributes:
        retry_after: Seconds the caller should wait before retrying.
        violations: Current violation count for the caller, when known.
        headers: Response headers to attach (Retry-After, X-RateLimit-*).
    """

    retry_after: int = 0
    violations: int | None = None
    headers: dict[str, str] = field(default_factory=dict)
