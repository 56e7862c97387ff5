"""Global exception handlers for consistent error responses.

- ``RateLimitExceededError`` renders the admission rejection contract:
  HTTP 429, ``Retry-After`` and ``{"message", "retryAfter", "violations"?}``.
- Other ``AppError`` subclasses render ``{"error": {code, message,
  request_id, details?}}`` with a status chosen by error type.
- Anything else is a generic 500 that never exposes internals.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.errors import (
    AppError,
    AuthenticationAppError,
    ErrorDetails,
    RateLimitExceededError,
    ValidationAppError,
)
from app.core.logging import get_request_id
from app.schemas.rate_limit import RateLimitRejection

logger = logging.getLogger(__name__)

# First match wins; unmapped AppErrors are treated as client faults
_STATUS_BY_ERROR: tuple[tuple[type[AppError], int], ...] = (
    (AuthenticationAppError, 403),
    (ValidationAppError, 400),
)


def _status_for(exc: AppError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


def _error_body(code: str, message: str, details: ErrorDetails | None = None) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(),
    }
    if details:
        error["details"] = details
    return {"error": error}


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceededError) -> JSONResponse:
    """Render a rejected admission as HTTP 429.

    ``violations`` is omitted when the error carries no count.
    The gate has already logged the decision, so nothing is logged here.
    """
    body = RateLimitRejection(
        message=exc.message,
        retry_after=exc.retry_after,
        violations=exc.violations,
    )
    headers = dict(exc.headers)
    headers.setdefault("Retry-After", str(exc.retry_after))

    return JSONResponse(
        status_code=429,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with the mapped status code and the error envelope.
    """
    status_code = _status_for(exc)

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "status_code": status_code,
            "path": request.url.path,
            "has_details": bool(exc.details),
        },
    )

    return JSONResponse(
        status_code=status_code,
        content=_error_body(exc.code, exc.message, exc.details),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Safety net for unexpected errors.

    The exception type and message go to the log only; the client gets a
    generic message.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )

    return JSONResponse(
        status_code=500,
        content=_error_body(
            "internal_server_error",
            "An unexpected error occurred. Please try again later.",
        ),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app.

    Starlette resolves handlers by walking the exception's MRO, so the
    rate-limit handler wins over the generic AppError one.
    """
    app.add_exception_handler(RateLimitExceededError, rate_limit_exceeded_handler)
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)
