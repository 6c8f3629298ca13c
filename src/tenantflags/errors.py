"""Structured error handling for the tenantflags service.

Provides a standard error envelope, the domain exception taxonomy, and a
FastAPI exception handler that maps exceptions to HTTP status codes.
"""

from __future__ import annotations

import traceback
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Error envelope schema
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    code: str
    message: str
    request_id: str = ""
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------

class TenantFlagsError(Exception):
    """Base exception for all tenantflags errors."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(TenantFlagsError):
    status_code = 400
    error_code = "VALIDATION_ERROR"


class UnauthorizedError(TenantFlagsError):
    status_code = 401
    error_code = "UNAUTHORIZED"


class ForbiddenError(TenantFlagsError):
    status_code = 403
    error_code = "FORBIDDEN"


class NotFoundError(TenantFlagsError):
    status_code = 404
    error_code = "NOT_FOUND"


class ConflictError(TenantFlagsError):
    """A concurrent admin write won; the caller must retry on fresh state."""

    status_code = 409
    error_code = "CONFLICT"


class InvalidTransitionError(TenantFlagsError):
    """The requested mutation is not allowed from the flag's current status."""

    status_code = 409
    error_code = "INVALID_TRANSITION"


class PayloadTooLargeError(TenantFlagsError):
    status_code = 413
    error_code = "PAYLOAD_TOO_LARGE"


class RateLimitError(TenantFlagsError):
    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"


class StoreUnavailableError(TenantFlagsError):
    """Backing store unreachable. Resolved to fail-closed on the evaluation path."""

    status_code = 503
    error_code = "STORE_UNAVAILABLE"


# ---------------------------------------------------------------------------
# Exception handler registration
# ---------------------------------------------------------------------------

def error_response(exc: TenantFlagsError, request_id: str = "") -> JSONResponse:
    """Envelope response for middleware that rejects a request before routing."""
    body = ErrorResponse(
        error=ErrorDetail(
            code=exc.error_code,
            message=exc.message,
            request_id=request_id,
            details=exc.details,
        )
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(),
        headers={"X-Request-ID": request_id},
    )


def _build_error_response(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: dict[str, Any] | None = None,
    include_trace: bool = False,
    exc: Exception | None = None,
) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "")
    error_details = details
    if include_trace and exc is not None:
        error_details = dict(error_details or {})
        error_details["traceback"] = traceback.format_exception(exc)

    body = ErrorResponse(
        error=ErrorDetail(
            code=error_code,
            message=message,
            request_id=request_id,
            details=error_details,
        )
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(),
        headers={"X-Request-ID": request_id},
    )


def register_exception_handlers(app: FastAPI, *, debug: bool = False) -> None:
    """Register structured exception handlers on a FastAPI app."""

    @app.exception_handler(TenantFlagsError)
    async def _tenantflags_error(request: Request, exc: TenantFlagsError) -> JSONResponse:
        logger.warning("request_failed", error_code=exc.error_code, message=exc.message)
        return _build_error_response(
            request,
            status_code=exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
            details=exc.details,
            include_trace=debug,
            exc=exc,
        )

    @app.exception_handler(ValueError)
    async def _value_error(request: Request, exc: ValueError) -> JSONResponse:
        return _build_error_response(
            request,
            status_code=400,
            error_code="VALIDATION_ERROR",
            message=str(exc),
            include_trace=debug,
            exc=exc,
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception")
        message = str(exc) if debug else "An internal error occurred"
        return _build_error_response(
            request,
            status_code=500,
            error_code="INTERNAL_ERROR",
            message=message,
            include_trace=debug,
            exc=exc,
        )
