"""Application exceptions and FastAPI exception handlers.

Errors are rendered as RFC 7807 Problem Details. Cache failures never appear
here: the cache layer absorbs them (see ``app.core.cache``).
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from app.core.logging import get_logger
from app.core.problem_details import (
    ERROR_TYPES,
    ProblemDetailResponse,
    problem_response,
)

logger = get_logger(__name__)


# =============================================================================
# Exception Classes
# =============================================================================


class DashAnalyticsError(Exception):
    """Base exception for DashAnalytics application errors.

    Each subclass maps to an RFC 7807 problem type URI and an HTTP status.
    """

    error_type_uri: str = ERROR_TYPES["INTERNAL_ERROR"]

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize application error.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            status_code: HTTP status code.
            details: Additional error context.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}

    @property
    def title(self) -> str:
        """RFC 7807 title - short summary of problem type."""
        return self.code.replace("_", " ").title()


class NotFoundError(DashAnalyticsError):
    """Requested resource (e.g. a report definition) does not exist."""

    error_type_uri: str = ERROR_TYPES["NOT_FOUND"]

    def __init__(
        self,
        message: str = "Resource not found",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details=details,
        )


class ValidationError(DashAnalyticsError):
    """Caller-side contract violation.

    Raised for malformed parameters that slip past schema validation: an
    inverted date range, a range wider than allowed, an empty metric list,
    or unknown metric names when strict mode is on. Never retried.
    """

    error_type_uri: str = ERROR_TYPES["VALIDATION_ERROR"]

    def __init__(
        self,
        message: str = "Validation failed",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=422,
            details=details,
        )


class StoreError(DashAnalyticsError):
    """Metric store query failed (timeout, connection loss, bad statement).

    Propagated to the caller as a data-layer failure once retries are
    exhausted. No stale or partial data is substituted.
    """

    error_type_uri: str = ERROR_TYPES["DATA_LAYER_ERROR"]

    def __init__(
        self,
        message: str = "Metric store query failed",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="DATA_LAYER_ERROR",
            status_code=503,
            details=details,
        )


class ConflictError(DashAnalyticsError):
    """Operation conflicts with current resource state."""

    error_type_uri: str = ERROR_TYPES["CONFLICT"]

    def __init__(
        self,
        message: str = "Resource conflict",
        code: str = "CONFLICT",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code=code,
            status_code=409,
            details=details,
        )


class CacheError(DashAnalyticsError):
    """Cache backend or payload failure.

    Only raised inside the cache seam, which converts it into a miss or a
    no-op write. It must never reach an exception handler.
    """

    def __init__(
        self,
        message: str = "Cache operation failed",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message=message,
            code="CACHE_ERROR",
            status_code=500,
            details=details,
        )


# =============================================================================
# Exception Handlers (RFC 7807)
# =============================================================================


async def dashanalytics_exception_handler(
    _request: Request,
    exc: DashAnalyticsError,
) -> ProblemDetailResponse:
    """Render DashAnalyticsError subclasses as problem details.

    Validation errors are caller mistakes, so they are logged at warning
    level without a traceback; everything else is an engine fault.
    """
    if isinstance(exc, ValidationError | NotFoundError | ConflictError):
        logger.warning(
            "app.client_error",
            error=exc.message,
            error_type=type(exc).__name__,
            error_code=exc.code,
            status_code=exc.status_code,
            details=exc.details,
        )
    else:
        logger.error(
            "app.error_handled",
            error=exc.message,
            error_type=type(exc).__name__,
            error_code=exc.code,
            status_code=exc.status_code,
            details=exc.details,
            exc_info=True,
        )

    return problem_response(
        status=exc.status_code,
        title=exc.title,
        detail=exc.message,
        error_code=exc.code,
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> ProblemDetailResponse:
    """Convert request validation errors into a 422 problem with field errors.

    Args:
        request: FastAPI request object.
        exc: Pydantic validation error.

    Returns:
        Problem Detail response with an ``errors`` list.
    """
    field_errors: list[dict[str, str]] = []
    for error in exc.errors():
        loc = error.get("loc", [])
        field_path = ".".join(str(part) for part in loc if part not in ("body", "query"))
        field_errors.append(
            {
                "field": field_path,
                "message": str(error.get("msg", "Validation failed")),
                "type": str(error.get("type", "unknown")),
            }
        )

    logger.warning(
        "app.validation_error",
        error_count=len(field_errors),
        path=str(request.url.path),
        fields=[e["field"] for e in field_errors],
    )

    return problem_response(
        status=422,
        title="Validation Error",
        detail=f"Request validation failed with {len(field_errors)} error(s).",
        error_code="VALIDATION_ERROR",
        errors=field_errors,
    )


async def unhandled_exception_handler(
    request: Request,
    exc: Exception,
) -> ProblemDetailResponse:
    """Render unexpected exceptions as a generic 500 problem."""
    logger.error(
        "app.unhandled_error",
        error=str(exc),
        error_type=type(exc).__name__,
        path=str(request.url.path),
        exc_info=True,
    )

    return problem_response(
        status=500,
        title="Internal Server Error",
        detail="An unexpected error occurred. Contact support with the request_id.",
        error_code="INTERNAL_ERROR",
    )


# =============================================================================
# Handler Registration
# =============================================================================


def register_exception_handlers(app: FastAPI) -> None:
    """Register problem-details exception handlers on the app."""
    app.add_exception_handler(
        DashAnalyticsError, dashanalytics_exception_handler  # type: ignore[arg-type]
    )
    app.add_exception_handler(
        RequestValidationError, validation_exception_handler  # type: ignore[arg-type]
    )
    app.add_exception_handler(Exception, unhandled_exception_handler)
