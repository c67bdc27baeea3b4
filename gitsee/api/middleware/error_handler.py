"""
Error Handler Middleware - Global exception handling for the API.

Catches exceptions and returns consistent error responses:

    {"success": false, "error": "...", "error_code": "...", "timestamp": "..."}
"""

import logging
import traceback
from datetime import datetime, timezone

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gitsee.core.config import get_settings
from gitsee.core.exceptions import (
    CloneError,
    CompletionError,
    ExplorationFailedError,
    GitseeError,
    MetadataFetchError,
    StoreError,
)

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base exception for HTTP-facing application errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: dict = None
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class InvalidRequestError(AppException):
    """Raised when a request is well-formed JSON but semantically invalid."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="INVALID_REQUEST",
            status_code=400
        )


# domain exception -> (error_code, status_code)
_DOMAIN_ERRORS = [
    (CloneError, "CLONE_FAILED", 502),
    (ExplorationFailedError, "EXPLORATION_FAILED", 502),
    (CompletionError, "COMPLETION_FAILED", 502),
    (MetadataFetchError, "METADATA_FETCH_FAILED", 502),
    (StoreError, "STORE_ERROR", 500),
]


def create_error_response(
    message: str,
    error_code: str = "INTERNAL_ERROR",
    status_code: int = 500,
    details: dict = None
) -> JSONResponse:
    """Create a standardized error response."""
    settings = get_settings()

    content = {
        "success": False,
        "error": message,
        "error_code": error_code,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

    # Include details in debug mode
    if details and settings.debug:
        content["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content
    )


async def app_exception_handler(
    request: Request,
    exc: AppException
) -> JSONResponse:
    """Handle application-specific exceptions."""
    return create_error_response(
        message=exc.message,
        error_code=exc.error_code,
        status_code=exc.status_code,
        details=exc.details
    )


async def gitsee_exception_handler(
    request: Request,
    exc: GitseeError
) -> JSONResponse:
    """Translate service-level exceptions into error responses."""
    for exc_type, error_code, status_code in _DOMAIN_ERRORS:
        if isinstance(exc, exc_type):
            break
    else:
        error_code, status_code = "INTERNAL_ERROR", 500

    logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return create_error_response(
        message=str(exc),
        error_code=error_code,
        status_code=status_code
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException
) -> JSONResponse:
    """Handle HTTP exceptions."""
    return create_error_response(
        message=str(exc.detail),
        error_code="HTTP_ERROR",
        status_code=exc.status_code
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors."""
    errors = []
    for error in exc.errors():
        loc = " -> ".join(str(l) for l in error["loc"])
        errors.append(f"{loc}: {error['msg']}")

    return create_error_response(
        message="Validation error",
        error_code="VALIDATION_ERROR",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        details={"errors": errors}
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle unexpected exceptions."""
    settings = get_settings()

    traceback_str = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    logger.error(f"Unexpected error: {traceback_str}")

    details = None
    if settings.debug:
        details = {
            "exception_type": type(exc).__name__,
            "traceback": traceback_str
        }

    return create_error_response(
        message="An unexpected error occurred",
        error_code="INTERNAL_ERROR",
        status_code=500,
        details=details
    )
