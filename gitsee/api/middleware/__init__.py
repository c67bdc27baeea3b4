"""
API Middleware - Request/response processing middleware.
"""

from gitsee.api.middleware.error_handler import (
    AppException,
    InvalidRequestError,
    app_exception_handler,
    gitsee_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler,
)

__all__ = [
    "AppException",
    "InvalidRequestError",
    "app_exception_handler",
    "gitsee_exception_handler",
    "http_exception_handler",
    "validation_exception_handler",
    "generic_exception_handler",
]
