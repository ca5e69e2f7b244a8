"""Error handling and custom exceptions

Domain errors carry an HTTP status so the API layer can surface them
without leaking internals, while the analytics core raises and handles
them like ordinary Python exceptions.
"""

import os
import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger("toolwatch")


class ToolWatchException(Exception):
    """Base exception for ToolWatch"""

    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class InvalidWindowException(ToolWatchException):
    """Raised when a request window is not a positive number of days"""

    def __init__(self, window_days, max_days: Optional[int] = None):
        if max_days is not None:
            message = f"Window must be between 1 and {max_days} days, got {window_days!r}"
        else:
            message = f"Window must be a positive number of days, got {window_days!r}"
        super().__init__(
            message=message,
            status_code=400,
            details={"window_days": str(window_days), "max_days": max_days}
        )


class UnknownToolException(ToolWatchException):
    """Raised when a request names a tool that is not monitored"""

    def __init__(self, tool_id: str, monitored: tuple):
        super().__init__(
            message=f"Unknown tool: {tool_id}",
            status_code=400,
            details={"tool_id": tool_id, "monitored_tools": list(monitored)}
        )


class HostNotFoundException(ToolWatchException):
    """Raised when a host is not present in the evaluated population"""

    def __init__(self, host_id: str):
        super().__init__(
            message=f"Host not found: {host_id}",
            status_code=404,
            details={"host_id": host_id}
        )


class InsufficientDataException(ToolWatchException):
    """Raised when a host exists but has no usable data in the window"""

    def __init__(self, host_id: str, reason: str):
        super().__init__(
            message=f"Insufficient data for {host_id}: {reason}",
            status_code=404,
            details={"host_id": host_id, "reason": reason}
        )


class AnalysisCancelledException(ToolWatchException):
    """Raised when an in-flight evaluation is cancelled before completion"""

    def __init__(self, processed: int = 0, total: int = 0):
        super().__init__(
            message="Analysis cancelled before completion",
            status_code=504,
            details={"processed_hosts": processed, "total_hosts": total}
        )


class MalformedRecordError(ValueError):
    """Raised for a daily record that cannot be interpreted.

    The analyzers treat such a record as "no data for that day" rather
    than failing the host.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


async def toolwatch_exception_handler(request: Request, exc: ToolWatchException):
    """Handle custom exceptions"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.message,
            "details": exc.details,
            "type": exc.__class__.__name__,
        }
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions"""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status_code": exc.status_code,
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors"""
    errors = []
    for error in exc.errors():
        errors.append({
            "field": ".".join(str(x) for x in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        })

    return JSONResponse(
        status_code=422,
        content={
            "error": "Validation error",
            "errors": errors,
        }
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle all other exceptions"""
    logger.exception("Unhandled exception")

    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": get_secure_error_message(exc),
        }
    )


def is_production_environment() -> bool:
    """Check if running in production environment."""
    env = os.getenv("ENV", "development").lower()
    return env in ("production", "prod")


def get_secure_error_message(
    error: Exception,
    default_message: str = "An unexpected error occurred",
    include_details: Optional[bool] = None
) -> str:
    """
    Get an error message that is safe to return to clients.

    In production, returns a generic message to prevent information leakage.
    In development, returns the actual error message for debugging.
    """
    if include_details is None:
        include_details = not is_production_environment()

    if include_details:
        return str(error)

    return default_message
