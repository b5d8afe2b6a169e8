"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging
from datetime import date
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger("vendor_ledger.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class LedgerValidationError(AppException):
    """
    Raised when a ledger entry or query violates a ledger invariant.

    Always names the offending field. Never retried.
    """

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"field": field}
        )


class ResourceNotFoundError(AppException):
    """Raised when a referenced vendor, customer or entry does not exist."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class StoreUnavailableError(AppException):
    """Raised on transient persistence failures (timeouts, lost connections)."""

    def __init__(self, operation: str, reason: str = "Ledger store is temporarily unavailable"):
        self.operation = operation
        super().__init__(
            message=reason,
            error_code="ERR_STORE_UNAVAILABLE",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"operation": operation, "retryable": True}
        )


class SummaryWindowTooLargeError(AppException):
    """Raised when a summary window holds more entries than one scan may cover."""

    def __init__(self, limit: int):
        super().__init__(
            message=f"Summary window exceeds {limit} entries; narrow the period",
            error_code="ERR_SUMMARY_WINDOW",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"max_entries": limit}
        )


class RecurrenceMaterializationError(AppException):
    """Raised when one occurrence of a recurring template cannot be written."""

    def __init__(self, template_id: int, occurrence_date: date, reason: str):
        self.template_id = template_id
        self.occurrence_date = occurrence_date
        super().__init__(
            message=f"Could not materialize template {template_id} for {occurrence_date}: {reason}",
            error_code="ERR_RECURRENCE",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"template_id": template_id, "occurrence_date": occurrence_date.isoformat()}
        )


class DuplicateOccurrenceError(AppException):
    """Raised by the store when (template_id, occurrence_date) already exists."""

    def __init__(self, template_id: int, occurrence_date: date):
        super().__init__(
            message=f"Occurrence {occurrence_date} of template {template_id} already materialized",
            error_code="ERR_DUPLICATE_OCCURRENCE",
            status_code=status.HTTP_409_CONFLICT,
            details={"template_id": template_id, "occurrence_date": occurrence_date.isoformat()}
        )


class DuplicateIdempotencyKeyError(AppException):
    """Raised by the store when the vendor already has an entry with this idempotency key."""

    def __init__(self, vendor_id: int, idempotency_key: str):
        super().__init__(
            message=f"Vendor {vendor_id} already recorded an entry with idempotency key '{idempotency_key}'",
            error_code="ERR_DUPLICATE_IDEMPOTENCY_KEY",
            status_code=status.HTTP_409_CONFLICT,
            details={"vendor_id": vendor_id, "idempotency_key": idempotency_key}
        )


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        405: "ERR_METHOD_NOT_ALLOWED",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    errors = jsonable_encoder(exc.errors())
    field = None
    if errors:
        loc = [str(part) for part in errors[0].get("loc", []) if part not in ("body", "query", "path")]
        field = ".".join(loc) or None
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "field": field,
                "errors": errors
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
