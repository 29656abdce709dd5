"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from typing import Any, Dict, Iterable, List

logger = logging.getLogger("fleet_tracker")


class AppException(Exception):
    """Base application exception."""
    
    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class LocationValidationError(AppException):
    """Raised when a location record is missing fields required for persistence."""
    
    def __init__(self, missing_fields: Iterable[str]):
        missing = list(missing_fields)
        super().__init__(
            message=f"Location record is missing required fields: {', '.join(missing)}",
            error_code="ERR_VALIDATION_LOCATION",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"missing_fields": missing}
        )


class RecordAlreadyPersistedError(AppException):
    """Raised when a record that already has an id is written again."""
    
    def __init__(self, record_id: int):
        super().__init__(
            message=f"Location record {record_id} is already persisted",
            error_code="ERR_LOCATION_PERSISTED",
            status_code=status.HTTP_409_CONFLICT,
            details={"id": record_id}
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""
    
    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


def validation_error_details(errors: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Make pydantic errors safe to render as JSON.
    
    The offending ``input`` is dropped (it may be NaN or Infinity, which
    strict JSON cannot carry) and ``ctx`` values are stringified.
    """
    details = []
    for error in errors:
        item = {key: value for key, value in error.items() if key not in ("input", "ctx")}
        if "ctx" in error:
            item["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        details.append(jsonable_encoder(item))
    return details


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
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        405: "ERR_METHOD_NOT_ALLOWED",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }
    
    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")
    
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": validation_error_details(exc.errors())
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
