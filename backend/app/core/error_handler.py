"""
Error Handling Module

This module provides the error handling system for the KYC service with:
- Custom exception hierarchy
- Standardized `{success: false, message, error?}` envelopes
- Request validation handling
- Logging integration
- Security-aware error details
"""

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException

from app.core.logging import get_logger

# Initialize logger
logger = get_logger(__name__)


class ErrorResponse(BaseModel):
    """Standardized error response model."""
    success: bool = False
    message: str
    error: Optional[Any] = None


class ConfigurationError(Exception):
    """Raised at bootstrap when required provider configuration is missing."""


class AppException(Exception):
    """Base exception class for all application errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        error: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.error = error
        self.headers = headers
        super().__init__(message)


class ValidationException(AppException):
    """Raised when client input is malformed."""

    def __init__(self, message: str = "Validation error", error: Optional[Any] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="VALIDATION_ERROR",
            error=error
        )


class InvalidBatchException(ValidationException):
    """Raised when a bulk link request is empty or too large."""

    def __init__(self, message: str = "Invalid batch"):
        super().__init__(message=message)
        self.error_code = "INVALID_BATCH"


class UserNotFoundException(AppException):
    """Raised when the referenced internal user does not exist."""

    def __init__(self, user_id: Optional[str] = None):
        super().__init__(
            message="User not found",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="USER_NOT_FOUND",
            error=f"No user with id {user_id}" if user_id else None
        )


class LinkNotFoundException(AppException):
    """Raised when the provider does not know the requested link."""

    def __init__(self, link_id: Optional[str] = None, error: Optional[str] = None):
        super().__init__(
            message="Verification link not found",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="LINK_NOT_FOUND",
            error=error or (f"No link with id {link_id}" if link_id else None)
        )


class ProviderException(AppException):
    """Raised when the provider rejected a request with a readable message."""

    def __init__(self, error: str, message: str = "Verification provider rejected the request"):
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="PROVIDER_ERROR",
            error=error
        )


class TransportException(AppException):
    """Raised when the provider could not be reached."""

    def __init__(self, error: str, message: str = "Verification provider unavailable"):
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="TRANSPORT_ERROR",
            error=error
        )


class SignatureInvalidException(AppException):
    """Raised when a webhook signature does not match."""

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code="SIGNATURE_INVALID"
        )


class PermissionDeniedException(AppException):
    """Raised when the principal lacks the required role."""

    def __init__(self, message: str = "Permission denied"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="PERMISSION_DENIED"
        )


def _is_development(request: Request) -> bool:
    settings = getattr(request.app.state, "settings", None)
    return settings is not None and settings.app.ENVIRONMENT in ("development", "test")


def _envelope(status_code: int, message: str, error: Optional[Any] = None,
              headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    body = ErrorResponse(message=message, error=error)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers
    )


async def handle_app_exception(
    request: Request,
    exc: AppException
) -> JSONResponse:
    """Handle custom application exceptions."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Application error: {exc.message}",
        extra={
            "error_code": exc.error_code,
            "status_code": exc.status_code,
            "path": request.url.path,
            "method": request.method,
            "detail": exc.error
        }
    )
    return _envelope(exc.status_code, exc.message, exc.error, exc.headers)


async def handle_validation_error(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Handle request validation errors."""
    error_details = []
    for error in exc.errors():
        error_details.append({
            "loc": " -> ".join(str(x) for x in error["loc"]),
            "msg": error["msg"],
            "type": error["type"]
        })

    logger.warning(
        "Request validation failed",
        extra={
            "path": request.url.path,
            "method": request.method,
            "validation_errors": error_details
        }
    )

    return _envelope(
        status.HTTP_400_BAD_REQUEST,
        "Request validation failed",
        error_details
    )


async def handle_http_exception(
    request: Request,
    exc: HTTPException
) -> JSONResponse:
    """Handle HTTP exceptions raised by FastAPI and Starlette."""
    logger.warning(
        f"HTTP error: {exc.detail}",
        extra={
            "status_code": exc.status_code,
            "path": request.url.path,
            "method": request.method
        }
    )
    return _envelope(
        exc.status_code,
        str(exc.detail),
        headers=getattr(exc, "headers", None)
    )


async def handle_generic_exception(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle any unhandled exceptions."""
    logger.critical(
        f"Unhandled error: {str(exc)}",
        extra={
            "path": request.url.path,
            "method": request.method
        },
        exc_info=exc
    )
    return _envelope(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred",
        str(exc) if _is_development(request) else None
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with the FastAPI application.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(AppException, handle_app_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(Exception, handle_generic_exception)


__all__ = [
    "AppException",
    "ConfigurationError",
    "ValidationException",
    "InvalidBatchException",
    "UserNotFoundException",
    "LinkNotFoundException",
    "ProviderException",
    "TransportException",
    "SignatureInvalidException",
    "PermissionDeniedException",
    "handle_app_exception",
    "handle_validation_error",
    "handle_http_exception",
    "handle_generic_exception",
    "register_exception_handlers",
]
