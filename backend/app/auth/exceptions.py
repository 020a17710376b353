"""Authentication failures, rendered through the application error envelope."""
from fastapi import status

from app.core.error_handler import AppException


class AuthError(AppException):
    """Base class for bearer authentication errors (401)."""

    def __init__(self, message: str, error_code: str = "AUTHENTICATION_FAILED"):
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code=error_code,
            headers={"WWW-Authenticate": "Bearer"}
        )


class MissingCredentialsError(AuthError):
    """Raised when the request carries no bearer token."""

    def __init__(self):
        super().__init__("Not authenticated", error_code="NOT_AUTHENTICATED")


class TokenExpiredError(AuthError):
    """Raised when the access token has expired."""

    def __init__(self):
        super().__init__("Token has expired", error_code="TOKEN_EXPIRED")


class TokenValidationError(AuthError):
    """Raised when the access token is malformed or its signature is wrong."""

    def __init__(self, message: str = "Invalid token"):
        super().__init__(message, error_code="TOKEN_INVALID")
