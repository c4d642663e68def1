"""
Shared error handling for the Membership service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from .logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class ServiceException(Exception):
    """Base exception for Membership service errors."""

    http_status = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class NotFoundError(ServiceException):
    """The requested identity does not exist."""

    http_status = 404

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class InvalidArgumentError(ServiceException):
    """The caller supplied an argument outside the accepted domain."""

    http_status = 400

    def __init__(self, message: str = "Invalid argument", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_ARGUMENT", message, details)


class ConflictError(ServiceException):
    """The store rejected a write."""

    http_status = 409

    def __init__(self, message: str = "Conflict", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFLICT", message, details)


class AuthenticationError(ServiceException):
    """Authentication-related errors."""

    http_status = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(ServiceException):
    """Authorization-related errors."""

    http_status = 403

    def __init__(self, message: str = "Authorization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class DependencyError(ServiceException):
    """A backing service (Redis, PostgreSQL) is unavailable."""

    http_status = 503

    def __init__(self, dependency: str, message: str = "Dependency unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("DEPENDENCY_ERROR", f"{dependency}: {message}", details)
