"""
Service Error Base

Every module's service layer raises subclasses of ServiceError. Routers turn
them into HTTP responses with handle_service_error.
"""

import logging
from enum import Enum

from fastapi import HTTPException, status

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """Broad error classes surfaced to API clients."""

    INPUT = "input"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    SECURITY = "security"
    UPSTREAM = "upstream"


class ServiceError(Exception):
    """Base exception for service-layer errors."""

    category: ErrorCategory = ErrorCategory.INPUT

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 400,
        category: ErrorCategory | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        if category is not None:
            self.category = category
        super().__init__(message)


class InputError(ServiceError):
    """Malformed or missing input, rejected before any state change."""

    def __init__(self, message: str, error_code: str = "INVALID_INPUT"):
        super().__init__(message, error_code, 400, ErrorCategory.INPUT)


class ConflictError(ServiceError):
    category = ErrorCategory.CONFLICT

    def __init__(self, message: str, error_code: str):
        super().__init__(message, error_code, 409, ErrorCategory.CONFLICT)


class NotFoundError(ServiceError):
    category = ErrorCategory.NOT_FOUND

    def __init__(self, message: str, error_code: str):
        super().__init__(message, error_code, 404, ErrorCategory.NOT_FOUND)


class SecurityError(ServiceError):
    """Authentication and abuse-prevention failures."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 401,
        retry_after_seconds: int | None = None,
    ):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message, error_code, status_code, ErrorCategory.SECURITY)


class UpstreamError(ServiceError):
    """An external collaborator failed or timed out. Safe to retry."""

    def __init__(self, message: str, error_code: str):
        super().__init__(message, error_code, 503, ErrorCategory.UPSTREAM)


def handle_service_error(e: ServiceError) -> HTTPException:
    """
    Convert a service error into an HTTPException.

    Usage:
        try:
            ...
        except ServiceError as e:
            raise handle_service_error(e) from e
    """
    detail: dict = {"error": e.error_code, "message": e.message}
    headers = None

    retry_after = getattr(e, "retry_after_seconds", None)
    if retry_after is not None:
        detail["retry_after_seconds"] = retry_after
        headers = {"Retry-After": str(retry_after)}
    elif e.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}

    if e.status_code >= 500:
        logger.error(f"Service error {e.error_code}: {e.message}")
    else:
        logger.warning(f"Service error {e.error_code}: {e.message}")

    return HTTPException(status_code=e.status_code, detail=detail, headers=headers)


def internal_error(e: Exception, context: str) -> HTTPException:
    """Log an unexpected exception and build a generic 500 response."""
    logger.exception(f"Unexpected error {context}: {e}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )
