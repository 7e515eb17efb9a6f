"""Application exception hierarchy."""

from typing import Optional


class AppError(Exception):
    """Base exception for all application errors surfaced to API callers."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str = "Internal server error"):
        self.message = message
        super().__init__(message)


class ValidationError(AppError):
    """Caller supplied invalid input."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    """Resource missing or not owned by the requesting user."""

    status_code = 404
    code = "NOT_FOUND_ERROR"


class ConflictError(AppError):
    """Resource already exists."""

    status_code = 409
    code = "CONFLICT_ERROR"


class ConfigurationError(AppError):
    """A requested external service is unavailable or unconfigured."""

    status_code = 503
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, service: str, message: str = "Service not available or not configured"):
        self.service = service
        super().__init__(f"{service}: {message}")


class UpstreamError(AppError):
    """Non-auth failure from an external service (timeout, 5xx, bad payload)."""

    status_code = 502
    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: str = "External service error",
                 upstream_status: Optional[int] = None):
        self.service = service
        self.upstream_status = upstream_status
        super().__init__(f"{service}: {message}")


class AuthenticationError(AppError):
    """Login or session failure against an external service. Terminal after one retry."""

    status_code = 502
    code = "UPSTREAM_AUTHENTICATION_ERROR"

    def __init__(self, service: str, message: str = "Authentication failed"):
        self.service = service
        super().__init__(f"{service}: {message}")
