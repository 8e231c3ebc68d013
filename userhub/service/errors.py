from __future__ import annotations

from typing import Optional


class ConfigError(RuntimeError):
    """Fatal misconfiguration detected at startup (e.g. missing signing secret).

    Deliberately not a ServiceError: it must never be rendered per request.
    """


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass defines an HTTP status_code and a stable error_code:
    - UNAUTHENTICATED (401): no identity where one is required
    - UNAUTHORIZED (401): bad credentials or bad/superseded tokens
    - FORBIDDEN (403)
    - NOT_FOUND (404)
    - BAD_USER_INPUT (400)
    - CONFLICT (409)
    - INTERNAL_SERVER_ERROR (500)
    """

    status_code: int = 400
    error_code: str = "BAD_USER_INPUT"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "BAD_USER_INPUT"


class UnauthenticatedError(ServiceError):
    """No authenticated identity on a request that needs one (401)."""
    status_code = 401
    error_code = "UNAUTHENTICATED"


class UnauthorizedError(ServiceError):
    """Credentials or token rejected (401)."""
    status_code = 401
    error_code = "UNAUTHORIZED"


class ForbiddenError(ServiceError):
    """Identity present but not allowed to touch the resource (403)."""
    status_code = 403
    error_code = "FORBIDDEN"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "NOT_FOUND"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate email (409)."""
    status_code = 409
    error_code = "CONFLICT"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    error_code = "INTERNAL_SERVER_ERROR"


class RevocationError(ServerError):
    """Logout could not complete every revocation step.

    ``detail["failed_steps"]`` lists the steps that failed; the remaining
    steps were still attempted and are not rolled back.
    """


__all__ = [
    "ConfigError",
    "ServiceError",
    "ValidationError",
    "UnauthenticatedError",
    "UnauthorizedError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "ServerError",
    "RevocationError",
]
