"""Application error taxonomy.

Every expected failure of the auth core is one of the :class:`AppError`
subclasses below. Each carries a stable :class:`ErrorCode` and an HTTP status
equivalent; the HTTP layer (``api/error_handling.py``) is the only place the
status is turned into a response.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Stable error codes exposed to API clients."""

    CONFLICT = "CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_INVALID = "AUTH_INVALID"
    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_FORBIDDEN = "AUTH_FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    RATE_LIMIT_LOGIN = "RATE_LIMIT_LOGIN"
    RATE_LIMIT_REGISTRATION = "RATE_LIMIT_REGISTRATION"
    REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    SERVER_ERROR = "SERVER_ERROR"


class AppError(Exception):
    """Base class for operational errors surfaced to API clients.

    Attributes:
        message: Human readable description, safe to return to clients.
        code: Stable :class:`ErrorCode`.
        status_code: HTTP status equivalent.
        details: Optional list of ``{field, message}`` entries.
    """

    code: ErrorCode = ErrorCode.SERVER_ERROR
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        details: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value}, message={self.message!r})"


class ConflictError(AppError):
    """A unique field (email or username) is already taken (409)."""

    code = ErrorCode.CONFLICT
    status_code = 409

    def __init__(self, field: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"{field} already in use",
            details=[{"field": field, "message": "Already taken"}],
        )
        self.field = field


class ValidationError(AppError):
    """Malformed request payload (400)."""

    code = ErrorCode.VALIDATION_ERROR
    status_code = 400

    def __init__(
        self,
        details: Optional[list[dict[str, Any]]] = None,
        message: str = "Validation failed",
    ) -> None:
        super().__init__(message, details=details)


class AuthInvalidError(AppError):
    """Bad credentials or an unverifiable token (401)."""

    code = ErrorCode.AUTH_INVALID
    status_code = 401

    def __init__(self, message: str = "Invalid credentials") -> None:
        super().__init__(message)


class AuthRequiredError(AppError):
    """No credential was presented (401)."""

    code = ErrorCode.AUTH_REQUIRED
    status_code = 401

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class AuthForbiddenError(AppError):
    """The account exists but may not authenticate (403)."""

    code = ErrorCode.AUTH_FORBIDDEN
    status_code = 403

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message)


class NotFoundError(AppError):
    code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, resource: str = "Resource") -> None:
        super().__init__(f"{resource} not found")


class RateLimitedError(AppError):
    """Too many attempts inside the current window (429)."""

    code = ErrorCode.RATE_LIMIT_EXCEEDED
    status_code = 429

    def __init__(
        self,
        message: str = "Too many requests, please try again later",
        *,
        code: ErrorCode = ErrorCode.RATE_LIMIT_EXCEEDED,
        retry_after: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.retry_after = retry_after


class RequestTimeoutError(AppError):
    """The request did not finish within the server time budget (408)."""

    code = ErrorCode.REQUEST_TIMEOUT
    status_code = 408

    def __init__(self, message: str = "Request took too long to process") -> None:
        super().__init__(message)


class DependencyUnavailableError(AppError):
    """A guarded dependency is failing or its breaker is open (503)."""

    code = ErrorCode.SERVICE_UNAVAILABLE
    status_code = 503

    def __init__(self, dependency: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"{dependency} is temporarily unavailable")
        self.dependency = dependency


class InternalError(AppError):
    """Unexpected hashing, signing or storage failure (500)."""

    code = ErrorCode.SERVER_ERROR
    status_code = 500

    def __init__(self, message: str = "Internal server error") -> None:
        super().__init__(message)
