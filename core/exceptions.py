"""
Exception taxonomy. Every error a request can hit carries its own HTTP status
and machine-readable code so the single responder in core.error_handler can
render a uniform envelope.
"""

from typing import Any


class AppError(Exception):
    """Base application error rendered by the central error responder."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    message: str = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        details: Any = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = details
        self.headers = headers or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "statusCode": self.status_code,
            "details": self.details,
        }


class ConfigurationError(AppError):
    """Missing or invalid configuration. Fatal at boot."""

    code = "CONFIGURATION_ERROR"
    message = "Invalid configuration"


class RegistrationError(AppError):
    """Route or controller metadata that cannot be compiled."""

    code = "REGISTRATION_ERROR"
    message = "Invalid route declaration"


# Token errors. Detail is logged; clients only ever see INVALID_TOKEN.


class TokenError(AppError):
    status_code = 401
    code = "INVALID_TOKEN"
    message = "Invalid or expired token"


class MissingTokenError(TokenError):
    code = "TOKEN_REQUIRED"
    message = "Access token required"


class InvalidTokenError(TokenError):
    """Malformed token, bad signature, expired, or missing required claims."""


class WrongTokenTypeError(TokenError):
    """A structurally valid token presented where another type is expected."""


class MissingJtiError(TokenError):
    """Token has no jti claim and cannot be individually revoked."""

    message = "Token does not have a jti claim"


class AuthenticationError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"
    message = "Authentication required"

    def __init__(self, message: str | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("headers", {"WWW-Authenticate": "Bearer"})
        super().__init__(message, **kwargs)


class InvalidCredentialsError(AuthenticationError):
    code = "INVALID_CREDENTIALS"
    message = "Invalid email or password"


class AuthorizationError(AppError):
    """Authenticated caller lacks a required role or permission."""

    status_code = 403
    code = "FORBIDDEN"
    message = "Forbidden"


class RateLimitExceeded(AppError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    message = "Too many requests"

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(
            message,
            details={"retryAfter": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


class RequestValidationFailed(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"
    message = "Invalid input"


class RevocationStoreError(AppError):
    """Revocation cache could not be written."""

    status_code = 503
    code = "REVOCATION_UNAVAILABLE"
    message = "Token revocation is temporarily unavailable"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"
    message = "Resource not found"


class DuplicateError(AppError):
    status_code = 409
    code = "DUPLICATE_ERROR"
    message = "Resource already exists"
