"""Typed error hierarchy translated to JSON responses at the API boundary."""
from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Category of a failure; each kind maps to one HTTP status."""

    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RATE_LIMITED = "rate_limited"
    SERVER = "server"

    @property
    def status_code(self) -> int:
        return _STATUS_BY_KIND[self]

    @property
    def is_recoverable(self) -> bool:
        """Business errors the client can act on, as opposed to server faults."""

        return self is not ErrorKind.SERVER


_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.SERVER: 500,
}


class PortalError(Exception):
    """Base class for every error raised by the auth subsystem."""

    kind: ErrorKind = ErrorKind.SERVER
    code: str = "server_error"
    message: str = "Internal server error."

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = details
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    def headers(self) -> dict[str, str] | None:
        return None


class ValidationError(PortalError):
    kind = ErrorKind.VALIDATION
    code = "validation_error"
    message = "Request validation failed."


class Unauthorized(PortalError):
    kind = ErrorKind.UNAUTHORIZED
    code = "unauthorized"
    message = "Authentication required."


class Forbidden(PortalError):
    kind = ErrorKind.FORBIDDEN
    code = "forbidden"
    message = "Access denied."


class NotFound(PortalError):
    kind = ErrorKind.NOT_FOUND
    code = "not_found"
    message = "Resource not found."


class Conflict(PortalError):
    kind = ErrorKind.CONFLICT
    code = "conflict"
    message = "Resource already exists."


class RateLimited(PortalError):
    kind = ErrorKind.RATE_LIMITED
    code = "too_many_attempts"
    message = "Too many attempts. Please try again later."

    def __init__(
        self,
        message: str | None = None,
        *,
        retry_after: int,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.retry_after = max(0, int(retry_after))
        merged = {"retry_after": self.retry_after}
        merged.update(details or {})
        super().__init__(message, code=code, details=merged)

    def headers(self) -> dict[str, str] | None:
        return {"Retry-After": str(self.retry_after)}


class ServerError(PortalError):
    kind = ErrorKind.SERVER


class ConfigurationError(ServerError):
    code = "configuration_error"
    message = "Server is not configured correctly."


class DeliveryError(ServerError):
    code = "delivery_failed"
    message = "Verification email could not be sent. Please try again."


class MalformedToken(Unauthorized):
    code = "malformed_token"
    message = "Token is malformed."


class InvalidSignature(Unauthorized):
    code = "invalid_token"
    message = "Token signature is invalid."


class TokenExpired(Unauthorized):
    code = "token_expired"
    message = "Token has expired."


class TokenRevoked(Unauthorized):
    code = "token_revoked"
    message = "Token has been revoked."


class CsrfMismatch(Forbidden):
    code = "csrf_invalid"
    message = "Invalid or missing CSRF token."


class OtpNotFound(NotFound):
    code = "otp_not_found"
    message = "No active verification code for this email."


class OtpExpired(ValidationError):
    code = "otp_expired"
    message = "Verification code has expired. Please request a new one."


class OtpMismatch(ValidationError):
    code = "otp_invalid"
    message = "Verification code is incorrect."
