"""Error taxonomy for authentication and session handling.

Every error carries the HTTP status it maps to, a client-facing message and a
machine-readable code. The exception handlers in `main.py` turn them into the
`{"success": false, "message": ..., "code": ...}` body.
"""
from enum import Enum

from fastapi import status


class TokenErrorKind(str, Enum):
    """Reasons a token failed verification."""
    EXPIRED = "TOKEN_EXPIRED"
    BAD_SIGNATURE = "INVALID_SIGNATURE"
    MALFORMED = "MALFORMED"


class AuthError(Exception):
    """Base class for all errors raised by the auth core."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Authentication error"
    default_code: str = "AUTH_ERROR"

    def __init__(self, message: str | None = None, code: str | None = None):
        self.message = message or self.default_message
        self.code = code or self.default_code
        super().__init__(self.message)


class ValidationFailed(AuthError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation failed"
    default_code = "VALIDATION_FAILED"

    def __init__(self, message: str | None = None, errors: list | None = None):
        super().__init__(message)
        self.errors = errors or []


class DuplicateIdentity(AuthError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "User already exists"
    default_code = "DUPLICATE_IDENTITY"


class InvalidCredentials(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid credentials"
    default_code = "INVALID_CREDENTIALS"


class AccountLocked(AuthError):
    status_code = status.HTTP_423_LOCKED
    default_message = "Account is temporarily locked due to multiple failed login attempts"
    default_code = "ACCOUNT_LOCKED"


class AccountDeactivated(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Account is deactivated"
    default_code = "ACCOUNT_DEACTIVATED"


class InvalidToken(AuthError):
    """A token failed signature, claim or expiry verification."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid or malformed token"
    default_code = "INVALID_TOKEN"

    def __init__(self, kind: TokenErrorKind | None = None, message: str | None = None):
        self.kind = kind
        super().__init__(message, kind.value if kind else None)


class TokenRevoked(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid refresh token"
    default_code = "TOKEN_REVOKED"


class UserNotFound(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "User not found"
    default_code = "USER_NOT_FOUND"


class Unauthorized(AuthError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"
    default_code = "UNAUTHORIZED"


class Forbidden(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Insufficient permissions"
    default_code = "FORBIDDEN"


class StoreUnavailable(AuthError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Service temporarily unavailable"
    default_code = "STORE_UNAVAILABLE"
