"""Error taxonomy.

Learn: Services raise these domain errors; main.py registers one
exception handler that renders every AppError into the response
envelope. Each error carries a stable machine-readable `code`, the
HTTP status, a user-visible message, and optional field-level entries.

Token-related errors also carry a `reason` (e.g. EXPIRED, REVOKED,
ALREADY_USED) so clients and tests can tell failure modes apart
without parsing messages.
"""

from typing import Optional


class ErrorCode:
    VALIDATION = "VALIDATION"
    AUTH_INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    AUTH_NOT_VERIFIED = "AUTH_NOT_VERIFIED"
    AUTH_TOKEN_EXPIRED = "AUTH_TOKEN_EXPIRED"
    AUTH_TOKEN_INVALID = "AUTH_TOKEN_INVALID"
    AUTH_TOKEN_REVOKED = "AUTH_TOKEN_REVOKED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    CONFLICT = "CONFLICT"
    DEPENDENCY_UNAVAILABLE = "DEPENDENCY_UNAVAILABLE"
    INTERNAL = "INTERNAL"


class AppError(Exception):
    """Base class for errors that map onto the response envelope."""

    code: str = ErrorCode.INTERNAL
    status_code: int = 500
    message: str = "An unexpected error occurred."
    reason: Optional[str] = None

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        field: Optional[str] = None,
        reason: Optional[str] = None,
        errors: Optional[list[dict]] = None,
    ):
        self.message = message or self.message
        self.field = field
        if reason is not None:
            self.reason = reason
        self.extra_errors = errors or []
        super().__init__(self.message)

    def error_entries(self) -> list[dict]:
        """Field-level entries for the envelope `errors` list."""
        if self.extra_errors:
            return self.extra_errors
        entry = {"code": self.code, "message": self.message}
        if self.field:
            entry["field"] = self.field
        if self.reason:
            entry["reason"] = self.reason
        return [entry]


class ValidationFailedError(AppError):
    code = ErrorCode.VALIDATION
    status_code = 422
    message = "Request validation failed."


class InvalidCredentialsError(AppError):
    code = ErrorCode.AUTH_INVALID_CREDENTIALS
    status_code = 401
    message = "Invalid email or password."


class NotVerifiedError(AppError):
    code = ErrorCode.AUTH_NOT_VERIFIED
    status_code = 403
    message = "Email address has not been verified."


class TokenExpiredError(AppError):
    code = ErrorCode.AUTH_TOKEN_EXPIRED
    status_code = 401
    message = "Token has expired."
    reason = "EXPIRED"


class TokenInvalidError(AppError):
    code = ErrorCode.AUTH_TOKEN_INVALID
    status_code = 401
    message = "Token is invalid."
    reason = "INVALID"


class TokenRevokedError(AppError):
    code = ErrorCode.AUTH_TOKEN_REVOKED
    status_code = 401
    message = "Token has been revoked."
    reason = "REVOKED"


# ─── Email verification tokens ─────────────────────────


class VerificationTokenNotFoundError(TokenInvalidError):
    status_code = 400
    message = "Verification link is invalid."
    reason = "NOT_FOUND"


class VerificationTokenExpiredError(TokenExpiredError):
    status_code = 400
    message = "Verification link has expired."


class VerificationTokenUsedError(AppError):
    code = ErrorCode.CONFLICT
    status_code = 409
    message = "Verification link has already been used."
    reason = "ALREADY_USED"


# ─── Generic ───────────────────────────────────────────


class ForbiddenError(AppError):
    code = ErrorCode.FORBIDDEN
    status_code = 403
    message = "You are not allowed to perform this action."


class NotFoundError(AppError):
    code = ErrorCode.NOT_FOUND
    status_code = 404
    message = "Resource not found."


class RateLimitedError(AppError):
    code = ErrorCode.RATE_LIMITED
    status_code = 429
    message = "Rate limit exceeded. Try again later."


class ConflictError(AppError):
    code = ErrorCode.CONFLICT
    status_code = 409
    message = "Resource already exists."


class DependencyUnavailableError(AppError):
    code = ErrorCode.DEPENDENCY_UNAVAILABLE
    status_code = 503
    message = "A required service is temporarily unavailable."
