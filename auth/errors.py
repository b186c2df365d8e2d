"""
auth/errors.py -- Exception taxonomy for the authentication core.

Every outcome the service can refuse a request with is an AuthError subclass.
Each class carries the machine-readable code and the HTTP status the API layer
maps it to, so api/main.py needs a single exception handler for all of them.

Messages are safe to return verbatim. Classes that sit on an enumeration path
(InvalidCredentials, EmailAlreadyExists) keep their wording generic; the extra
context they carry (attempts remaining, lockout time) never reveals whether a
given email is registered.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


class AuthError(Exception):
    """Base class for every refusal the auth core reports to a caller."""

    code: str = "auth_error"
    status_code: int = 400
    message: str = "Request could not be completed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def context(self) -> dict:
        """Extra fields for the error envelope. Empty by default."""
        return {}


class ValidationFailed(AuthError):
    code = "validation_error"
    status_code = 400
    message = "Validation failed."

    def __init__(self, errors: list[FieldError], message: str | None = None) -> None:
        self.errors = list(errors)
        super().__init__(message)

    def context(self) -> dict:
        return {"errors": [{"field": e.field, "message": e.message} for e in self.errors]}


class RateLimitExceeded(AuthError):
    code = "rate_limited"
    status_code = 429
    message = "Too many requests. Please try again later."

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        self.retry_after = max(1, int(retry_after))
        super().__init__(message)

    def context(self) -> dict:
        return {"retryAfter": self.retry_after}


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    status_code = 401
    message = "Invalid email or password."

    def __init__(self, attempts_remaining: int | None = None) -> None:
        self.attempts_remaining = attempts_remaining
        super().__init__()

    def context(self) -> dict:
        if self.attempts_remaining is None:
            return {}
        return {"attemptsRemaining": self.attempts_remaining}


class AccountLocked(AuthError):
    code = "account_locked"
    status_code = 423

    def __init__(self, locked_until: str, remaining_seconds: int, message: str | None = None) -> None:
        self.locked_until = locked_until
        self.remaining_seconds = max(0, int(remaining_seconds))
        if message is None:
            minutes = max(1, -(-self.remaining_seconds // 60))
            message = f"Account is locked. Try again in {minutes} minutes."
        super().__init__(message)

    def context(self) -> dict:
        return {"lockedUntil": self.locked_until, "remainingSeconds": self.remaining_seconds}


class InvalidCurrentPassword(AuthError):
    code = "invalid_current_password"
    status_code = 400
    message = "Current password is incorrect."


class InvalidPassword(AuthError):
    code = "invalid_password"
    status_code = 400
    message = "Password is incorrect."


class EmailAlreadyExists(AuthError):
    code = "email_exists"
    status_code = 409
    message = "An account with this email already exists."


class NotAuthenticated(AuthError):
    code = "not_authenticated"
    status_code = 401
    message = "Authentication required."


class InvalidSession(AuthError):
    code = "invalid_session"
    status_code = 401
    message = "Invalid or expired session."


class NoActiveSession(AuthError):
    code = "no_session"
    status_code = 400
    message = "No active session found."


class NotFound(AuthError):
    code = "not_found"
    status_code = 404
    message = "User not found."


class InternalError(AuthError):
    code = "internal_error"
    status_code = 500
    message = "Internal server error. Please try again later."


class StoreUnavailable(InternalError):
    """A store call timed out or could not get a lock. Safe to retry."""

    code = "service_unavailable"
    status_code = 503
    message = "Service temporarily unavailable. Please try again."
