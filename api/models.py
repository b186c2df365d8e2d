"""
API request and response models for Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Request models only check transport shape (a JSON string where a string is
expected). Business constraints -- email format, password policy, name rules
-- are enforced by auth/validation.py through AuthService, so that in-process
callers and HTTP callers get the same field-level ValidationFailed errors.

Responses are serialized with camelCase keys (userId, expiresAt, ...).

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.models import PublicUser
from auth.password_policy import PolicyResult

_RESPONSE_CONFIG = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    email: str
    password: str


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(populate_by_name=True)

    email: str
    password: str
    remember_me: bool = Field(default=False, alias="rememberMe")


class DeleteAccountRequest(BaseModel):
    """Request body for DELETE /api/v1/profile. Missing password is a 400 from the service."""

    password: Optional[str] = None


class PasswordCheckRequest(BaseModel):
    """Request body for POST /api/v1/auth/password-strength."""

    password: str = Field(max_length=1024)


# PATCH /api/v1/profile takes a free-form JSON object: unknown keys must be
# reported as field errors by the service, not silently dropped here.
ProfilePatchBody = dict[str, Any]


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserView(BaseModel):
    """Public view of an account. Never carries the password digest."""

    model_config = _RESPONSE_CONFIG

    id: int
    email: str
    name: Optional[str]
    email_verified: bool
    created_at: Optional[str]
    last_login: Optional[str]
    preferences: dict

    @classmethod
    def from_user(cls, user: PublicUser) -> "UserView":
        """Build a UserView from the service's PublicUser (Factory Method)."""
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            email_verified=user.email_verified,
            created_at=user.created_at,
            last_login=user.last_login,
            preferences=dict(user.preferences),
        )


class RegisterResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    user_id: int
    message: str = "Registration successful."
    code: str = "registered"


class LoginResponse(BaseModel):
    """Response for POST /api/v1/auth/login.

    token is also set as the httpOnly session cookie; API clients that cannot
    hold cookies send it back as Authorization: Bearer <token>.
    """

    model_config = _RESPONSE_CONFIG

    token: str
    token_type: str = "bearer"
    ttl: int
    expires_at: str
    remember_me: bool = False
    user: UserView


class MessageResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    message: str
    code: str


class LogoutAllResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    message: str = "Logged out of all sessions."
    code: str = "logged_out_everywhere"
    revoked_count: int


class ProfileResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    user: UserView


class AccountDeletedResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    message: str = "Account deleted."
    code: str = "account_deleted"
    sessions_revoked: int


class PasswordStrengthResponse(BaseModel):
    """Response for POST /api/v1/auth/password-strength."""

    model_config = _RESPONSE_CONFIG

    accepted: bool
    score: int
    max_score: int = 8
    strong: bool
    violations: list[str]
    messages: list[str]
    feedback: list[str]

    @classmethod
    def from_result(cls, result: PolicyResult) -> "PasswordStrengthResponse":
        return cls(
            accepted=result.accepted,
            score=result.score,
            strong=result.strong,
            violations=[v.value for v in result.violations],
            messages=result.messages,
            feedback=list(result.feedback),
        )


class FieldErrorItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    Extra keys (retryAfter, attemptsRemaining, lockedUntil, remainingSeconds)
    are allowed so each AuthError can add its own context.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    code: str
    message: str
    detail: Optional[str] = None
    errors: Optional[list[FieldErrorItem]] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
