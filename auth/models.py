"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores build these from
rows; the service composes them into results; routes map them to API models.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

DEFAULT_PREFERENCES: dict = {"notifications": True, "theme": "light"}


@dataclass
class User:
    """A registered account.

    email is stored lowercased and trimmed; it is the login identity and is
    unique across the users table.

    password_hash is the bcrypt digest. It never leaves the auth/ package --
    PublicUser is the shape handed to callers.

    failed_attempts / locked_until hold the per-account lockout state. While
    locked_until is in the future the account cannot log in, whatever password
    is supplied.
    """

    email: str
    password_hash: str
    id: int | None = None
    name: str | None = None
    preferences: dict = field(default_factory=lambda: dict(DEFAULT_PREFERENCES))
    email_verified: bool = False
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None
    failed_attempts: int = 0
    locked_until: str | None = None


@dataclass(frozen=True)
class PublicUser:
    """The subset of a User that is safe to return to a client."""

    id: int
    email: str
    name: str | None
    email_verified: bool
    created_at: str | None
    last_login: str | None
    preferences: dict


@dataclass(frozen=True)
class ClientContext:
    """Who is calling: captured from the transport for rate limiting and audit."""

    ip: str | None = None
    user_agent: str | None = None


@dataclass
class Session:
    """A login session. user_id is a plain identity, not a live User reference."""

    token: str
    user_id: int
    created_at: str
    expires_at: str
    ip: str | None = None
    user_agent: str | None = None
    remember_me: bool = False


@dataclass(frozen=True)
class FailedAttempt:
    """Outcome of recording one failed password verification.

    locked is True only for the attempt that set locked_until.
    """

    attempts: int
    locked: bool
    locked_until: str | None = None


@dataclass(frozen=True)
class RegistrationResult:
    user_id: int


@dataclass(frozen=True)
class LoginResult:
    token: str
    ttl_seconds: int
    expires_at: str
    user: PublicUser
    remember_me: bool = False


@dataclass(frozen=True)
class LogoutResult:
    """revoked: a live row was deleted. degraded: the store could not be reached."""

    revoked: bool
    degraded: bool = False


@dataclass
class ProfilePatch:
    """Validated profile update. None means "leave unchanged"."""

    name: Optional[str] = None
    preferences: Optional[dict] = None
    current_password: Optional[str] = None
    new_password: Optional[str] = None
