"""
auth/validation.py -- Typed, constraint-checked input records for the service.

The service never trusts raw arguments. Each protocol parses its inputs through
one of the pydantic models below; a failure comes back as ValidationFailed with
one FieldError per problem, using the public camelCase field names so the API
can return them verbatim.

Password policy violations are reported individually (one FieldError per
violation) rather than collapsed into a single message.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import re
from typing import Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from auth.errors import FieldError, ValidationFailed
from auth.models import ProfilePatch
from auth.password_policy import evaluate

MAX_EMAIL_LENGTH = 255

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
_EMAIL_RE = re.compile(EMAIL_PATTERN)
_NAME_RE = re.compile(r"^[a-zA-Z\s'-]+$")

_M = TypeVar("_M", bound=BaseModel)


def normalize_email(email: str) -> str:
    """Lowercase and trim. Applied before every lookup and insert."""
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Input records
# ---------------------------------------------------------------------------


class _Email(BaseModel):
    email: str = Field(max_length=MAX_EMAIL_LENGTH)

    @field_validator("email", mode="before")
    @classmethod
    def normalize(cls, value):
        """Runs before the length check so whitespace never counts against it."""
        return normalize_email(value) if isinstance(value, str) else value

    @field_validator("email")
    @classmethod
    def well_formed(cls, value: str) -> str:
        if not _EMAIL_RE.match(value) or ".." in value or value.startswith(".") or value.endswith("."):
            raise ValueError("Invalid email format")
        return value


class RegistrationInput(_Email):
    model_config = ConfigDict(populate_by_name=True)

    password: str = Field(min_length=1)


class LoginInput(_Email):
    model_config = ConfigDict(populate_by_name=True)

    password: str = Field(min_length=1)
    remember_me: bool = Field(default=False, alias="rememberMe")


class PreferencesPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    notifications: Optional[bool] = None
    theme: Optional[Literal["light", "dark"]] = None


class ProfilePatchInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: Optional[str] = None
    preferences: Optional[PreferencesPatch] = None
    current_password: Optional[str] = Field(default=None, alias="currentPassword")
    new_password: Optional[str] = Field(default=None, alias="newPassword")

    @field_validator("name")
    @classmethod
    def valid_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        trimmed = value.strip()
        if len(trimmed) < 2:
            raise ValueError("Name must be at least 2 characters")
        if len(trimmed) > 100:
            raise ValueError("Name too long")
        if not _NAME_RE.match(trimmed):
            raise ValueError("Name can only contain letters, spaces, hyphens, and apostrophes")
        if "  " in trimmed:
            raise ValueError("Please enter a valid name")
        return trimmed


# ---------------------------------------------------------------------------
# Parse helpers
# ---------------------------------------------------------------------------


def _field_name(model: type[BaseModel], loc: tuple) -> str:
    """Map a pydantic error location to the public (aliased) dotted field name."""
    parts: list[str] = []
    for item in loc:
        name = str(item)
        info = model.model_fields.get(name) if not parts else None
        parts.append(info.alias if info is not None and info.alias else name)
    return ".".join(parts) or "body"


def _parse(model: type[_M], data: dict) -> tuple[_M | None, list[FieldError]]:
    try:
        return model.model_validate(data), []
    except ValidationError as exc:
        errors = []
        for err in exc.errors():
            message = err["msg"]
            # pydantic prefixes messages raised from validators with "Value error, "
            if message.startswith("Value error, "):
                message = message[len("Value error, ") :]
            errors.append(FieldError(_field_name(model, err["loc"]), message))
        return None, errors


def _password_errors(field: str, password: str | None) -> list[FieldError]:
    if password is None:
        return []
    return [FieldError(field, message) for message in evaluate(password).messages]


def parse_registration(email, password) -> RegistrationInput:
    record, errors = _parse(RegistrationInput, {"email": email, "password": password})
    if isinstance(password, str):
        errors = [e for e in errors if e.field != "password"] + _password_errors("password", password)
    if errors:
        raise ValidationFailed(errors)
    return record


def parse_login(email, password, remember_me=False) -> LoginInput:
    record, errors = _parse(LoginInput, {"email": email, "password": password, "rememberMe": remember_me})
    if errors:
        raise ValidationFailed(errors)
    return record


def parse_profile_patch(data: dict) -> ProfilePatch:
    """Validate a profile update body into a ProfilePatch.

    Rules beyond field shapes:
      - at least one updatable field must be present,
      - newPassword requires currentPassword and must pass the password policy.
    """
    record, errors = _parse(ProfilePatchInput, data or {})
    if record is None:
        raise ValidationFailed(errors)

    if record.new_password is not None:
        errors.extend(_password_errors("newPassword", record.new_password))
        if not record.current_password:
            errors.append(FieldError("currentPassword", "Current password is required to change password"))
    if errors:
        raise ValidationFailed(errors)

    preferences = record.preferences.model_dump(exclude_none=True) if record.preferences else None
    if record.name is None and not preferences and record.new_password is None:
        raise ValidationFailed([FieldError("body", "No fields to update")])

    return ProfilePatch(
        name=record.name,
        preferences=preferences or None,
        current_password=record.current_password,
        new_password=record.new_password,
    )


def require_password_confirmation(password) -> str:
    if not isinstance(password, str) or not password:
        raise ValidationFailed([FieldError("password", "Password confirmation is required to delete account")])
    return password
