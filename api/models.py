"""
API request and response models for authgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Every JSON body the API returns has a top-level "message" plus exactly one of
"result" (success), "error" (domain failure) or "errors" (validation failure).
Result payloads use camelCase keys to match the existing frontend client.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import SafeUser, UserRole
from auth.passwords import MAX_PASSWORD_BYTES
from auth.service import SignInResult

# Deliberately loose: one "@" with something on both sides of it and a dot in
# the domain. Deliverability is not our problem.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignInRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    # Taken verbatim: whitespace is part of the credential.
    password: str = Field(min_length=8, max_length=64)

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.")
        return value


class SignUpRequest(SignInRequest):
    """Request body for POST /api/v1/auth/signup. name defaults to the email's local part."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class RefreshRequest(_CamelModel):
    """Request body for POST /api/v1/auth/refresh and /auth/signout."""

    refresh_token: str = Field(min_length=1)


class RoleUpdateRequest(BaseModel):
    """Request body for PATCH /api/v1/auth/users/{user_id}/role."""

    role: UserRole


# ---------------------------------------------------------------------------
# Result payloads
# ---------------------------------------------------------------------------


class UserView(_CamelModel):
    id: str
    email: str
    name: Optional[str] = None


class SignInPayload(_CamelModel):
    user: UserView
    token: str
    expires_at: int
    refresh_token: Optional[str] = None

    @classmethod
    def from_result(cls, result: SignInResult) -> "SignInPayload":
        return cls(
            user=UserView(id=result.user.id, email=result.user.email, name=result.user.name),
            token=result.token,
            expires_at=result.expires_at,
            refresh_token=result.refresh_token,
        )


class TokenPayload(_CamelModel):
    token: str
    expires_at: int


class IdentityPayload(_CamelModel):
    id: str
    email: str
    role: Optional[str] = None


class SafeUserPayload(_CamelModel):
    id: str
    name: str
    email: str
    role: UserRole
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: SafeUser) -> "SafeUserPayload":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            created_at=user.created_at.isoformat() if user.created_at else None,
            updated_at=user.updated_at.isoformat() if user.updated_at else None,
        )


class SuccessPayload(BaseModel):
    success: bool = True


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


class ResultResponse(BaseModel):
    """Success envelope: {"message": ..., "result": ...}."""

    model_config = ConfigDict(frozen=True)

    message: str
    result: Any = None


class ErrorResponse(BaseModel):
    """Failure envelope. error for domain failures, errors for validation."""

    model_config = ConfigDict(frozen=True)

    message: str
    error: Optional[str] = None
    errors: Optional[list[dict]] = None


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
