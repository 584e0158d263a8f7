"""
API request and response models for the auth service REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one "@", no whitespace, a dot in the domain part.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

_PASSWORD_RULES = (re.compile(r"[A-Z]"), re.compile(r"[a-z]"), re.compile(r"[0-9]"))


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    Password policy: at least 8 characters with upper case, lower case and a
    digit. Checked here, before the engine, so a weak password never costs a
    bcrypt round.
    """

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8, max_length=255)

    @field_validator("password")
    @classmethod
    def check_strength(cls, value: str) -> str:
        if not all(rule.search(value) for rule in _PASSWORD_RULES):
            raise ValueError(
                "password must be at least 8 characters and contain uppercase, lowercase, and number"
            )
        return value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. No strength check -- just shape."""

    email: str = Field(min_length=3, max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. The password hash has no field here on purpose."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    verified: bool
    created_at: Optional[datetime]

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(id=user.id, email=user.email, verified=user.verified, created_at=user.created_at)


class UserEnvelope(BaseModel):
    """Response for endpoints that return a single user (register, login, me)."""

    model_config = ConfigDict(frozen=True)

    message: Optional[str] = None
    user: UserResponse


class SessionResponse(BaseModel):
    """One active session. The refresh token string itself is never returned."""

    model_config = ConfigDict(frozen=True)

    id: int
    created_at: Optional[datetime]
    expires_at: datetime


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
