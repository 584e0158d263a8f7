"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data containers). Stores and the engine do the work;
the only logic here is RefreshToken.is_valid(), which states the validity
invariant next to the fields it reads.

Timestamps are timezone-aware UTC datetimes. The store converts them to and
from ISO 8601 strings at the persistence boundary.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """An identity that can authenticate with email and password.

    email is compared exactly as stored (case-sensitive). password_hash is a
    bcrypt digest and must never leave the process -- the API layer maps User
    to UserResponse, which has no hash field.

    verified flips from False to True exactly once (see AuthEngine.mark_verified).
    """

    email: str
    password_hash: str
    id: int | None = None
    verified: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class RefreshToken:
    """A server-tracked session credential.

    token is the opaque bearer string (unique, indexed). family_id groups
    every token produced by rotation from one login, so a replayed token can
    take down its whole chain.

    id is None before the record is written to the database.
    """

    user_id: int
    token: str
    expires_at: datetime
    family_id: str = ""
    id: int | None = None
    created_at: datetime | None = None
    revoked_at: datetime | None = None  # None = not revoked

    def is_valid(self, now: datetime) -> bool:
        """Valid iff never revoked and not yet expired."""
        return self.revoked_at is None and now < self.expires_at


@dataclass(frozen=True)
class AccessTokenClaims:
    """Claims carried inside a signed access token. Never persisted."""

    user_id: int
    email: str
    issued_at: datetime
    not_before: datetime
    expires_at: datetime


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    refresh_token: str
    user: User


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
