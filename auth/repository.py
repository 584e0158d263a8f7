"""
auth/repository.py -- Persistence seams consumed by the auth engine.

The engine only talks to these protocols. auth/store.AuthStore implements both
with SQLAlchemy Core; any other backend works if it honours the same
contracts:

  - create_user raises sqlalchemy.exc.IntegrityError (or a subclass) when the
    email is taken, so a concurrent duplicate register is still a conflict.
  - revoke is a single conditional update: revoking an already-revoked or
    unknown token is a no-op and returns False.
  - rotate revokes the old token and inserts the new one in ONE transaction,
    and inserts nothing if the old token was no longer active.

All methods are synchronous; the engine runs them off the event loop.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from auth.models import RefreshToken, User


class UserRepository(Protocol):
    def create_user(self, user: User) -> int: ...

    def get_by_id(self, user_id: int) -> User | None: ...

    def get_by_email(self, email: str) -> User | None: ...

    def mark_verified(self, user_id: int) -> bool: ...

    def delete_user(self, user_id: int) -> bool: ...


class TokenRepository(Protocol):
    def create(self, record: RefreshToken) -> int: ...

    def get_by_token(self, token: str) -> RefreshToken | None: ...

    def get_by_user_id(self, user_id: int) -> list[RefreshToken]: ...

    def revoke(self, token: str) -> bool: ...

    def revoke_all_for_user(self, user_id: int) -> int: ...

    def revoke_family(self, family_id: str) -> int: ...

    def rotate(self, old_token: str, new_record: RefreshToken) -> bool: ...

    def delete_expired(self, now: datetime | None = None) -> int: ...
