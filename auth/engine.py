"""
auth/engine.py -- Session/auth engine: register, login, refresh, logout, validate.

The engine owns every policy decision (who gets which token, when a token is
valid). It composes the password hasher, the access token codec, the random
token generator and the repositories, and reports every expected failure as
an AuthError subclass (auth/errors.py).

Refresh token state machine:
    Active --revoke/rotate--> Revoked   (terminal)
    Active --time passes----> Expired   (terminal, never an explicit write)

Security notes:
  [C1] login() runs bcrypt whether or not the email exists (dummy digest on
       the unknown path) and returns the same InvalidCredentials for both.

  Rotation: refresh_access_token() revokes the presented token and stores its
       successor in one store transaction (TokenRepository.rotate). If another
       request rotated or revoked the token first, this call fails with
       InvalidToken and writes nothing.

  Reuse detection: a refresh token that is presented AFTER it was revoked is
       treated as stolen. Every token in its family (the chain rooted at one
       login) is revoked, which logs out both the thief and the victim.

Concurrency:
  Repository calls are blocking; they run via asyncio.to_thread. bcrypt runs
  on the hasher's bounded pool. Each public coroutine is wrapped in
  asyncio.wait_for with the caller's timeout (or OPERATION_TIMEOUT_SECONDS);
  cancellation propagates. A write already handed to a worker thread still
  completes. A login whose response never arrived leaves an unused session
  behind and the client simply logs in again. A refresh whose response never
  arrived ends the session: the client retries with the token that rotation
  already revoked, and reuse detection revokes the whole family.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth import csrf
from auth import tokens as codec
from auth.entropy import generate_token, new_family_id
from auth.errors import (
    AuthUnavailable,
    InvalidCredentials,
    InvalidToken,
    NotVerified,
    OperationTimeout,
    UserAlreadyExists,
    UserNotFound,
)
from auth.mailer import LoggingMailer, Mailer
from auth.models import AccessTokenClaims, LoginResult, RefreshToken, TokenPair, User
from auth.passwords import PasswordHasher
from auth.repository import TokenRepository, UserRepository
from core.config import Settings

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthEngine:
    """Orchestrates credential checks and the token lifecycle.

    Usage:
        engine = AuthEngine(store, store, PasswordHasher(cost=12), settings)
        user = await engine.register("a@x.com", "Passw0rd1")
        result = await engine.login("a@x.com", "Passw0rd1")
        pair = await engine.refresh_access_token(result.refresh_token)
        await engine.logout(pair.refresh_token)
    """

    def __init__(
        self,
        users: UserRepository,
        tokens: TokenRepository,
        hasher: PasswordHasher,
        settings: Settings,
        mailer: Mailer | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.users = users
        self.tokens = tokens
        self.hasher = hasher
        self.settings = settings
        self.mailer = mailer or LoggingMailer()
        self.logger = logger or logging.getLogger("authservice.engine")
        self._clock = clock or _utcnow
        self.access_ttl = timedelta(seconds=settings.access_token_ttl_seconds)
        self.refresh_ttl = timedelta(seconds=settings.refresh_token_ttl_seconds)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def register(self, email: str, password: str, *, timeout: float | None = None) -> User:
        """Create an account. Raises UserAlreadyExists if the email is taken."""
        return await self._run(self._register(email, password), timeout)

    async def login(self, email: str, password: str, *, timeout: float | None = None) -> LoginResult:
        """Check credentials and open a new session (one access + one refresh token)."""
        return await self._run(self._login(email, password), timeout)

    async def refresh_access_token(self, refresh_token: str, *, timeout: float | None = None) -> TokenPair:
        """Exchange a valid refresh token for a new access token and a rotated refresh token."""
        return await self._run(self._refresh(refresh_token), timeout)

    async def logout(self, refresh_token: str, *, timeout: float | None = None) -> None:
        """Revoke refresh_token. Unknown or already-revoked tokens are not an error."""
        await self._run(self._logout(refresh_token), timeout)

    def validate_access_token(self, token: str) -> AccessTokenClaims:
        """Verify a signed access token. No store access. Raises InvalidToken."""
        return codec.validate_access_token(token, self.settings.secret_key, now=self._clock())

    async def get_user(self, user_id: int, *, timeout: float | None = None) -> User:
        return await self._run(self._get_user(user_id), timeout)

    async def mark_verified(self, user_id: int, *, timeout: float | None = None) -> None:
        """Verification hook: called once the email has been confirmed out-of-band."""
        await self._run(self._mark_verified(user_id), timeout)

    async def list_sessions(self, user_id: int, *, timeout: float | None = None) -> list[RefreshToken]:
        """Active (non-revoked, unexpired) sessions for user_id, newest first."""
        records = await self._run(self._store(self.tokens.get_by_user_id, user_id), timeout)
        now = self._clock()
        return [r for r in records if r.is_valid(now)]

    async def revoke_all_sessions(self, user_id: int, *, timeout: float | None = None) -> int:
        """Revoke every refresh token user_id holds (password change, compromise)."""
        count = await self._run(self._store(self.tokens.revoke_all_for_user, user_id), timeout)
        self.logger.info("Revoked %d session(s) for user_id=%s", count, user_id)
        return count

    async def purge_expired(self, *, timeout: float | None = None) -> int:
        """Delete refresh tokens past their expiry. Returns rows removed."""
        count = await self._run(self._store(self.tokens.delete_expired, self._clock()), timeout)
        if count:
            self.logger.info("Purged %d expired refresh token(s)", count)
        return count

    def issue_csrf_token(self, refresh_token: str | None = None) -> str:
        """Mint a double-submit CSRF token.

        Session-bound (HMAC of the refresh token) when CSRF_BIND_TO_SESSION is
        on and a refresh token is at hand; otherwise the secret+timestamp hash.
        """
        if self.settings.csrf_bind_to_session and refresh_token:
            return csrf.issue_session_csrf_token(self.settings.secret_key, refresh_token)
        return csrf.issue_csrf_token(self.settings.secret_key, now=self._clock())

    # ------------------------------------------------------------------
    # Operation bodies
    # ------------------------------------------------------------------

    async def _register(self, email: str, password: str) -> User:
        existing = await self._store(self.users.get_by_email, email)
        if existing is not None:
            raise UserAlreadyExists()

        digest = await self.hasher.hash_async(password)
        # Without required verification the account is usable from the one insert.
        user = User(email=email, password_hash=digest, verified=not self.settings.require_email_verification)
        user_id = await self._store(self.users.create_user, user, on_conflict=UserAlreadyExists)

        created = await self._store(self.users.get_by_id, user_id)
        if created is None:
            raise AuthUnavailable()
        if not created.verified:
            await self._send_verification(created)
        self.logger.info("Registered user_id=%s (verified=%s)", created.id, created.verified)
        return created

    async def _login(self, email: str, password: str) -> LoginResult:
        user = await self._store(self.users.get_by_email, email)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt [C1]
            await self.hasher.verify_dummy_async(password)
            raise InvalidCredentials()
        if not await self.hasher.verify_async(user.password_hash, password):
            raise InvalidCredentials()
        if not user.verified:
            raise NotVerified()

        now = self._clock()
        access_token = codec.issue_access_token(user.id, user.email, self.settings.secret_key, self.access_ttl, now=now)
        record = RefreshToken(
            user_id=user.id,
            token=generate_token(),
            expires_at=now + self.refresh_ttl,
            family_id=new_family_id(),
            created_at=now,
        )
        await self._store(self.tokens.create, record)
        self.logger.info("Login succeeded for user_id=%s", user.id)
        return LoginResult(access_token=access_token, refresh_token=record.token, user=user)

    async def _refresh(self, presented: str) -> TokenPair:
        if not presented:
            raise InvalidToken()
        record = await self._store(self.tokens.get_by_token, presented)
        if record is None:
            raise InvalidToken()

        if record.revoked_at is not None:
            revoked = await self._store(self.tokens.revoke_family, record.family_id)
            self.logger.warning(
                "Revoked refresh token replayed for user_id=%s; revoked %d token(s) in its family",
                record.user_id,
                revoked,
            )
            raise InvalidToken()

        now = self._clock()
        if not record.is_valid(now):
            raise InvalidToken()

        user = await self._store(self.users.get_by_id, record.user_id)
        if user is None:
            raise UserNotFound()

        access_token = codec.issue_access_token(user.id, user.email, self.settings.secret_key, self.access_ttl, now=now)
        successor = RefreshToken(
            user_id=user.id,
            token=generate_token(),
            expires_at=now + self.refresh_ttl,
            family_id=record.family_id,
            created_at=now,
        )
        if not await self._store(self.tokens.rotate, presented, successor):
            # Lost the race to a concurrent rotation or logout of the same token
            self.logger.info("Refresh token for user_id=%s was rotated concurrently", user.id)
            raise InvalidToken()
        return TokenPair(access_token=access_token, refresh_token=successor.token)

    async def _logout(self, refresh_token: str) -> None:
        if not refresh_token:
            return
        if await self._store(self.tokens.revoke, refresh_token):
            self.logger.info("Refresh token revoked on logout")

    async def _get_user(self, user_id: int) -> User:
        user = await self._store(self.users.get_by_id, user_id)
        if user is None:
            raise UserNotFound()
        return user

    async def _mark_verified(self, user_id: int) -> None:
        user = await self._get_user(user_id)
        if user.verified:
            return
        await self._store(self.users.mark_verified, user_id)
        self.logger.info("Marked user_id=%s verified", user_id)

    async def _send_verification(self, user: User | None) -> None:
        if user is None:
            return
        try:
            await asyncio.to_thread(self.mailer.send_verification, user)
        except Exception:
            # The account exists either way; a resend path can retry delivery.
            self.logger.exception("Verification mail for user_id=%s could not be sent", user.id)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _run(self, operation: Awaitable[T], timeout: float | None) -> T:
        limit = timeout if timeout is not None else self.settings.operation_timeout_seconds
        try:
            return await asyncio.wait_for(operation, timeout=limit)
        except asyncio.TimeoutError as exc:
            self.logger.warning("Auth operation exceeded its %.1fs deadline", limit)
            raise OperationTimeout() from exc

    async def _store(self, fn: Callable[..., T], *args, on_conflict: type[Exception] | None = None) -> T:
        """Run a blocking repository call off the event loop.

        Store failures are logged here and surfaced as AuthUnavailable, so no
        driver error text reaches the caller.
        """
        try:
            return await asyncio.to_thread(fn, *args)
        except IntegrityError as exc:
            if on_conflict is not None:
                raise on_conflict() from exc
            self.logger.exception("Auth store call %s hit an integrity error", fn.__name__)
            raise AuthUnavailable() from exc
        except SQLAlchemyError as exc:
            self.logger.exception("Auth store call %s failed", fn.__name__)
            raise AuthUnavailable() from exc
