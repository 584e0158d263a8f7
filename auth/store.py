"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
AuthStore implements both UserRepository and TokenRepository (see
auth/repository.py); _row_to_user / _row_to_refresh_token are the mappers.
The engine never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Revocation is a single-row conditional UPDATE (... AND revoked_at IS NULL).
  The first revoke wins and keeps its timestamp; every later revoke of the
  same token matches zero rows. That makes revoke exactly-once, so a replayed
  request cannot resurrect or re-stamp a dead token.

  rotate() runs "revoke old + insert new" in one transaction. When the
  conditional revoke matches nothing (a concurrent rotation or logout got
  there first) nothing is inserted, so a chain never ends up with two live
  tokens or with zero tokens after a half-finished rotation.

Timestamps are stored as ISO 8601 UTC strings with fixed microsecond
precision, so string comparison in SQL (expires_at < :now) is chronological.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from auth.models import RefreshToken, User

_DEFAULT_DB_URL = "sqlite:///authservice.db"
_MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # case-sensitive as stored
    Column("password_hash", Text, nullable=False),
    Column("verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token", String(128), nullable=False, unique=True, index=True),
    Column("family_id", String(64), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("revoked_at", String(32)),  # NULL = active
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block on the token writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _now_iso() -> str:
    return _to_iso(datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for User and RefreshToken entities.

    Usage:
        store = AuthStore("sqlite:///authservice.db")
        user_id = store.create_user(User(email="a@x.com", password_hash=digest))
        store.create(RefreshToken(user_id=user_id, token=tok, expires_at=exp, family_id=fam))
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            if db_url in _MEMORY_URLS:
                # One shared connection, otherwise every pool checkout sees a blank DB
                engine_kwargs["poolclass"] = StaticPool
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        The engine turns that into UserAlreadyExists, which covers two
        concurrent registrations that both passed the existence pre-check.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    password_hash=user.password_hash,
                    verified=1 if user.verified else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def mark_verified(self, user_id: int) -> bool:
        """Flip verified to true. Returns False if the user is missing or already verified."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.verified == 0))
                .values(verified=1, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found.

        Account deletion is owned by the caller. Refresh tokens are removed by
        ON DELETE CASCADE where the backend enforces foreign keys; where it
        does not (SQLite without PRAGMA foreign_keys), orphaned tokens are
        rejected by the engine because their owner no longer resolves.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Refresh token queries
    # ------------------------------------------------------------------

    def create(self, record: RefreshToken) -> int:
        """Insert a refresh token and return its ID. Raises IntegrityError on a duplicate token."""
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.insert().values(**_refresh_token_values(record)))
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_token(self, token: str) -> RefreshToken | None:
        """Look up a token regardless of state. O(1) via the UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token == token)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def get_by_user_id(self, user_id: int) -> list[RefreshToken]:
        """Return a user's non-revoked tokens, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked_at.is_(None)))
                .order_by(_refresh_tokens.c.created_at.desc(), _refresh_tokens.c.id.desc())
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    def revoke(self, token: str) -> bool:
        """Revoke one token. Returns True only for the call that actually revoked it."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token == token) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_all_for_user(self, user_id: int) -> int:
        """Revoke every active token a user holds. Returns the number revoked."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_now_iso())
            )
            conn.commit()
        return result.rowcount

    def revoke_family(self, family_id: str) -> int:
        """Revoke every active token in one rotation chain. Returns the number revoked."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.family_id == family_id) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_now_iso())
            )
            conn.commit()
        return result.rowcount

    def rotate(self, old_token: str, new_record: RefreshToken) -> bool:
        """Atomically revoke old_token and insert new_record.

        Returns False, and writes nothing, if old_token was not active at the
        moment of the update. engine.begin() commits on success and rolls
        back if the insert raises, so the revoke never lands alone.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.token == old_token) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=_now_iso())
            )
            if result.rowcount != 1:
                return False
            conn.execute(_refresh_tokens.insert().values(**_refresh_token_values(new_record)))
        return True

    def delete_expired(self, now: datetime | None = None) -> int:
        """Physically delete tokens past expires_at. Returns rows removed.

        Revoked tokens that have not expired are kept: they are still needed
        to recognise a replayed token until it would have expired anyway.
        """
        cutoff = _to_iso(now or datetime.now(timezone.utc))
        with self.engine.connect() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.expires_at < cutoff))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _refresh_token_values(record: RefreshToken) -> dict:
    return {
        "user_id": record.user_id,
        "token": record.token,
        "family_id": record.family_id,
        "expires_at": _to_iso(record.expires_at),
        "created_at": _to_iso(record.created_at) if record.created_at else _now_iso(),
        "revoked_at": _to_iso(record.revoked_at) if record.revoked_at else None,
    }


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        verified=bool(row.verified),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    return RefreshToken(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        family_id=row.family_id,
        expires_at=_from_iso(row.expires_at),
        created_at=_from_iso(row.created_at),
        revoked_at=_from_iso(row.revoked_at),
    )
