"""
auth/entropy.py -- Opaque random tokens for refresh sessions.

secrets.token_bytes reads the OS CSPRNG (getrandom / urandom). If that source
fails we raise EntropyUnavailable rather than falling back to anything seeded
-- the calling operation must fail.
"""

from __future__ import annotations

import base64
import secrets
import uuid

from auth.errors import EntropyUnavailable

REFRESH_TOKEN_BYTES = 32


def generate_token(byte_length: int = REFRESH_TOKEN_BYTES) -> str:
    """Return byte_length random bytes as URL-safe base64 (padded).

    32 bytes gives 256 bits of entropy and encodes to 44 characters.
    """
    if byte_length < 16:
        raise ValueError("byte_length must be at least 16")
    try:
        raw = secrets.token_bytes(byte_length)
    except (OSError, NotImplementedError) as exc:
        raise EntropyUnavailable() from exc
    return base64.urlsafe_b64encode(raw).decode("ascii")


def new_family_id() -> str:
    """Identifier shared by every refresh token in one rotation chain."""
    try:
        return uuid.uuid4().hex
    except (OSError, NotImplementedError) as exc:
        raise EntropyUnavailable() from exc
