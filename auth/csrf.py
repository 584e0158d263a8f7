"""
auth/csrf.py -- Double-submit CSRF tokens.

The token is not validated by content. The server mints a value, sets it in a
JS-readable cookie, and state-changing requests must echo it in the
X-CSRF-Token header. A cross-site attacker can make the browser send the
cookie but cannot read it to forge the header, so "cookie == header" is the
whole check (see auth/dependencies.require_csrf).

Two minting schemes:
  issue_csrf_token         -- sha256(secret ":" unix_seconds). Bound to the
                              server secret and wall clock only. Nothing is
                              tracked server-side, tokens never expire, and
                              many may be valid at once.
  issue_session_csrf_token -- HMAC-SHA256(secret, refresh_token). Bound to the
                              session, so a token cannot be replayed across
                              sessions. Enabled by CSRF_BIND_TO_SESSION=true.
"""

from __future__ import annotations

import hashlib
import hmac
from datetime import datetime, timezone


def issue_csrf_token(secret: str, now: datetime | None = None) -> str:
    timestamp = int((now or datetime.now(timezone.utc)).timestamp())
    return hashlib.sha256(f"{secret}:{timestamp}".encode("utf-8")).hexdigest()


def issue_session_csrf_token(secret: str, refresh_token: str) -> str:
    return hmac.new(secret.encode("utf-8"), refresh_token.encode("utf-8"), hashlib.sha256).hexdigest()


def tokens_match(cookie_value: str | None, header_value: str | None) -> bool:
    """Constant-time double-submit comparison. Empty or missing never matches."""
    if not cookie_value or not header_value:
        return False
    return hmac.compare_digest(cookie_value.encode("utf-8"), header_value.encode("utf-8"))
