"""
auth/tokens.py -- Access token codec (signed, stateless, short-lived JWTs).

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, email, iat, nbf and exp. Nothing else -- the payload is only
       base64, never put secrets in it.

  Algorithm pinning: the header is inspected before verification and any alg
       other than HS256 (including "none" and RS*/ES* substitution attempts)
       is rejected. jwt.decode() is also called with algorithms=[HS256].

  Time checks: exp / nbf are checked here against an explicit `now` rather
       than inside jose, so the boundary is exact (valid iff nbf <= now < exp)
       and tests can move the clock.

  No oracle: every failure raises the same InvalidToken. The concrete reason
       is logged at DEBUG for operators and never returned to callers.

  Stateless: there is no server-side lookup. A token stays usable until exp;
       revoking the paired refresh token only stops future renewal.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.errors import InvalidToken
from auth.models import AccessTokenClaims

logger = logging.getLogger("authservice.tokens")

ALGORITHM = "HS256"

# Signature and claim-shape checks only; time checks happen in _check_times().
_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def issue_access_token(
    user_id: int,
    email: str,
    secret: str,
    ttl: timedelta,
    now: datetime | None = None,
) -> str:
    """Encode a signed JWT for user_id/email that expires after ttl.

    A negative ttl produces an already-expired token (useful in tests).
    Raises ValueError on an empty secret -- that is a startup misconfiguration,
    not an authentication failure.
    """
    if not secret:
        raise ValueError("signing secret must not be empty")
    issued = now or _utcnow()
    payload = {
        "user_id": user_id,
        "email": email,
        "iat": int(issued.timestamp()),
        "nbf": int(issued.timestamp()),
        "exp": int((issued + ttl).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=ALGORITHM)


def validate_access_token(token: str, secret: str, now: datetime | None = None) -> AccessTokenClaims:
    """Verify token and return its claims. Raises InvalidToken on any failure."""
    if not token or not secret:
        raise InvalidToken()
    try:
        header = jwt.get_unverified_header(token)
        if header.get("alg") != ALGORITHM:
            logger.debug("Rejected access token with alg=%r", header.get("alg"))
            raise InvalidToken()
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM], options=_DECODE_OPTIONS)
    except JWTError as exc:
        logger.debug("Access token failed verification: %s", exc)
        raise InvalidToken() from None

    claims = _to_claims(payload)
    _check_times(claims, now or _utcnow())
    return claims


def _to_claims(payload: dict) -> AccessTokenClaims:
    user_id = payload.get("user_id")
    email = payload.get("email")
    stamps = [payload.get(k) for k in ("iat", "nbf", "exp")]
    # bool is an int subclass; a forged {"user_id": true} must not pass
    if not isinstance(user_id, int) or isinstance(user_id, bool) or not isinstance(email, str):
        logger.debug("Access token missing identity claims")
        raise InvalidToken()
    if not all(isinstance(s, (int, float)) and not isinstance(s, bool) for s in stamps):
        logger.debug("Access token missing time claims")
        raise InvalidToken()
    iat, nbf, exp = (datetime.fromtimestamp(s, tz=timezone.utc) for s in stamps)
    return AccessTokenClaims(user_id=user_id, email=email, issued_at=iat, not_before=nbf, expires_at=exp)


def _check_times(claims: AccessTokenClaims, now: datetime) -> None:
    if now < claims.not_before:
        logger.debug("Access token used before nbf")
        raise InvalidToken()
    if now >= claims.expires_at:
        logger.debug("Access token expired")
        raise InvalidToken()
