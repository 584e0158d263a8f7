"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and CSRF.

Access tokens are accepted from two places, checked in priority order:
  1. "access_token" cookie -- set by the login/refresh flow for browsers.
  2. Authorization: Bearer <token> header -- API clients.

get_current_claims() returns the verified AccessTokenClaims or raises 401.
It never touches the store: access tokens are stateless by design.

require_csrf() enforces the double-submit rule on state-changing requests:
the "csrf_token" cookie and the X-CSRF-Token header must both be present and
equal. With CSRF_BIND_TO_SESSION on, the header must also equal the HMAC of
the refresh cookie. Safe methods (GET, HEAD, OPTIONS) pass through.

Layer rule: this module may import from fastapi because it is part of the
FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.csrf import tokens_match
from auth.engine import AuthEngine
from auth.errors import InvalidToken
from auth.models import AccessTokenClaims

ACCESS_TOKEN_COOKIE = "access_token"
REFRESH_TOKEN_COOKIE = "refresh_token"
CSRF_TOKEN_COOKIE = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"

_SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def get_engine(request: Request) -> AuthEngine:
    return request.app.state.engine


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


def get_current_claims(request: Request) -> AccessTokenClaims:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: AccessTokenClaims = Depends(get_current_claims)): ...
    """
    token = request.cookies.get(ACCESS_TOKEN_COOKIE) or _bearer_token(request)
    if not token:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    try:
        return get_engine(request).validate_access_token(token)
    except InvalidToken as exc:
        raise HTTPException(
            status_code=401,
            detail={"code": InvalidToken.code, "message": InvalidToken.message},
        ) from exc


def require_csrf(request: Request) -> None:
    """Reject state-changing requests whose CSRF cookie and header differ. HTTP 403."""
    if request.method in _SAFE_METHODS:
        return
    cookie_value = request.cookies.get(CSRF_TOKEN_COOKIE)
    header_value = request.headers.get(CSRF_HEADER)
    if not cookie_value or not header_value:
        raise HTTPException(
            status_code=403,
            detail={"code": "csrf_missing", "message": f"CSRF token required in cookie and {CSRF_HEADER} header."},
        )
    if not tokens_match(cookie_value, header_value):
        raise HTTPException(
            status_code=403,
            detail={"code": "csrf_mismatch", "message": "CSRF token mismatch."},
        )

    # Session-bound tokens must also be the one minted for this refresh cookie.
    engine = get_engine(request)
    refresh_token = request.cookies.get(REFRESH_TOKEN_COOKIE)
    if engine.settings.csrf_bind_to_session and refresh_token:
        if not tokens_match(engine.issue_csrf_token(refresh_token), header_value):
            raise HTTPException(
                status_code=403,
                detail={"code": "csrf_mismatch", "message": "CSRF token mismatch."},
            )
