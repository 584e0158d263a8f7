"""
api/cookies.py -- Session cookie helpers.

Three cookies carry a browser session:
  access_token  -- httpOnly, lives as long as the access token.
  refresh_token -- httpOnly, lives as long as the refresh token.
  csrf_token    -- NOT httpOnly (page JS must read it to echo the
                   X-CSRF-Token header), same lifetime as the refresh token.

samesite comes from COOKIE_SAMESITE (default "strict"); secure from
SECURE_COOKIES (set true behind HTTPS in production).
"""

from __future__ import annotations

from fastapi import Response

from auth.dependencies import ACCESS_TOKEN_COOKIE, CSRF_TOKEN_COOKIE, REFRESH_TOKEN_COOKIE
from core.config import Settings


def _set(response: Response, settings: Settings, name: str, value: str, max_age: int, httponly: bool) -> None:
    response.set_cookie(
        name,
        value=value,
        max_age=max_age,
        path="/",
        domain=settings.cookie_domain or None,
        secure=settings.secure_cookies,
        httponly=httponly,
        samesite=settings.cookie_samesite,
    )


def set_session_cookies(
    response: Response,
    settings: Settings,
    access_token: str,
    refresh_token: str,
    csrf_token: str,
) -> None:
    """Write all three session cookies on response."""
    _set(response, settings, ACCESS_TOKEN_COOKIE, access_token, settings.access_token_ttl_seconds, True)
    _set(response, settings, REFRESH_TOKEN_COOKIE, refresh_token, settings.refresh_token_ttl_seconds, True)
    _set(response, settings, CSRF_TOKEN_COOKIE, csrf_token, settings.refresh_token_ttl_seconds, False)


def clear_session_cookies(response: Response, settings: Settings) -> None:
    for name, httponly in (
        (ACCESS_TOKEN_COOKIE, True),
        (REFRESH_TOKEN_COOKIE, True),
        (CSRF_TOKEN_COOKIE, False),
    ):
        response.delete_cookie(
            name,
            path="/",
            domain=settings.cookie_domain or None,
            secure=settings.secure_cookies,
            httponly=httponly,
            samesite=settings.cookie_samesite,
        )
