"""
api/routes/v1/auth.py -- Session lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/register  -- create account; 201
  POST /api/v1/auth/login     -- password login; sets session cookies
  POST /api/v1/auth/refresh   -- rotate refresh token, new access token (CSRF)
  POST /api/v1/auth/logout    -- revoke refresh token, clear cookies (CSRF)

Failures are not caught here: AuthEngine raises AuthError subclasses and the
handler in api/main.py maps each to its status code with a generic message.
The one exception is refresh, where UserNotFound is folded into InvalidToken
so a deleted account looks like any other dead session.

Security:
  [C1] Unknown email and wrong password both surface as 401 bad_credentials.
  [M5] Cache-Control: no-store on every response that sets or clears tokens.
  refresh/logout read the refresh token from its httpOnly cookie only and
  require the double-submit CSRF header.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.cookies import clear_session_cookies, set_session_cookies
from api.models import LoginRequest, MessageResponse, RegisterRequest, UserEnvelope, UserResponse
from auth.dependencies import REFRESH_TOKEN_COOKIE, get_engine, require_csrf
from auth.errors import InvalidToken, UserNotFound

# Auth policy:
# - POST /api/v1/auth/register: public
# - POST /api/v1/auth/login:    public
# - POST /api/v1/auth/refresh:  refresh cookie + CSRF header
# - POST /api/v1/auth/logout:   CSRF header; a missing refresh cookie means "already logged out"
router = APIRouter()


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/register", response_model=UserEnvelope, status_code=201)
async def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a new account. 409 if the email is already registered."""
    user = await get_engine(request).register(body.email, body.password)
    envelope = UserEnvelope(message="registration successful", user=UserResponse.from_user(user))
    return JSONResponse(status_code=201, content=envelope.model_dump(mode="json"))


@router.post("/auth/login", response_model=UserEnvelope)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set access, refresh and CSRF cookies."""
    engine = get_engine(request)
    result = await engine.login(body.email, body.password)

    envelope = UserEnvelope(message="login successful", user=UserResponse.from_user(result.user))
    resp = JSONResponse(status_code=200, content=envelope.model_dump(mode="json"))
    set_session_cookies(
        resp,
        request.app.state.settings,
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        csrf_token=engine.issue_csrf_token(result.refresh_token),
    )
    return _no_store(resp)


@router.post("/auth/refresh", response_model=MessageResponse, dependencies=[Depends(require_csrf)])
async def refresh(request: Request) -> JSONResponse:
    """Rotate the refresh token from the cookie and issue a new access token."""
    presented = request.cookies.get(REFRESH_TOKEN_COOKIE)
    if not presented:
        raise HTTPException(
            status_code=401,
            detail={"code": "no_refresh_token", "message": "No refresh token."},
            headers={"Cache-Control": "no-store"},
        )

    engine = get_engine(request)
    try:
        pair = await engine.refresh_access_token(presented)
    except UserNotFound as exc:
        raise InvalidToken() from exc

    resp = JSONResponse(status_code=200, content={"message": "token refreshed successfully"})
    set_session_cookies(
        resp,
        request.app.state.settings,
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        csrf_token=engine.issue_csrf_token(pair.refresh_token),
    )
    return _no_store(resp)


@router.post("/auth/logout", response_model=MessageResponse, dependencies=[Depends(require_csrf)])
async def logout(request: Request) -> JSONResponse:
    """Revoke the refresh token (if any) and clear every session cookie."""
    presented = request.cookies.get(REFRESH_TOKEN_COOKIE)
    message = "logged out"
    if presented:
        await get_engine(request).logout(presented)
        message = "logged out successfully"

    resp = JSONResponse(status_code=200, content={"message": message})
    clear_session_cookies(resp, request.app.state.settings)
    return _no_store(resp)
