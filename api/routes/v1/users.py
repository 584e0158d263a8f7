"""
api/routes/v1/users.py -- Endpoints for the signed-in user.

Routes:
  GET  /api/v1/user/me               -- current user (requires access token)
  GET  /api/v1/user/sessions         -- active sessions, newest first
  POST /api/v1/user/sessions/revoke  -- sign out everywhere (CSRF)

Identity comes from the access token claims only; the user row is loaded to
return fresh data, and a token whose user was deleted gets 404.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.cookies import clear_session_cookies
from api.models import MessageResponse, SessionResponse, UserEnvelope, UserResponse
from auth.dependencies import get_current_claims, get_engine, require_csrf
from auth.models import AccessTokenClaims

router = APIRouter()


@router.get("/user/me", response_model=UserEnvelope)
async def me(request: Request, claims: AccessTokenClaims = Depends(get_current_claims)) -> UserEnvelope:
    user = await get_engine(request).get_user(claims.user_id)
    return UserEnvelope(user=UserResponse.from_user(user))


@router.get("/user/sessions", response_model=list[SessionResponse])
async def list_sessions(
    request: Request,
    claims: AccessTokenClaims = Depends(get_current_claims),
) -> list[SessionResponse]:
    records = await get_engine(request).list_sessions(claims.user_id)
    return [SessionResponse(id=r.id, created_at=r.created_at, expires_at=r.expires_at) for r in records]


@router.post("/user/sessions/revoke", response_model=MessageResponse, dependencies=[Depends(require_csrf)])
async def revoke_sessions(
    request: Request,
    claims: AccessTokenClaims = Depends(get_current_claims),
) -> JSONResponse:
    """Revoke every refresh token the user holds, including this browser's.

    Access tokens already issued stay valid until they expire; none can be
    renewed afterwards.
    """
    count = await get_engine(request).revoke_all_sessions(claims.user_id)
    resp = JSONResponse(content={"message": f"revoked {count} session(s)"})
    clear_session_cookies(resp, request.app.state.settings)
    resp.headers["Cache-Control"] = "no-store"
    return resp
