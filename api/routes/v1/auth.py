"""
api/routes/v1/auth.py -- Registration, login and logout REST endpoints.

Routes:
  POST   /api/v1/auth/register          -- create an account; 201
  POST   /api/v1/auth/login             -- password login; sets the session cookie
  POST   /api/v1/auth/logout            -- revoke this session; always 200
  DELETE /api/v1/auth/logout            -- revoke every session of this user
  POST   /api/v1/auth/password-strength -- score a candidate password (no side effects)

Security:
  Rate limits (login 10/15min, register 5/h per client) are enforced inside
  AuthService, before any user lookup.
  Login does bcrypt work even for unknown emails (timing equalization in the
  service); the error is the same generic InvalidCredentials either way.
  Cache-Control: no-store on every response that carries a token.
  Logout clears the cookie even when the store is unreachable.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from api.models import (
    LoginRequest,
    LoginResponse,
    LogoutAllResponse,
    MessageResponse,
    PasswordCheckRequest,
    PasswordStrengthResponse,
    RegisterRequest,
    RegisterResponse,
    UserView,
)
from auth.dependencies import get_auth_service, get_client_context, get_session_token
from auth.models import ClientContext
from auth.service import AuthService
from auth.tokens import clear_session_cookie, set_session_cookie

# Auth policy:
# - POST   /api/v1/auth/register:          public
# - POST   /api/v1/auth/login:             public
# - POST   /api/v1/auth/logout:            public -- clearing a cookie needs no prior auth
# - DELETE /api/v1/auth/logout:            requires a valid session (checked by the service)
# - POST   /api/v1/auth/password-strength: public, stateless
router = APIRouter()


@router.post("/auth/register", status_code=201, response_model=RegisterResponse)
def register(
    body: RegisterRequest,
    client: ClientContext = Depends(get_client_context),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Create an account. No session is issued; the client logs in afterwards."""
    result = service.register(body.email, body.password, client)
    return JSONResponse(
        status_code=201,
        content=RegisterResponse(user_id=result.user_id).model_dump(by_alias=True),
    )


@router.post("/auth/login", response_model=LoginResponse)
def login(
    body: LoginRequest,
    client: ClientContext = Depends(get_client_context),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    The cookie max_age mirrors the session TTL: 30 days with rememberMe,
    24 hours otherwise.
    """
    result = service.login(body.email, body.password, body.remember_me, client)
    resp = JSONResponse(
        content=LoginResponse(
            token=result.token,
            ttl=result.ttl_seconds,
            expires_at=result.expires_at,
            remember_me=result.remember_me,
            user=UserView.from_user(result.user),
        ).model_dump(by_alias=True),
    )
    set_session_cookie(resp, result.token, max_age=result.ttl_seconds)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    token: str | None = Depends(get_session_token),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Revoke the caller's session. Succeeds whether or not it was still live."""
    result = service.logout(token)
    if result.degraded:
        body = MessageResponse(message="Logout completed with warnings.", code="logged_out_with_warnings")
    else:
        body = MessageResponse(message="Logged out.", code="logged_out")
    resp = JSONResponse(content=body.model_dump(by_alias=True))
    clear_session_cookie(resp)
    return resp


@router.delete("/auth/logout", response_model=LogoutAllResponse)
def logout_all(
    token: str | None = Depends(get_session_token),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Revoke every session belonging to the caller, on every device."""
    revoked = service.logout_all(token)
    resp = JSONResponse(content=LogoutAllResponse(revoked_count=revoked).model_dump(by_alias=True))
    clear_session_cookie(resp)
    return resp


@router.post("/auth/password-strength", response_model=PasswordStrengthResponse)
def password_strength(
    body: PasswordCheckRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Return policy acceptance, strength score and hints for a candidate password."""
    result = service.evaluate_password(body.password)
    resp = JSONResponse(content=PasswordStrengthResponse.from_result(result).model_dump(by_alias=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp
