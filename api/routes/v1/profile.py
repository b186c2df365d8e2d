"""
api/routes/v1/profile.py -- Profile read, update and account deletion.

Routes:
  GET    /api/v1/profile -- public view of the caller's account
  PATCH  /api/v1/profile -- update name / preferences / password
  DELETE /api/v1/profile -- delete the account (password confirmation required)

All three require a valid session (cookie or Bearer). The service reports a
missing token as not_authenticated and an expired or unknown one as
invalid_session, both 401.

A password change keeps the calling session and revokes every other one. A
deleted account loses all its sessions in the same transaction, and the
response clears the cookie.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from api.models import AccountDeletedResponse, DeleteAccountRequest, ProfilePatchBody, ProfileResponse, UserView
from auth.dependencies import get_auth_service, get_session_token
from auth.service import AuthService
from auth.tokens import clear_session_cookie

router = APIRouter()


def _profile_response(user) -> JSONResponse:
    resp = JSONResponse(content=ProfileResponse(user=UserView.from_user(user)).model_dump(by_alias=True))
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/profile", response_model=ProfileResponse)
def get_profile(
    token: str | None = Depends(get_session_token),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    return _profile_response(service.get_profile(token))


@router.patch("/profile", response_model=ProfileResponse)
def update_profile(
    body: ProfilePatchBody = Body(...),
    token: str | None = Depends(get_session_token),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Apply a partial update.

    Body keys: name, preferences {notifications, theme}, currentPassword,
    newPassword. Preferences are merged into the stored ones, not replaced.
    """
    return _profile_response(service.update_profile(token, body))


@router.delete("/profile", response_model=AccountDeletedResponse)
def delete_account(
    body: Optional[DeleteAccountRequest] = None,
    token: str | None = Depends(get_session_token),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    revoked = service.delete_account(token, body.password if body else None)
    resp = JSONResponse(content=AccountDeletedResponse(sessions_revoked=revoked).model_dump(by_alias=True))
    clear_session_cookie(resp)
    return resp
