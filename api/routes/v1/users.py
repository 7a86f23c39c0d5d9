"""
api/routes/v1/users.py -- Self-service endpoints for the signed-in account.

Routes:
  GET   /api/v1/user/profile   -- account identity fields plus the profile row
  PATCH /api/v1/user/profile   -- three-way patch (absent keeps, null/"" clears)
  POST  /api/v1/user/password  -- change password (current password required)

All routes require auth (get_current_account). A successful profile patch
re-issues the session token with the recomputed display name, so clients
holding the cookie see the new name without signing in again.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    AccountResponse,
    MessageResponse,
    PasswordChangeRequest,
    ProfileData,
    ProfilePatchRequest,
    ProfileResponse,
)
from auth.dependencies import get_current_account, get_token, set_session_cookie
from auth.machine import AccountStateMachine
from auth.models import Account
from auth.profiles import ProfileService
from auth.sessions import SessionIssuer

router = APIRouter()


@router.get("/user/profile", response_model=ProfileResponse)
def get_profile(request: Request, current: Account = Depends(get_current_account)) -> ProfileResponse:
    profiles: ProfileService = request.app.state.profiles
    account, profile = profiles.get(current.id)
    return ProfileResponse(user=AccountResponse.from_account(account), profile=ProfileData.from_profile(profile))


@router.patch("/user/profile", response_model=ProfileResponse)
def update_profile(
    request: Request,
    response: Response,
    body: ProfilePatchRequest,
    current: Account = Depends(get_current_account),
) -> ProfileResponse:
    """Apply a profile patch and refresh the session token's display claims."""
    profiles: ProfileService = request.app.state.profiles
    account, profile = profiles.update(current.id, body.to_patch())

    if account.name != current.name:
        sessions: SessionIssuer = request.app.state.sessions
        settings = request.app.state.settings
        token = sessions.refresh(get_token(request), {"name": account.name, "email": account.email})
        set_session_cookie(response, token, settings.session_max_age_seconds, settings.secure_cookies)

    return ProfileResponse(user=AccountResponse.from_account(account), profile=ProfileData.from_profile(profile))


@router.post("/user/password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChangeRequest,
    current: Account = Depends(get_current_account),
) -> MessageResponse:
    machine: AccountStateMachine = request.app.state.machine
    machine.change_credential(current.id, body.current_password, body.new_password)
    return MessageResponse(message="Password updated.")
