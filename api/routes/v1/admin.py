"""
api/routes/v1/admin.py -- Account administration endpoints.

Routes:
  GET    /api/v1/admin/users        -- list accounts, newest first (ADMIN or MODERATOR)
  GET    /api/v1/admin/users/{id}   -- account, profile and recent activity (ADMIN or MODERATOR)
  PATCH  /api/v1/admin/users/{id}   -- change role and/or status (ADMIN)
  DELETE /api/v1/admin/users/{id}   -- delete the account (ADMIN)
  GET    /api/v1/admin/stats        -- account counts (ADMIN or MODERATOR)

The role gate lives here (require_admin / require_staff). The guards on
the change itself -- [M4] no self delete/suspend/demote, never remove the
last active admin -- live in AccountStateMachine so every caller gets them.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import AccountResponse, AdminUserDetail, AdminUserPatch, AuditEntryResponse, ProfileData, StatsResponse
from auth.dependencies import require_admin, require_staff
from auth.machine import AccountStateMachine
from auth.models import Account
from auth.profiles import ProfileService
from auth.store import AccountStore

RECENT_ACTIVITY_LIMIT = 10

router = APIRouter()


@router.get("/admin/users", response_model=list[AccountResponse])
def list_users(request: Request, current: Account = Depends(require_staff)) -> list[AccountResponse]:
    store: AccountStore = request.app.state.store
    return [AccountResponse.from_account(a) for a in store.list_accounts()]


@router.get("/admin/users/{account_id}", response_model=AdminUserDetail)
def get_user(request: Request, account_id: str, current: Account = Depends(require_staff)) -> AdminUserDetail:
    """Return one account with its profile and the 10 most recent audit entries (newest first)."""
    profiles: ProfileService = request.app.state.profiles
    store: AccountStore = request.app.state.store
    account, profile = profiles.get(account_id)
    events = store.list_audit(account_id=account.id, limit=RECENT_ACTIVITY_LIMIT)
    return AdminUserDetail(
        user=AccountResponse.from_account(account),
        profile=ProfileData.from_profile(profile),
        recent_activity=[AuditEntryResponse.from_event(e) for e in reversed(events)],
    )


@router.patch("/admin/users/{account_id}", response_model=AccountResponse)
def update_user(
    request: Request,
    account_id: str,
    body: AdminUserPatch,
    current: Account = Depends(require_admin),
) -> AccountResponse:
    machine: AccountStateMachine = request.app.state.machine
    updated = machine.update_account(current.id, account_id, role=body.role, status=body.status)
    return AccountResponse.from_account(updated)


@router.delete("/admin/users/{account_id}", status_code=204)
def delete_user(request: Request, account_id: str, current: Account = Depends(require_admin)) -> Response:
    machine: AccountStateMachine = request.app.state.machine
    machine.delete_account(current.id, account_id)
    return Response(status_code=204)


@router.get("/admin/stats", response_model=StatsResponse)
def stats(request: Request, current: Account = Depends(require_staff)) -> StatsResponse:
    store: AccountStore = request.app.state.store
    return StatsResponse(**store.stats(request.app.state.clock()))
