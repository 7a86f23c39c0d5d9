"""
auth/dependencies.py -- FastAPI Depends() helpers for session authentication.

Two token transports are checked in priority order:
  1. "access_token" cookie -- set by the login routes (httpOnly).
  2. Authorization: Bearer <token> header -- API clients.

Both converge on an Account after the token validates AND the account is
re-read from the store. Re-reading is what makes suspension and deletion
take effect immediately even though tokens are never revoked.

try_get_current_account() is the soft variant (returns None on failure).
get_current_account() raises SessionInvalid / SessionExpired (401) or
AccountSuspended (403). require_role() adds the capability check admin
routes need (403).

Layer rule: this module may import from fastapi because it is part of the
FastAPI dependency injection system. It does not import from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.models import Account, AccountStatus, Role, SessionIdentity
from auth.sessions import SessionIssuer
from auth.store import AccountStore
from core.errors import AccountError, AccountSuspended, PermissionDenied, SessionInvalid

COOKIE_NAME = "access_token"


def get_token(request: Request) -> str | None:
    """Return the raw session token from the cookie or Bearer header, if any."""
    token = request.cookies.get(COOKIE_NAME)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


def get_session(request: Request) -> SessionIdentity:
    """Validate the request's token. Raises SessionInvalid / SessionExpired."""
    sessions: SessionIssuer = request.app.state.sessions
    token = get_token(request)
    if token is None:
        raise SessionInvalid()
    return sessions.validate(token)


def get_current_account(request: Request) -> Account:
    """Require authentication and return the live account record.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(account: Account = Depends(get_current_account)): ...
    """
    store: AccountStore = request.app.state.store
    identity = get_session(request)
    account = store.get_by_id(identity.account_id)
    if account is None:
        raise SessionInvalid()
    if account.status == AccountStatus.SUSPENDED:
        raise AccountSuspended()
    return account


def try_get_current_account(request: Request) -> Account | None:
    """Like get_current_account() but returns None instead of raising."""
    try:
        return get_current_account(request)
    except AccountError:
        return None


def require_role(*roles: Role) -> Callable[[Request], Account]:
    """Build a dependency that admits only accounts holding one of roles.

    The role is read from the store, not from the token, so a demoted admin
    loses access on the next request.
    """
    allowed = frozenset(roles)

    def _dependency(request: Request) -> Account:
        account = get_current_account(request)
        if account.role not in allowed:
            raise PermissionDenied()
        return account

    return _dependency


require_admin = require_role(Role.ADMIN)
require_staff = require_role(Role.ADMIN, Role.MODERATOR)


def set_session_cookie(response, token: str, max_age: int, secure: bool) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    max_age matches the token horizon so both expire together.
    """
    response.set_cookie(
        COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
    )
