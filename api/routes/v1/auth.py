"""
api/routes/v1/auth.py -- Registration, verification, password reset and sign-in endpoints.

Routes:
  POST /api/v1/auth/register                   -- create account; sends verification code
  POST /api/v1/auth/verify                     -- confirm email with the code
  POST /api/v1/auth/resend-code                -- issue a fresh verification code
  POST /api/v1/auth/forgot-password            -- issue a reset code (non-enumerating)
  POST /api/v1/auth/reset-password             -- set a new password with the code
  POST /api/v1/auth/login                      -- password login; sets session cookie
  POST /api/v1/auth/logout                     -- clears cookie; 200
  GET  /api/v1/auth/me                         -- current account (requires auth)
  GET  /api/v1/auth/providers                  -- enabled OAuth providers (public)
  GET  /api/v1/auth/oauth/{provider}/login     -- redirect to the provider
  GET  /api/v1/auth/oauth/{provider}/callback  -- provider callback; sets session cookie

Security:
  [H2] POST /login is rate-limited per IP; code endpoints share a stricter limit.
  [C1] AccountStateMachine.authenticate() provides timing equalization -- never inline it.
  [M5] Cache-Control: no-store on every response that carries a session token.
  [C2] The OAuth callback only redirects to same-site relative paths.
  forgot-password answers known and unknown emails with the same body and
  never echoes the code, even when EXPOSE_CODES is on.

Handlers that hash passwords are plain `def` so Starlette runs them in its
threadpool instead of blocking the event loop. AccountError raised by the
state machine is turned into the error envelope by api/main.py.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import code_limit, limiter, login_limit
from api.models import (
    AccountResponse,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    OAuthProviderInfo,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    VerifyRequest,
    VerifyResponse,
)
from auth.dependencies import COOKIE_NAME, get_current_account, set_session_cookie, try_get_current_account
from auth.machine import AccountStateMachine
from auth.models import Account, SessionIdentity
from auth.oauth import get_enabled_providers, get_oauth_user_info
from auth.sessions import SessionIssuer

logger = logging.getLogger("accountgate.api.auth")

RESET_REQUESTED_MESSAGE = "If an account exists, a reset code has been sent."

# Auth policy:
# - register / verify / resend-code / forgot-password / reset-password: public
# - POST /auth/login:     public -- login endpoint must be unauthenticated
# - POST /auth/logout:    public -- clearing a cookie needs no prior auth
# - GET  /auth/providers: public -- clients render OAuth buttons from it
# - GET  /auth/oauth/*:   public -- the provider vouches for the identity
# - GET  /auth/me:        requires auth (get_current_account)
router = APIRouter()


# ---------------------------------------------------------------------------
# Registration and verification
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
@limiter.limit(code_limit)
def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Create an INACTIVE account and send the first verification code."""
    machine: AccountStateMachine = request.app.state.machine
    account = machine.register(
        body.email,
        body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
        company=body.company,
    )
    return RegisterResponse(
        message="Account created. Check your email for the verification code.",
        user=AccountResponse.from_account(account),
        verification_required=True,
        verification_code=account.verification_code if _expose_codes(request) else None,
    )


@router.post("/auth/verify", response_model=VerifyResponse)
@limiter.limit(code_limit)
def verify(request: Request, body: VerifyRequest) -> VerifyResponse:
    machine: AccountStateMachine = request.app.state.machine
    account = machine.confirm_verification(body.email, body.code)
    return VerifyResponse(message="Email verified. You can now sign in.", verified=account.verified)


@router.post("/auth/resend-code", response_model=MessageResponse)
@limiter.limit(code_limit)
def resend_code(request: Request, body: EmailRequest) -> MessageResponse:
    machine: AccountStateMachine = request.app.state.machine
    code = machine.request_verification(body.email)
    return MessageResponse(
        message="A new verification code has been sent.",
        code=code if _expose_codes(request) else None,
    )


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
@limiter.limit(code_limit)
def forgot_password(request: Request, body: EmailRequest) -> MessageResponse:
    """Issue a reset code. The response is identical whether or not the email exists."""
    machine: AccountStateMachine = request.app.state.machine
    machine.request_password_reset(body.email)
    return MessageResponse(message=RESET_REQUESTED_MESSAGE)


@router.post("/auth/reset-password", response_model=MessageResponse)
@limiter.limit(code_limit)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    machine: AccountStateMachine = request.app.state.machine
    machine.confirm_password_reset(body.email, body.reset_code, body.new_password)
    return MessageResponse(message="Password updated. You can now sign in.")


# ---------------------------------------------------------------------------
# Sign-in
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(login_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; set the session cookie.

    Wrong password and unknown email both surface as InvalidCredentials
    (401, "invalid_credentials") so the response never reveals whether the
    email is registered.
    """
    machine: AccountStateMachine = request.app.state.machine
    account = machine.authenticate(body.email, body.password)
    return _session_response(request, account)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Clear the session cookie. Audits LOGOUT when a valid session was presented."""
    account = try_get_current_account(request)
    if account is not None:
        machine: AccountStateMachine = request.app.state.machine
        machine.sign_out(account.id)
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump(exclude_none=True))
    resp.delete_cookie(COOKIE_NAME)
    return resp


@router.get("/auth/me", response_model=AccountResponse)
def me(current: Account = Depends(get_current_account)) -> AccountResponse:
    """Return the currently authenticated account."""
    return AccountResponse.from_account(current)


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers(request: Request) -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers. Empty when no OAuth env vars are set."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(request.app.state.settings)]


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@router.get("/auth/oauth/{provider}/login")
async def oauth_login(request: Request, provider: str):
    """Redirect the browser to the provider's authorization page.

    The provider name is checked against the enabled list so a spoofed name
    cannot steer the redirect anywhere else.
    """
    _require_provider(request, provider)
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/oauth/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Exchange the authorization code, sign the identity in and set the cookie.

    Flow:
      1. Exchange code for token (authlib checks the state value in the session).
      2. Extract a verified identity -- ValueError if unverified [H1].
      3. AccountStateMachine.authenticate_oauth() links or creates the account.
      4. Issue the session cookie and redirect to ?next or /.
    """
    _require_provider(request, provider)
    client = request.app.state.oauth.create_client(provider)

    try:
        token = await client.authorize_access_token(request)
    except OAuthError as exc:
        logger.warning("OAuth token exchange failed for provider %r", provider)
        raise HTTPException(
            status_code=400,
            detail={"code": "oauth_failed", "message": "OAuth authentication failed."},
        ) from exc

    try:
        identity = await get_oauth_user_info(client, provider, token)
    except ValueError as exc:
        logger.warning("OAuth login rejected: unverified or missing email from %r", provider)
        raise HTTPException(
            status_code=400,
            detail={"code": "oauth_failed", "message": "OAuth authentication failed."},
        ) from exc

    machine: AccountStateMachine = request.app.state.machine
    account = machine.authenticate_oauth(
        identity.email,
        provider,
        identity.subject,
        name=identity.name,
        image=identity.image,
    )

    sessions: SessionIssuer = request.app.state.sessions
    settings = request.app.state.settings
    resp = RedirectResponse(_safe_next(request.query_params.get("next")), status_code=302)
    set_session_cookie(
        resp,
        sessions.issue(SessionIdentity.from_account(account)),
        settings.session_max_age_seconds,
        settings.secure_cookies,
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _session_response(request: Request, account: Account) -> JSONResponse:
    sessions: SessionIssuer = request.app.state.sessions
    settings = request.app.state.settings
    token = sessions.issue(SessionIdentity.from_account(account))
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=settings.session_max_age_seconds,
            user=AccountResponse.from_account(account),
        ).model_dump(mode="json"),
    )
    set_session_cookie(resp, token, settings.session_max_age_seconds, settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _expose_codes(request: Request) -> bool:
    return bool(request.app.state.settings.expose_codes)


def _require_provider(request: Request, provider: str) -> None:
    enabled = {p["name"] for p in get_enabled_providers(request.app.state.settings)}
    if provider not in enabled:
        raise HTTPException(
            status_code=404,
            detail={"code": "unknown_provider", "message": "OAuth provider is not configured."},
        )


def _safe_next(next_url: str | None) -> str:
    """[C2] Accept only same-site relative paths; anything else becomes "/"."""
    if not next_url or not next_url.startswith("/") or next_url.startswith("//") or "\\" in next_url:
        return "/"
    return next_url
