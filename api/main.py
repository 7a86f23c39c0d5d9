"""
api/main.py -- FastAPI application entry point for accountgate.

Exposes the account lifecycle core (auth/) over HTTP.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost, request logging aside):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. SessionMiddleware     -- holds the OAuth state value between redirect and callback

Lifespan reads Settings once, builds every component and parks it on
app.state; shutdown disposes the database engine. Nothing in auth/ reads
configuration itself.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.sessions import SessionMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.users import router as users_router
from auth.audit import StoreAuditSink
from auth.codes import CodeGenerator
from auth.credentials import CredentialVerifier
from auth.delivery import CodeDelivery, LoggingCodeDelivery
from auth.machine import AccountStateMachine
from auth.oauth import build_oauth
from auth.profiles import ProfileService
from auth.sessions import SessionIssuer
from auth.store import AccountStore
from core.clock import Clock, utc_now
from core.config import Settings, get_settings
from core.errors import AccountError

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("accountgate.api")


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def build_components(
    app: FastAPI,
    settings: Settings,
    store: AccountStore,
    clock: Clock = utc_now,
    delivery: CodeDelivery | None = None,
) -> None:
    """Construct the core components from settings and attach them to app.state.

    Split out of lifespan so tests can wire an in-memory store, a fake clock
    and a recording delivery into the same graph the server uses.
    """
    credentials = CredentialVerifier(rounds=settings.bcrypt_rounds)
    audit = StoreAuditSink(store)
    app.state.settings = settings
    app.state.clock = clock
    app.state.store = store
    app.state.machine = AccountStateMachine(
        store,
        credentials,
        CodeGenerator(ttl_seconds=settings.code_ttl_seconds, clock=clock),
        audit,
        delivery=delivery or LoggingCodeDelivery(reveal_codes=settings.debug),
        clock=clock,
        login_requires_verification=settings.login_requires_verification,
    )
    app.state.sessions = SessionIssuer(settings.secret_key, settings.session_max_age_seconds, clock=clock)
    app.state.profiles = ProfileService(store, audit, clock=clock)
    app.state.oauth = build_oauth(settings)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown, even if a request handler raised.
    """
    logger.info("accountgate API starting up")
    settings = get_settings()
    store = AccountStore(settings.database_url)
    build_components(app, settings, store)
    logger.info(
        "Components initialized (login_requires_verification=%s, expose_codes=%s)",
        settings.login_requires_verification,
        settings.expose_codes,
    )

    yield

    store.close()
    logger.info("accountgate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

_settings = get_settings()

app = FastAPI(
    title="accountgate API",
    description="Account registration, email verification, password reset, sign-in and administration.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the stack built so far, so the LAST call is the
# outermost layer. Registered innermost-first: Session -> SlowAPI -> CORS ->
# TrustedHost, which puts TrustedHost in front of every request.
# ---------------------------------------------------------------------------

# authlib stores the OAuth state value in the Starlette session between the
# authorization redirect and the callback (CSRF protection for the code flow).
app.add_middleware(SessionMiddleware, secret_key=_settings.secret_key, https_only=_settings.secure_cookies)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["User"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AccountError)
async def account_error_handler(request: Request, exc: AccountError) -> JSONResponse:
    """Map a domain error to its status code and envelope.

    4xx only by construction; the message is the error's public message, so
    nothing internal leaks.
    """
    if exc.status_code in (401, 403):
        logger.warning("%s on %s %s", exc.code, request.method, request.url.path)
    response = JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})
    if exc.status_code == 401:
        response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with a dict detail; use it directly as
    the error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable. No rate limit --
# load balancers and monitors must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Return API liveness, version and database reachability."""
    store: AccountStore = request.app.state.store
    try:
        store.ping()
        database = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        database = "unavailable"
    body = HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=VERSION,
        components={"database": database},
    )
    return JSONResponse(status_code=200 if database == "ok" else 503, content=body.model_dump())
