"""
tests/conftest.py -- Shared test fixtures for accountgate unit and integration tests.

This module provides:
  - FakeClock: a settable clock injected wherever the core compares against "now"
  - RecordingDelivery: captures every issued code instead of logging it
  - store / machine fixtures: an isolated in-memory database per test
  - api_client: TestClient over the real app with a patched lifespan and
    an ADMIN account plus its session token

Design: in-memory SQLite ("sqlite://") with a StaticPool (see AccountStore)
shares one connection across the TestClient worker threads, so route
handlers and the test body see the same database.

bcrypt runs at cost 4 in tests; production cost is irrelevant to behaviour.

The DEBUG env var must be set before any api/ or core/ import so
get_settings() auto-generates SECRET_KEY in dev mode rather than raising.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_components
from auth.audit import StoreAuditSink
from auth.codes import CodeGenerator
from auth.credentials import CredentialVerifier
from auth.delivery import CodePurpose
from auth.machine import AccountStateMachine
from auth.models import SessionIdentity
from auth.store import AccountStore
from core.config import get_settings

TEST_ROUNDS = 4
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pass-123"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when a test tells it to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingDelivery:
    """CodeDelivery that keeps every (email, purpose, code) it was handed."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, CodePurpose, str]] = []

    def send(self, email: str, purpose: CodePurpose, code: str) -> None:
        self.sent.append((email, purpose, code))

    def last_code(self, email: str, purpose: CodePurpose) -> str | None:
        for sent_email, sent_purpose, code in reversed(self.sent):
            if sent_email == email and sent_purpose == purpose:
                return code
        return None


class FailingAuditSink:
    def append(self, event) -> None:
        raise RuntimeError("audit store unavailable")


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore("sqlite://")
    yield s
    s.close()


@pytest.fixture(scope="session")
def credentials() -> CredentialVerifier:
    return CredentialVerifier(rounds=TEST_ROUNDS)


@pytest.fixture
def machine(store, credentials, clock, delivery) -> AccountStateMachine:
    return AccountStateMachine(
        store,
        credentials,
        CodeGenerator(ttl_seconds=900, clock=clock),
        StoreAuditSink(store),
        delivery=delivery,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AccountStore, clock: FakeClock, delivery: RecordingDelivery):
    """Return an async context manager that replaces the real lifespan.

    Wires the in-memory store, fake clock and recording delivery into the
    same component graph the server builds, with cheap bcrypt and code
    echoing switched on.
    """
    settings = get_settings().model_copy(update={"bcrypt_rounds": TEST_ROUNDS, "expose_codes": True})

    @asynccontextmanager
    async def test_lifespan(app):
        build_components(app, settings, store, clock=clock, delivery=delivery)
        yield

    return test_lifespan


@pytest.fixture
def api_clock() -> FakeClock:
    # Start at real time: audit and created_at columns are stamped by the store.
    return FakeClock(datetime.now(timezone.utc))


@pytest.fixture
def api_delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def api_client(api_clock, api_delivery) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers and middleware but an isolated database.
    Rate limiting is switched off; it is tested separately.
    """
    store = AccountStore("sqlite://")
    app.router.lifespan_context = _patch_lifespan(store, api_clock, api_delivery)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        admin = client.app.state.machine.bootstrap_admin(ADMIN_EMAIL, ADMIN_PASSWORD)
        token = client.app.state.sessions.issue(SessionIdentity.from_account(admin))
        yield client, token, admin.id

    limiter.enabled = True
    store.close()


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
