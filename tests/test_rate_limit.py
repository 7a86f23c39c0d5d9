"""
tests/test_rate_limit.py -- [H2] Login brute-force limit through the real middleware.

The api_client fixture disables the shared limiter; this module turns it
back on for one test with a tiny limit and resets its counters afterwards
so no other test inherits them.
"""

from __future__ import annotations

import pytest

from api.limiter import limiter
from core.config import get_settings


@pytest.fixture
def limited(api_client, monkeypatch):
    monkeypatch.setattr(get_settings(), "login_rate_limit", "2/minute")
    limiter.reset()
    limiter.enabled = True
    yield api_client
    limiter.enabled = False
    limiter.reset()


def test_login_limited_with_envelope(limited) -> None:
    client, _, _ = limited
    body = {"email": "nobody@example.com", "password": "whatever-pw"}
    assert client.post("/api/v1/auth/login", json=body).status_code == 401
    assert client.post("/api/v1/auth/login", json=body).status_code == 401

    resp = client.post("/api/v1/auth/login", json=body)
    assert resp.status_code == 429
    assert resp.json()["error"]["code"] == "rate_limited"
    assert "retry-after" in resp.headers
