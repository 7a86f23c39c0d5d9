"""
api/limiter.py -- Shared slowapi rate limiter and the limit strings it applies.

Imported by api/main.py (mounted as middleware and attached to app.state)
and by api/routes/v1/auth.py (per-route limits via @limiter.limit()).

One shared instance means every route counts against the same in-memory
store; a per-module Limiter would never trigger.

Limits are callables so the configured value is read at request time and
a test can override Settings without re-importing the routes.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    """[H2] Brute-force limit for POST /auth/login."""
    return get_settings().login_rate_limit


def code_limit() -> str:
    """Limit for endpoints that send or check one-time codes."""
    return get_settings().code_rate_limit
