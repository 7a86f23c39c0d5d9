"""
core/clock.py -- Injectable wall clock.

Components that compare against "now" (code expiry, session expiry, stats
windows) take a Clock in their constructor instead of calling datetime.now()
inline, so tests can move time forward deterministically.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)
