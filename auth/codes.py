"""
auth/codes.py -- One-time numeric codes for email verification and password reset.

Codes are six digits drawn uniformly from [100000, 999999], so they never
start with zero and never need padding. secrets.randbelow() is the CSPRNG;
random.randint() would make codes predictable from earlier ones.

Codes are stored as issued and compared by exact string equality. Their
strength comes from the short window (15 minutes by default), the per-route
rate limits in api/, and the fact that issuing a new code overwrites the old
one.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from core.clock import Clock, utc_now

CODE_MIN = 100000
CODE_MAX = 999999
DEFAULT_CODE_TTL_SECONDS = 15 * 60


@dataclass(frozen=True)
class OneTimeCode:
    code: str
    expires_at: datetime


class CodeGenerator:
    """Produce (code, expires_at) pairs. Each call is independent of the last."""

    def __init__(self, ttl_seconds: int = DEFAULT_CODE_TTL_SECONDS, clock: Clock = utc_now) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def generate(self) -> OneTimeCode:
        code = CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1)
        return OneTimeCode(code=str(code), expires_at=self._clock() + self.ttl)
