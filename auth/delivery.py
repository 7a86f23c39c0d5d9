"""
auth/delivery.py -- Out-of-band delivery of one-time codes.

Email/SMS sending lives outside this service. The state machine hands every
issued code to a CodeDelivery; LoggingCodeDelivery is the stand-in used when
no transport is wired up. It logs the code itself only when reveal_codes is
set (debug mode), otherwise just the fact that a code went out.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Protocol

logger = logging.getLogger("accountgate.auth.delivery")


class CodePurpose(str, Enum):
    VERIFICATION = "verification"
    PASSWORD_RESET = "password_reset"


class CodeDelivery(Protocol):
    def send(self, email: str, purpose: CodePurpose, code: str) -> None: ...


class LoggingCodeDelivery:
    def __init__(self, reveal_codes: bool = False) -> None:
        self.reveal_codes = reveal_codes

    def send(self, email: str, purpose: CodePurpose, code: str) -> None:
        if self.reveal_codes:
            logger.info("%s code for %s: %s", purpose.value, email, code)
        else:
            logger.info("%s code issued for %s", purpose.value, email)
