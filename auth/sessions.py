"""
auth/sessions.py -- Signed session tokens (JWT via python-jose, HS256).

Security design decisions:
  Tokens carry sub (account id), email, role, name, iat and exp. They are
  signed with the process-wide SECRET_KEY, which SessionIssuer receives
  through its constructor rather than reading config at import time.

  Expiry is checked against the injected clock rather than jose's internal
  time.time() call, so the 30-day horizon is testable. Signature checking
  is still jose's job.

  refresh() is the explicit replacement for "update the token when the
  profile changes": only display attributes (name, email) may change. Role
  changes take effect when the user next signs in.

  There is no revocation list. Expiry is the only way a token stops being
  valid; the HTTP dependency re-reads the account on every request so a
  suspended or deleted account is still rejected immediately.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from auth.models import Role, SessionIdentity
from core.clock import Clock, utc_now
from core.errors import InvalidInput, SessionExpired, SessionInvalid

logger = logging.getLogger("accountgate.auth.sessions")

ALGORITHM = "HS256"
DEFAULT_MAX_AGE_SECONDS = 30 * 24 * 60 * 60

# Claims a refresh may overwrite.
REFRESHABLE_CLAIMS = frozenset({"name", "email"})
_REQUIRED_CLAIMS = ("sub", "email", "role", "exp")


class SessionIssuer:
    def __init__(
        self,
        secret_key: str,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        if not secret_key:
            raise ValueError("secret_key is required")
        self._secret_key = secret_key
        self.max_age = timedelta(seconds=max_age_seconds)
        self._clock = clock

    def issue(self, identity: SessionIdentity) -> str:
        """Encode a signed token for the identity, valid for max_age from now."""
        if not identity.account_id:
            raise InvalidInput("Cannot issue a session for an unsaved account.")
        now = self._clock()
        payload: dict[str, Any] = {
            "sub": identity.account_id,
            "email": identity.email,
            "role": Role(identity.role).value,
            "iat": now,
            "exp": now + self.max_age,
        }
        if identity.name:
            payload["name"] = identity.name
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def validate(self, token: str) -> SessionIdentity:
        """Decode and verify a token.

        Raises SessionExpired when the horizon has passed and SessionInvalid
        for anything else (bad signature, malformed token, missing claims).
        """
        payload = self._decode(token)
        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        if expires_at <= self._clock():
            raise SessionExpired()
        issued_at = datetime.fromtimestamp(payload["iat"], tz=timezone.utc) if "iat" in payload else None
        return SessionIdentity(
            account_id=payload["sub"],
            email=payload["email"],
            role=Role(payload["role"]),
            name=payload.get("name"),
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def refresh(self, token: str, updated_claims: dict[str, Any] | None = None) -> str:
        """Validate token, merge display-claim updates, and re-issue with a fresh horizon."""
        updated_claims = updated_claims or {}
        unknown = set(updated_claims) - REFRESHABLE_CLAIMS
        if unknown:
            raise InvalidInput(f"Claims cannot be refreshed: {', '.join(sorted(unknown))}")
        current = self.validate(token)
        return self.issue(
            SessionIdentity(
                account_id=current.account_id,
                email=updated_claims.get("email", current.email),
                role=current.role,
                name=updated_claims.get("name", current.name),
            )
        )

    def _decode(self, token: str) -> dict[str, Any]:
        if not token:
            raise SessionInvalid()
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            logger.debug("Session token rejected: %s", exc)
            raise SessionInvalid() from exc
        if any(claim not in payload for claim in _REQUIRED_CLAIMS):
            raise SessionInvalid()
        try:
            Role(payload["role"])
        except ValueError as exc:
            raise SessionInvalid() from exc
        return payload
