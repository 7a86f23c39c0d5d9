"""
auth/credentials.py -- Password hashing and verification (bcrypt).

Security design decisions:
  bcrypt directly, no passlib wrapper. passlib's wrap-bug detection creates a
  password longer than 72 bytes, which bcrypt 4.x rejects with an explicit
  error. Direct usage has no compatibility shim and is actively maintained.

  Work factor: fixed per process (BCRYPT_ROUNDS, default 10). needs_rehash()
  compares a stored hash's cost with the configured one so the state machine
  can upgrade hashes on the next successful login.

  Mismatch is a boolean False, never an exception. Only an empty secret is
  an error (InvalidInput). bcrypt.checkpw compares in constant time.

  The timing dummy hash lets authenticate() run one bcrypt check even when
  the email is unknown, so response time does not reveal whether an account
  exists [C1].
"""

from __future__ import annotations

import logging

import bcrypt

from core.errors import InvalidInput

logger = logging.getLogger("accountgate.auth.credentials")

DEFAULT_ROUNDS = 10

# bcrypt reads at most 72 bytes of input; bcrypt 5 refuses anything longer.
MAX_SECRET_BYTES = 72


class CredentialVerifier:
    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        if not 4 <= rounds <= 31:
            raise ValueError("bcrypt rounds must be between 4 and 31")
        self.rounds = rounds
        # Computed once so the first unknown-email login is not measurably
        # slower than later ones.
        self._dummy_hash = self.hash("accountgate_timing_dummy")

    def hash(self, secret: str) -> str:
        """Return a bcrypt hash of the given plaintext secret.

        Secrets longer than MAX_SECRET_BYTES once UTF-8 encoded raise
        InvalidInput instead of being truncated.
        """
        if not secret:
            raise InvalidInput("Password is required.")
        if secret_too_long(secret):
            raise InvalidInput(f"Password must be at most {MAX_SECRET_BYTES} bytes.")
        return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, secret: str, hashed: str) -> bool:
        """Return True if the plaintext secret matches the bcrypt hash."""
        if not secret:
            raise InvalidInput("Password is required.")
        if secret_too_long(secret):
            # hash() never accepts such a secret, so nothing stored can match it.
            return False
        try:
            return bcrypt.checkpw(secret.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            # Malformed stored hash (e.g. a legacy scheme); treat as a mismatch.
            logger.warning("Stored credential hash could not be parsed")
            return False

    def burn(self, secret: str) -> None:
        """Spend one bcrypt check against the dummy hash [C1]."""
        if secret:
            self.verify(secret, self._dummy_hash)

    def needs_rehash(self, hashed: str) -> bool:
        """Return True when the stored hash was made with a different cost factor."""
        return hash_cost(hashed) != self.rounds


def hash_cost(hashed: str) -> int | None:
    """Parse the cost factor out of a modular-crypt bcrypt hash ("$2b$10$...")."""
    parts = hashed.split("$")
    if len(parts) < 4 or not parts[2].isdigit():
        return None
    return int(parts[2])


def secret_too_long(secret: str) -> bool:
    return len(secret.encode("utf-8")) > MAX_SECRET_BYTES
