"""
core/config.py -- accountgate settings (pydantic-settings).

Every environment read goes through Settings; get_settings() caches one
instance per process. Field names map to upper-case env vars, so
bcrypt_rounds is BCRYPT_ROUNDS and code_ttl_seconds is CODE_TTL_SECONDS.

Only the entry points (api/, main.py) call get_settings(). They hand plain
values such as the secret key, rounds and TTLs to the auth/ constructors, and
the rate-limit callables in api/limiter.py read it per request.

Startup rules enforced below:
  - SECRET_KEY signs every session token. It must be at least 32
    characters; without DEBUG a missing key stops startup, with DEBUG a
    throwaway key is generated and sessions end on restart.
  - EXPOSE_CODES defaults to DEBUG. Turning it on without DEBUG is allowed
    but logged, since responses then carry verification codes.

core/ imports nothing from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("accountgate.config")


class Settings(BaseSettings):
    """Service settings. Every field has a default except a production SECRET_KEY."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///accountgate.db"

    # ------------------------------------------------------------------
    # Sessions and credentials
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    # 30 days, sliding: every refresh re-issues with a new horizon.
    session_max_age_seconds: int = 30 * 24 * 60 * 60
    bcrypt_rounds: int = 10
    login_requires_verification: bool = False

    # ------------------------------------------------------------------
    # One-time codes
    # ------------------------------------------------------------------

    code_ttl_seconds: int = 15 * 60
    # None means "follow debug". Never enable in production: the response
    # body would prove control of the mailbox without reading it.
    expose_codes: Optional[bool] = None

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    github_client_id: str = ""
    github_client_secret: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""

    # Generic OIDC (Okta, Azure AD, Keycloak, Authentik, etc.)
    oidc_client_id: str = ""
    oidc_client_secret: str = ""
    oidc_discovery_url: str = ""
    oidc_display_name: str = "SSO"

    # ------------------------------------------------------------------
    # Rate limiting and HTTP surface
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    code_rate_limit: str = "5/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def check_secret_key(self) -> "Settings":
        if not self.secret_key:
            if not self.debug:
                raise ValueError("SECRET_KEY must be set unless DEBUG=true.")
            self.secret_key = secrets.token_hex(32)
            logger.warning("No SECRET_KEY configured; generated a throwaway key for this process.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def resolve_expose_codes(self) -> "Settings":
        if self.expose_codes is None:
            self.expose_codes = self.debug
        elif self.expose_codes and not self.debug:
            logger.warning("EXPOSE_CODES is on outside debug mode; responses will carry one-time codes.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Cached Settings; tests call get_settings.cache_clear() after changing the environment."""
    return Settings()
