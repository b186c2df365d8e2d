"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Gatehouse happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a SECRET_KEY with a
      warning; production mode refuses to start without one.

Security notes:
  SECRET_KEY keys the HMAC used for client fingerprints in rate limiting.
  Shorter than 32 chars is rejected outright.

  reveal_existing_accounts controls whether registration tells the caller an
  email is already taken. Left unset it follows DEBUG: explicit in development,
  neutral in production to avoid account enumeration.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("gatehouse.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'gatehouse.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

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

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # Upper bound on how long any single store call may wait for a lock or a
    # pooled connection before failing with a transient error.
    store_timeout_seconds: float = Field(default=5.0, gt=0)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_ttl_seconds: int = Field(default=24 * 3600, gt=0)
    remember_me_ttl_seconds: int = Field(default=30 * 24 * 3600, gt=0)
    session_purge_interval_seconds: int = Field(default=3600, gt=0)
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Account lockout (per account)
    # ------------------------------------------------------------------

    max_login_attempts: int = Field(default=5, ge=1)
    lockout_seconds: int = Field(default=30 * 60, gt=0)

    # ------------------------------------------------------------------
    # Rate limiting (per client identity)
    # ------------------------------------------------------------------

    login_rate_limit: int = Field(default=10, ge=1)
    login_rate_window_seconds: int = Field(default=15 * 60, gt=0)
    register_rate_limit: int = Field(default=5, ge=1)
    register_rate_window_seconds: int = Field(default=60 * 60, gt=0)
    # Any `limits` storage URI: memory://, redis://host:6379, memcached://...
    rate_limit_storage_uri: str = "memory://"
    # Combine the client IP with a keyed hash of the User-Agent.
    rate_limit_fingerprint: bool = False
    # Only honour X-Forwarded-For / X-Real-IP behind a trusted reverse proxy.
    trust_proxy_headers: bool = False

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    reveal_existing_accounts: Optional[bool] = None

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Rate-limit fingerprints change on restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Fingerprints will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @property
    def reveals_existing_accounts(self) -> bool:
        """Resolved enumeration gate: explicit setting wins, otherwise DEBUG."""
        if self.reveal_existing_accounts is None:
            return self.debug
        return self.reveal_existing_accounts


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
