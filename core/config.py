"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the Eat Fast auth service happen here. No
module should call os.getenv() or os.environ.get() directly -- import
get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY).

  @model_validator(mode="after"): Cross-field validation once every field is
      resolved. Used for the DEBUG-conditional signing-secret policy.

Security notes:
  [M6] Signing secrets shorter than 32 chars are rejected outright.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY or
       REFRESH_SECRET_KEY is a hard startup failure.

  [M8] Access and refresh tokens must be signed with different secrets, so a
       leaked access secret cannot mint refresh tokens.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or cache/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("eatfast.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
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
    # Empty string is the sentinel for "not configured". The validator
    # below either generates a dev secret or raises.
    secret_key: str = ""
    refresh_secret_key: str = ""

    database_url: str = "sqlite:///eatfast_auth.db"
    # "memory://" selects the in-process backend (single instance only).
    secret_store_url: str = "redis://localhost:6379/0"

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # ------------------------------------------------------------------
    # Tokens and cookies
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 60 * 60
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Login policy
    # ------------------------------------------------------------------

    max_login_attempts: int = 5
    lockout_seconds: int = 15 * 60
    one_time_code_ttl_seconds: int = 600
    max_code_attempts: int = 5
    oauth_state_ttl_seconds: int = 600
    password_reset_ttl_seconds: int = 3600

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    # Point at redis:// to share counters across instances.
    rate_limit_storage_uri: str = "memory://"
    strict_rate_limit: str = "5 per 15 minutes"
    moderate_rate_limit: str = "50 per 15 minutes"

    # ------------------------------------------------------------------
    # Google OAuth (empty string means the provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = "http://localhost:3000/auth/google/callback"

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    from_email: str = "no-reply@eatfast.local"
    client_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # Bootstrap admin (optional; seeded at startup when both are set)
    # ------------------------------------------------------------------

    admin_email: str = ""
    admin_password: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy [M6] [M7] [M8].

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.
        """
        for field in ("secret_key", "refresh_secret_key"):
            value = getattr(self, field)
            if not value:
                if self.debug:
                    setattr(self, field, secrets.token_hex(32))
                    logger.warning(
                        "WARNING: Using auto-generated %s. Tokens will not persist across restarts.",
                        field.upper(),
                    )
                else:
                    raise ValueError(
                        f"{field.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
            if len(getattr(self, field)) < 32:
                raise ValueError(f"{field.upper()} must be at least 32 characters.")
        if self.secret_key == self.refresh_secret_key:
            raise ValueError("SECRET_KEY and REFRESH_SECRET_KEY must differ.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
