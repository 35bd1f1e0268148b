"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Quillpress happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. app_url -> APP_URL). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Enforces the SECRET_KEY policy and the identity backend
      requirements.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. The local identity
  provider signs session JWTs with it.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a hard
  startup failure.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or cache/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("quillpress.config")

_DATA_DIR = Path(__file__).resolve().parent.parent


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
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""

    # Public base URL of the web application. The password-reset callback
    # address is built from it: {app_url}/reset-password
    app_url: str = "http://localhost:3000"

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    profile_database_url: str = f"sqlite:///{_DATA_DIR / 'quillpress_profiles.db'}"
    identity_database_url: str = f"sqlite:///{_DATA_DIR / 'quillpress_identity.db'}"

    # ------------------------------------------------------------------
    # Identity provider
    # ------------------------------------------------------------------

    identity_backend: Literal["local", "gotrue"] = "local"
    gotrue_url: str = ""
    gotrue_api_key: str = ""

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    token_expire_seconds: int = 3600
    reset_token_expire_seconds: int = 3600
    landing_path: str = "/admin"
    login_path: str = "/login"

    # ------------------------------------------------------------------
    # Rate limiting / caching
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    view_cache_ttl: int = 300

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    # JSON list in the environment, e.g. ALLOWED_HOSTS='["cms.example.com"]'
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions issued by the local provider will not survive restart.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_identity_backend(self) -> "Settings":
        """The gotrue backend cannot run without a service URL and API key."""
        if self.identity_backend == "gotrue" and not (self.gotrue_url and self.gotrue_api_key):
            raise ValueError("IDENTITY_BACKEND=gotrue requires GOTRUE_URL and GOTRUE_API_KEY.")
        self.app_url = self.app_url.rstrip("/")
        self.gotrue_url = self.gotrue_url.rstrip("/")
        return self

    @property
    def reset_redirect_url(self) -> str:
        return f"{self.app_url}/reset-password"


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
