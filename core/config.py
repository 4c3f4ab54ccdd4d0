"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Batchmates happen here. No module should
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
      warning, production mode refuses to start without one.

  ResetLinkConfig: the password-reset URL settings are resolved into a small
      frozen dataclass once at startup and passed explicitly to the reset
      service. Nothing downstream reads the global settings to decide between
      a deep link and a web URL.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Token hashing
       (HMAC-SHA256) relies on key entropy -- a short key weakens it.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. Every stored token and session hash is keyed on
       it, so a random key per restart would log every client out.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("batchmates.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'batchmates_auth.db'}"


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
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    trusted_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Web channel (session cookie + CSRF)
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_cookie_name: str = "batchmates_session"
    session_lifetime_minutes: int = 120

    # ------------------------------------------------------------------
    # Credentials and mobile tokens
    # ------------------------------------------------------------------

    password_min_length: int = 8
    bcrypt_rounds: int = 12
    max_devices_per_user: int = 20
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    password_reset_expire_minutes: int = 60
    frontend_url: str = "http://localhost:3000"
    mobile_deep_link_enabled: bool = False
    mobile_app_scheme: str = "batchmates"

    # Outbound mail (optional -- empty host means reset links are only logged)
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = "no-reply@batchmates.local"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, v: int) -> int:
        if v < 4 or v > 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31")
        return v

    @field_validator("password_min_length")
    @classmethod
    def validate_password_min_length(cls, v: int) -> int:
        if v < 6 or v > 72:
            raise ValueError("PASSWORD_MIN_LENGTH must be between 6 and 72")
        return v

    @field_validator("session_lifetime_minutes", "password_reset_expire_minutes")
    @classmethod
    def validate_minutes(cls, v: int) -> int:
        if v < 1 or v > 60 * 24 * 30:
            raise ValueError("Lifetimes must be between 1 minute and 30 days")
        return v

    @field_validator("max_devices_per_user")
    @classmethod
    def validate_max_devices(cls, v: int) -> int:
        if v < 1:
            raise ValueError("MAX_DEVICES_PER_USER must be at least 1")
        return v

    @field_validator("frontend_url")
    @classmethod
    def validate_frontend_url(cls, v: str) -> str:
        s = v.strip().rstrip("/")
        if not (s.lower().startswith("http://") or s.lower().startswith("https://")):
            raise ValueError("FRONTEND_URL must use http or https (e.g. https://app.example.com)")
        return s

    @field_validator("mobile_app_scheme")
    @classmethod
    def validate_mobile_app_scheme(cls, v: str) -> str:
        s = v.strip().rstrip(":/")
        if not s or not s.replace("-", "").replace(".", "").replace("+", "").isalnum():
            raise ValueError("MOBILE_APP_SCHEME must be a bare URI scheme (e.g. batchmates)")
        return s

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens and sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Tokens and sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@dataclass(frozen=True)
class ResetLinkConfig:
    """Everything needed to build a password-reset link, resolved once at startup."""

    frontend_url: str
    mobile_app_scheme: str
    mobile_deep_link_enabled: bool
    expire_minutes: int

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResetLinkConfig":
        return cls(
            frontend_url=settings.frontend_url,
            mobile_app_scheme=settings.mobile_app_scheme,
            mobile_deep_link_enabled=settings.mobile_deep_link_enabled,
            expire_minutes=settings.password_reset_expire_minutes,
        )


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
