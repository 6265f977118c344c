"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the auth service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
and pass the Settings object (or the values it holds) into constructors.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file. Field names map to env var names
      (e.g. jwt_access_secret -> JWT_ACCESS_SECRET).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Implements the DEBUG-conditional secret policy: dev mode
      generates secrets with a warning, production refuses to start without
      them.

Security notes:
  Signing secrets shorter than 32 chars are rejected outright. HS256 relies on
  key entropy -- a short key weakens every token issued with it.

  The access and refresh secrets must differ. Each token family is verified
  under its own key, so a refresh token can never pass as an access token
  (and vice versa) -- but only while the keys are distinct.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("wanderlanka.config")

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments (with DEBUG=true) without a real .env file.
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
    service_name: str = "auth-service"
    service_version: str = "1.0.0"
    api_prefix: str = "/api/auth"

    # ------------------------------------------------------------------
    # Credential store
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///wanderlanka_auth.db"
    # Upper bound for acquiring a connection / waiting on a locked database.
    store_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the "not configured" sentinel -- see validate_secrets().
    jwt_access_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_access_expire_seconds: int = 15 * 60
    jwt_refresh_expire_seconds: int = 7 * 24 * 3600
    jwt_issuer: str = "wanderlanka-auth-service"
    jwt_audience: str = "wanderlanka-mobile-app"

    # Number of refresh tokens kept per user (oldest evicted first).
    refresh_token_cap: int = 5

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Rate limiting (limits library notation, fixed window)
    # ------------------------------------------------------------------

    auth_rate_limit: str = "5 per 15 minutes"
    general_rate_limit: str = "100 per 15 minutes"
    rate_limit_storage_uri: str = "memory://"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["*"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, v: int) -> int:
        if v < 4 or v > 16:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 16")
        return v

    @field_validator("refresh_token_cap")
    @classmethod
    def validate_refresh_token_cap(cls, v: int) -> int:
        if v < 1:
            raise ValueError("REFRESH_TOKEN_CAP must be at least 1")
        return v

    @field_validator("jwt_access_expire_seconds", "jwt_refresh_expire_seconds", "store_timeout_seconds")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("expiry and timeout values must be greater than 0")
        return v

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the signing-secret policy.

        Dev mode (DEBUG=true): auto-generate any missing secret with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if either
            secret is missing.

        Both modes: reject secrets shorter than 32 characters and reject a
            refresh secret equal to the access secret.
        """
        for name in ("jwt_access_secret", "jwt_refresh_secret"):
            value = getattr(self, name)
            if not value:
                if not self.debug:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        "Set it in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                setattr(self, name, secrets.token_hex(32))
                logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", name.upper())
            if len(getattr(self, name)) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{name.upper()} must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must be different.")
        if self.jwt_refresh_expire_seconds <= self.jwt_access_expire_seconds:
            raise ValueError("JWT_REFRESH_EXPIRE_SECONDS must be longer than JWT_ACCESS_EXPIRE_SECONDS.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
