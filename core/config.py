"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): cross-field validation once all fields are
      resolved. Dev mode generates a signing secret with a warning, production
      mode refuses to start without one.

Security notes:
  JWT_SECRET shorter than 32 chars is rejected outright. HS256 signing relies
  on key entropy -- a short key weakens every issued token.

  Duration settings (JWT_EXPIRES_IN, JWT_REFRESH_EXPIRES_IN) are validated
  strictly here. The token layer's parser falls back to one hour on garbage,
  so a typo in the environment must be caught at startup instead.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import re
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Union

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'authgate.db'}"

_DURATION_RE = re.compile(r"^\d+[smhd]$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The validators enforce
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
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    jwt_secret: str = ""
    jwt_expires_in: Union[int, str] = "1h"
    # Empty means "derive from jwt_secret" (see auth.tokens.TokenConfig).
    jwt_refresh_secret: str = ""
    jwt_refresh_expires_in: Union[int, str] = "7d"
    refresh_tokens_enabled: bool = True

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    session_sweep_interval_seconds: int = 3600

    # bcrypt work factor. Tests drop this to the minimum (4).
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost:3000"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("jwt_expires_in", "jwt_refresh_expires_in", mode="before")
    @classmethod
    def validate_duration(cls, value: Union[int, str]) -> Union[int, str]:
        """Accept integer seconds or an Ns/Nm/Nh/Nd string; reject anything else."""
        if isinstance(value, int):
            if value <= 0:
                raise ValueError("Token expiry must be a positive number of seconds.")
            return value
        value = str(value).strip()
        if value.isdigit():
            return cls.validate_duration(int(value))
        if not _DURATION_RE.match(value):
            raise ValueError(f"Invalid token expiry {value!r}. Use an integer or a value like 30s, 15m, 1h, 7d.")
        if int(value[:-1]) <= 0:
            raise ValueError("Token expiry must be a positive duration.")
        return value

    @field_validator("session_sweep_interval_seconds")
    @classmethod
    def validate_sweep_interval(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("SESSION_SWEEP_INTERVAL_SECONDS must be positive.")
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the JWT_SECRET policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            JWT_SECRET is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.jwt_secret:
            if self.debug:
                self.jwt_secret = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated JWT_SECRET. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "JWT_SECRET is required in production mode. "
                    "Set JWT_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.jwt_secret) < 32:
            raise ValueError("JWT_SECRET must be at least 32 characters.")
        if self.jwt_refresh_secret and self.jwt_refresh_secret == self.jwt_secret:
            raise ValueError("JWT_REFRESH_SECRET must differ from JWT_SECRET.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
