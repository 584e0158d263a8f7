"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the auth service happen here. No module
should call os.getenv() or os.environ.get() directly -- build a Settings with
load_settings() at the entrypoint and pass it down.

Design patterns used:
  Explicit construction: load_settings() returns a fresh Settings on every
      call. There is no cached process-wide instance; create_app(), the CLI
      and the tests each own the Settings they were handed.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  frozen=True: the signing secret, TTLs and hashing cost are read-only once
      the process starts serving traffic.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and
       CSRF derivation both rely on key entropy -- a short key weakens both.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. Every issued access token would silently become
       invalid on restart with a random key.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authservice.config")


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
        frozen=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = "sqlite:///authservice.db"
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Token lifetimes
    # ------------------------------------------------------------------

    access_token_ttl_seconds: int = 300  # 5 minutes
    refresh_token_ttl_seconds: int = 7 * 24 * 3600  # 168 hours
    token_sweep_interval_seconds: int = Field(default=3600, ge=0)  # 0 disables the sweep

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    bcrypt_cost: int = Field(default=12, ge=4, le=31)
    hash_workers: int = Field(default=4, ge=1)
    operation_timeout_seconds: float = Field(default=10.0, gt=0)

    # ------------------------------------------------------------------
    # Registration / CSRF policy
    # ------------------------------------------------------------------

    require_email_verification: bool = False
    csrf_bind_to_session: bool = False

    # ------------------------------------------------------------------
    # Cookies and CORS
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    cookie_domain: str = ""
    cookie_samesite: str = "strict"
    # Comma-separated list; see origins below.
    allowed_origins: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("cookie_samesite")
    @classmethod
    def validate_samesite(cls, value: str) -> str:
        value = value.lower()
        if value not in ("strict", "lax", "none"):
            raise ValueError("COOKIE_SAMESITE must be one of: strict, lax, none.")
        return value

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Tokens will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                # frozen model: bypass __setattr__ for the one-time dev default
                object.__setattr__(self, "secret_key", secrets.token_hex(32))
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.access_token_ttl_seconds <= 0 or self.refresh_token_ttl_seconds <= 0:
            raise ValueError("Token TTLs must be positive.")
        return self

    @property
    def origins(self) -> list[str]:
        """ALLOWED_ORIGINS split into a list for CORSMiddleware."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


def load_settings(**overrides) -> Settings:
    """Build Settings from the environment, applying keyword overrides on top.

    Called once by each entrypoint (asgi.py, main.py). Misconfiguration raises
    pydantic.ValidationError here, before the process serves any traffic.
    """
    return Settings(**overrides)
