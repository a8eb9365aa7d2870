"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for ClassSite happen here. No module should
call os.getenv() or os.environ.get() directly -- the ASGI lifespan calls
get_settings() once and hands the Settings instance to every component
constructor (AuthStore, TokenManager, SMSGateway, AuthService).

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates a SECRET_KEY with a warning, production mode
      refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens it.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  [V1] Verification codes are echoed in API responses only when BOTH DEBUG and
       EXPOSE_VERIFICATION_CODES are true. Neither is on by default.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("classsite.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'classsite_auth.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Tests usually build their own
    instance (Settings(debug=True, ...)) and pass it to the components.
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
    # Reserved for signed refresh tokens. Refresh tokens are opaque random
    # values today, so this only has to be non-empty; defaults to secret_key.
    refresh_secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    access_token_expire_seconds: int = 24 * 60 * 60
    refresh_token_expire_days: int = 7
    expose_verification_codes: bool = False

    # ------------------------------------------------------------------
    # SMS gateway (empty URL means simulated delivery -- codes are logged)
    # ------------------------------------------------------------------

    sms_gateway_url: str = ""
    sms_api_key: str = ""
    sms_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def cookie_secure(self) -> bool:
        """Cookies carry the Secure flag in production or when forced on."""
        return self.secure_cookies or not self.debug

    @property
    def echo_verification_codes(self) -> bool:
        """True only in debug mode with the explicit opt-in flag set [V1]."""
        return self.debug and self.expose_verification_codes

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M6][M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if not self.refresh_secret_key:
            self.refresh_secret_key = self.secret_key
        if self.expose_verification_codes and not self.debug:
            logger.warning("EXPOSE_VERIFICATION_CODES is ignored outside DEBUG mode.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    Only the ASGI lifespan should call this; everything else receives the
    instance through its constructor.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
