"""
core/config.py -- BookSwap settings: signing key, field key, token lifetimes.

Only this module reads the environment. Everything else asks get_settings()
for the one Settings instance (lru_cache) built on first use.

Settings is a pydantic-settings model, so each field is filled from the
matching upper-case env var or from .env (field_encryption_key <-
FIELD_ENCRYPTION_KEY). validate_keys() runs once the fields are resolved:

  DEBUG=true   missing keys are generated on the spot and a warning is logged.
               Nothing signed or encrypted with them survives a restart.
  DEBUG=false  a missing SECRET_KEY or FIELD_ENCRYPTION_KEY stops startup.

Key rules, checked in both modes:
  SECRET_KEY            at least 32 characters (HS256 signing secret).
  FIELD_ENCRYPTION_KEY  base64 of exactly 32 bytes (AES-256). A bad key
                        fails here, at startup, and never per request.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or market/.
"""

import base64
import binascii
import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("bookswap.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'bookswap.db'}"

FIELD_KEY_BYTES = 32


def decode_field_key(raw: str) -> bytes:
    """Decode a base64 field-encryption key and enforce the AES-256 length."""
    try:
        key = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("FIELD_ENCRYPTION_KEY must be valid base64.") from exc
    if len(key) != FIELD_KEY_BYTES:
        raise ValueError(f"FIELD_ENCRYPTION_KEY must decode to {FIELD_KEY_BYTES} bytes, got {len(key)}.")
    return key


class Settings(BaseSettings):
    """Environment-backed settings. Every field has a default; with DEBUG=true
    even the keys do, so tests need no .env file.
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
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured".
    secret_key: str = ""
    jwt_issuer: str = "BookSwap"
    jwt_audience: str = "BookSwapUsers"

    # ------------------------------------------------------------------
    # Credentials and PII
    # ------------------------------------------------------------------

    field_encryption_key: str = ""
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    refresh_token_days: int = Field(default=7, ge=1)
    refresh_cookie_name: str = "refreshToken"
    secure_cookies: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_keys(self) -> "Settings":
        """Enforce the SECRET_KEY and FIELD_ENCRYPTION_KEY policy.

        Dev mode (DEBUG=true): auto-generate missing keys with a warning.
            Tokens and encrypted columns will not survive a restart.

        Production mode: refuse to start if either key is missing.
        """
        if not self.secret_key:
            if not self.debug:
                raise ValueError(
                    "SECRET_KEY must be set when DEBUG is off "
                    "(environment or .env). Use DEBUG=true for a throwaway dev key."
                )
            self.secret_key = secrets.token_hex(32)
            logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")

        if not self.field_encryption_key:
            if not self.debug:
                raise ValueError(
                    "FIELD_ENCRYPTION_KEY is required in production mode. "
                    "Set it to base64 of 32 random bytes."
                )
            self.field_encryption_key = base64.b64encode(secrets.token_bytes(FIELD_KEY_BYTES)).decode("ascii")
            logger.warning("Using auto-generated FIELD_ENCRYPTION_KEY. Encrypted PII will be unreadable after restart.")
        decode_field_key(self.field_encryption_key)
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the cached Settings. Tests that change the environment call
    get_settings.cache_clear() first.
    """
    return Settings()
