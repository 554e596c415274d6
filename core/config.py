"""
core/config.py -- PersonaHub settings, read once from the environment.

Every environment variable the service understands is a field on Settings.
Other modules import get_settings(); nothing else touches os.environ.

How it is put together:
  Settings is a pydantic-settings BaseSettings. Field names double as
      environment variable names (workspace_mode <- WORKSPACE_MODE), values
      are coerced to the annotated type, and a local .env file is honoured.

  get_settings() is wrapped in lru_cache, so the first caller builds the
      object and every later caller (routes, lifespan, tests) shares it.

  resolve_keys() runs after field parsing. With DEBUG=true a missing key is
      replaced by a random one and a warning is logged. Without DEBUG the
      process refuses to start.

Key material:
  SECRET_KEY signs JWTs and keys the HMAC over one-time tokens. Fewer than
  32 characters is rejected in every mode.

  ENCRYPTION_KEY seals persona webhook URLs. A key generated at startup would
  orphan every stored ciphertext on the next restart, which is tolerable on a
  laptop and nowhere else.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or personas/.
"""

import base64
import logging
import os
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("personahub.config")


class Settings(BaseSettings):
    """Typed view of the process environment.

    Every field has a default, so tests can build Settings() with nothing but
    DEBUG=true set.
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
    # "" means unset; resolve_keys() fills or rejects both before use.
    secret_key: str = ""
    encryption_key: str = ""

    database_url: str = "sqlite:///personahub_auth.db"
    persona_database_url: str = "sqlite:///personahub_personas.db"

    # Used to build links in verification / password reset emails and the
    # OAuth callback redirect.
    app_base_url: str = "http://localhost:8000"

    # Host header allow-list (TrustedHostMiddleware) and browser origins (CORS).
    # "testserver" is the Host that Starlette's TestClient sends.
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 3600
    refresh_token_expire_seconds: int = 7 * 24 * 3600

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    # "shared": every new account joins the oldest active workspace.
    # "domain": one workspace per email domain.
    workspace_mode: Literal["shared", "domain"] = "shared"
    self_registration_enabled: bool = True
    max_failed_logins: int = 5
    lockout_minutes: int = 15

    # ------------------------------------------------------------------
    # Google sign-in (both values required, otherwise the provider is off)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""

    # ------------------------------------------------------------------
    # Breach check (Have I Been Pwned range API)
    # ------------------------------------------------------------------

    breach_check_url: str = "https://api.pwnedpasswords.com/range/"
    breach_check_user_agent: str = "PersonaHub-Backend/1.0.0"
    breach_check_timeout: float = 5.0

    # ------------------------------------------------------------------
    # Persona webhooks
    # ------------------------------------------------------------------

    webhook_timeout: float = 30.0
    # Extra attempts after the first; delay doubles on each retry.
    webhook_retries: int = 2
    webhook_retry_delay: float = 1.0
    webhook_user_agent: str = "PersonaHub-Backend/1.0.0"
    # Consecutive failed deliveries before a persona is cut off, and how
    # long it stays cut off before one trial request is let through.
    webhook_failure_threshold: int = 5
    webhook_reset_seconds: float = 300.0

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "5/minute"
    password_reset_rate_limit: str = "5/minute"
    chat_rate_limit: str = "120/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def resolve_keys(self) -> "Settings":
        """Fill in or reject SECRET_KEY and ENCRYPTION_KEY."""
        if not self.secret_key:
            self.secret_key = _dev_only(
                self.debug,
                "SECRET_KEY",
                secrets.token_hex(32),
                "issued tokens stop verifying after a restart",
            )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")

        if not self.encryption_key:
            self.encryption_key = _dev_only(
                self.debug,
                "ENCRYPTION_KEY",
                base64.b64encode(os.urandom(32)).decode("ascii"),
                "persona webhook URLs saved now cannot be decrypted after a restart",
            )
        return self


def _dev_only(debug: bool, name: str, generated: str, consequence: str) -> str:
    """Return a throwaway key in DEBUG mode, otherwise refuse to start."""
    if not debug:
        raise ValueError(
            f"{name} must be set when DEBUG is off. "
            "Put it in the environment or .env (python -m auth.crypto prints a fresh key), "
            "or set DEBUG=true for local development."
        )
    logger.warning("%s not set; using a random key for this process, so %s.", name, consequence)
    return generated


@lru_cache
def get_settings() -> Settings:
    """Build Settings on first call and hand back the same instance afterwards.

    Tests that change environment variables must call
    get_settings.cache_clear() first.
    """
    return Settings()
