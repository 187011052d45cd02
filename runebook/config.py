"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_MIN_PRODUCTION_BCRYPT_ROUNDS = 10


class Settings(BaseSettings):
    """Runebook application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    node_id: int = Field(default=0, ge=0, le=1023)

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/runebook.db"
    store_timeout_seconds: float = Field(default=5.0, gt=0, le=30)

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)
    trusted_proxy_ips: list[str] = Field(default_factory=list)

    # Credentials
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    registration_enabled: bool = True

    # Sessions
    session_key_bytes: int = Field(default=128, ge=32, le=512)
    session_expire_hours: int = Field(default=2, ge=1)
    session_remember_days: int = Field(default=30, ge=1)
    session_cookie_name: str = "__session"
    session_bind_address: bool = False
    sweep_interval_seconds: float = Field(default=300.0, gt=0)

    # Login throttling
    login_max_failures: int = Field(default=5, ge=1)
    login_window_seconds: int = Field(default=300, ge=1)
    rate_limit_max_entries: int = Field(default=100_000, ge=1)

    @property
    def login_refill_seconds(self) -> float:
        """Seconds needed to regenerate one login attempt."""
        return self.login_window_seconds / self.login_max_failures

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if self.bcrypt_rounds < _MIN_PRODUCTION_BCRYPT_ROUNDS:
            violations.append(
                f"BCRYPT_ROUNDS must be at least {_MIN_PRODUCTION_BCRYPT_ROUNDS} in production"
            )
        if not self.session_cookie_name:
            violations.append("SESSION_COOKIE_NAME must not be empty")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
