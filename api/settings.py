"""
Environment-driven settings for the swap API.

Covers the PocketBase connection, CORS origins and the background
detection / timeout-sweep jobs. Read once per process via get_settings().
"""

from __future__ import annotations

import logging
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

INSECURE_PASSWORDS = {"password", "admin", "123456", "changeme", ""}


class Settings(BaseSettings):
    """Swap API settings; every field maps to an upper-case environment variable or .env entry."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    # === PocketBase Configuration ===
    pocketbase_url: str = Field(
        default="http://127.0.0.1:8090",
        description="PocketBase server URL",
    )
    pocketbase_admin_email: str = Field(
        default="admin@vitabu.local",
        description="PocketBase admin email for API authentication",
    )
    pocketbase_admin_password: str = Field(
        default="",
        description="PocketBase admin password used by the swap engine's service account",
    )
    skip_pb_auth: bool = Field(
        default=False,
        description="Do not log in to PocketBase at startup",
    )

    @field_validator("pocketbase_admin_password", mode="after")
    @classmethod
    def validate_admin_password(cls, v: str) -> str:
        """Warn when the admin password is unset or a known default."""
        if v in INSECURE_PASSWORDS:
            logger.warning(
                "SECURITY WARNING: POCKETBASE_ADMIN_PASSWORD is empty or a well-known value; "
                "the swap engine writes cycles and reliability scores with these credentials."
            )
        return v

    # === CORS ===
    # Kept as a raw string; pydantic-settings would try to JSON-decode a list field
    allowed_origins_str: str = Field(
        default="http://localhost:5173",
        alias="ALLOWED_ORIGINS",
        description="Comma-separated origins of the swap web client",
    )

    # === Background Jobs ===
    scheduler_enabled: bool = Field(
        default=True,
        description="Run periodic cycle detection and timeout sweeps in this process",
    )
    detection_interval_seconds: int = Field(
        default=6 * 60 * 60,
        gt=0,
        description="Seconds between scheduled cycle detection runs",
    )
    timeout_sweep_interval_seconds: int = Field(
        default=30 * 60,
        gt=0,
        description="Seconds between confirmation/completion deadline sweeps",
    )
    detection_max_cycle_size: int = Field(
        default=5,
        ge=2,
        le=5,
        description="Largest ring the scheduled detection searches for",
    )
    detection_top_n: int = Field(
        default=50,
        ge=1,
        description="Number of best cycles saved per scheduled detection run",
    )

    # === Locale ===
    tz: str = Field(
        default="Africa/Nairobi",
        description="Local timezone for displaying deadlines; storage stays UTC",
    )

    @property
    def allowed_origins(self) -> list[str]:
        return [origin.strip() for origin in self.allowed_origins_str.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings; call ``get_settings.cache_clear()`` to re-read the environment."""
    return Settings()
