"""Code Execution Service — Application Configuration."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, enum.Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Centralised, validated configuration loaded from environment / .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ──────────────────────────────────────────
    app_name: str = "coderun"
    app_env: Environment = Environment.DEVELOPMENT
    app_debug: bool = False
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_workers: int = 1
    log_level: str = "INFO"
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])

    # ── Identity headers (set by the upstream auth layer) ────
    requestor_id_header: str = "X-Requestor-Id"
    requestor_role_header: str = "X-Requestor-Role"

    # ── Request bounds ───────────────────────────────────────
    max_source_bytes: int = Field(50_000, gt=0)
    max_stdin_bytes: int = Field(65_536, ge=0)
    max_output_bytes: int = Field(65_536, gt=0)

    # ── User-scope rate limit ────────────────────────────────
    user_rate_limit: int = Field(30, ge=0)  # 0 = unlimited
    user_rate_window_seconds: float = Field(60.0, gt=0)

    # ── Provider health ──────────────────────────────────────
    health_cache_ttl_seconds: float = Field(30.0, ge=0)
    health_failure_threshold: int = Field(3, ge=1)
    health_base_cooldown_seconds: float = Field(30.0, gt=0)
    health_max_cooldown_seconds: float = Field(300.0, gt=0)

    # ── Providers ────────────────────────────────────────────
    providers_file: str = ""  # JSON list; built-in registry when empty
    provider_http_timeout_seconds: float = 30.0
    provider_max_connections: int = 100

    # ── Shared state ─────────────────────────────────────────
    state_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    redis_max_connections: int = 50

    # ── Observability ────────────────────────────────────────
    prometheus_enabled: bool = True

    # ── Derived helpers ──────────────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.app_env == Environment.PRODUCTION

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return v.upper()

    @field_validator("state_backend")
    @classmethod
    def _validate_state_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in {"memory", "redis"}:
            raise ValueError("state_backend must be 'memory' or 'redis'")
        return v

    @model_validator(mode="after")
    def _guard_shared_state(self) -> Settings:
        """Several workers must share rate-limit and health state."""
        if self.health_max_cooldown_seconds < self.health_base_cooldown_seconds:
            raise ValueError(
                "health_max_cooldown_seconds must not be below health_base_cooldown_seconds"
            )
        if self.is_production and self.app_workers > 1 and self.state_backend != "redis":
            raise ValueError(
                "state_backend must be 'redis' when running more than one worker in production"
            )
        return self


def get_settings(**overrides: Any) -> Settings:
    """Factory that allows test-time overrides."""
    return Settings(**overrides)
