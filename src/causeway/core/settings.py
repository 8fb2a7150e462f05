"""Environment-driven configuration for causeway.

Manifesto:
    Backend choice (in-process vs Redis) is a deployment decision, not a
    code change. ``CausewaySettings`` reads ``CAUSEWAY_*`` environment
    variables (and an optional ``.env`` file) so the same application code
    runs against memory providers in tests and Redis in production.

Examples:
    >>> import os
    >>> os.environ["CAUSEWAY_EVENT_BACKEND"] = "redis"
    >>> get_settings(_force_reload=True).event_backend
    <Backend.REDIS: 'redis'>

Tags:
    settings, configuration, pydantic, environment, causeway

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Backend(str, Enum):
    """Supported provider backends."""

    MEMORY = "memory"
    REDIS = "redis"


class LogFormat(str, Enum):
    CONSOLE = "console"
    JSON = "json"


class CausewaySettings(BaseSettings):
    """Process-wide settings.

    Fields
    ──────
    event_backend / workflow_backend : provider implementation per subsystem
    redis_url / queue_prefix         : Redis connection and key namespace
    workflow_timeout_seconds         : default flow timeout (in-process and Redis)
    parallel_concurrency             : optional cap on running members of a parallel group
    event_completion_ttl_seconds     : how long an unsettled Redis emit stays pending
    """

    model_config = SettingsConfigDict(
        env_prefix="CAUSEWAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Meta ─────────────────────────────────────────────────────
    service_name: str = Field(default="causeway")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default=LogFormat.CONSOLE)

    # ── Backends ─────────────────────────────────────────────────
    event_backend: Backend = Field(default=Backend.MEMORY)
    workflow_backend: Backend = Field(default=Backend.MEMORY)

    # ── Redis ────────────────────────────────────────────────────
    redis_url: str = Field(default="redis://localhost:6379/0")
    queue_prefix: str = Field(default="causeway")
    worker_block_timeout: float = Field(default=1.0, gt=0)

    # ── Workflows ────────────────────────────────────────────────
    workflow_timeout_seconds: float = Field(default=30.0, gt=0)
    flow_retention_seconds: float = Field(default=300.0, ge=0)
    parallel_concurrency: int | None = Field(default=None, ge=1)

    # ── Events ───────────────────────────────────────────────────
    idempotency_ttl_seconds: float = Field(default=300.0, gt=0)
    event_completion_ttl_seconds: float = Field(default=300.0, gt=0)

    @field_validator("log_level")
    @classmethod
    def _normalise_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @property
    def json_logs(self) -> bool:
        return self.log_format == LogFormat.JSON

    @property
    def requires_redis(self) -> bool:
        return Backend.REDIS in (self.event_backend, self.workflow_backend)


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, CausewaySettings] = {}


def get_settings(*, _force_reload: bool = False) -> CausewaySettings:
    """Load, validate, and cache a :class:`CausewaySettings` instance."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = CausewaySettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = [
    "Backend",
    "LogFormat",
    "CausewaySettings",
    "get_settings",
    "clear_settings_cache",
]
