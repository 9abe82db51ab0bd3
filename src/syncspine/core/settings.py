"""
Centralized settings for syncspine.

One validated, cached settings object replaces scattered constants for retry
attempts, backoff, cache ttl and the live-update feature flag.

All fields can be set via ``SYNCSPINE_*`` environment variables (e.g.
``SYNCSPINE_RETRY_ATTEMPTS=5``) or a ``.env`` file. List fields take JSON
(``SYNCSPINE_LIVE_ENTITY_TYPES='["projects"]'``).

Tags:
    syncspine, configuration, settings, pydantic
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from syncspine.core.entities import EntityType


class SyncSettings(BaseSettings):
    """Syncspine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SYNCSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Remote store ─────────────────────────────────────────────
    remote_url: str = Field(
        default="memory://",
        description="memory:// for the in-process store, http(s)://host for a PostgREST endpoint",
    )
    remote_key: str = Field(default="", description="API key sent as apikey + bearer token")
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    probe_entity: EntityType = Field(default=EntityType.PROJECTS)

    # ── Retry ────────────────────────────────────────────────────
    retry_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)

    # ── Cache ────────────────────────────────────────────────────
    cache_ttl_seconds: float = Field(default=300.0, gt=0)

    # ── Connection indicator ─────────────────────────────────────
    status_autohide_seconds: float = Field(default=3.0, ge=0)

    # ── Live updates ─────────────────────────────────────────────
    realtime_enabled: bool = Field(default=True)
    live_entity_types: list[EntityType] = Field(
        default_factory=lambda: [
            EntityType.PROJECTS,
            EntityType.TRANSACTIONS,
            EntityType.INVOICES,
        ],
    )
    poll_interval_seconds: float = Field(default=5.0, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="console")

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"invalid log level: {value!r}")
        return level

    @field_validator("log_format")
    @classmethod
    def _check_format(cls, value: str) -> str:
        fmt = value.lower()
        if fmt not in {"console", "json"}:
            raise ValueError(f"log_format must be 'console' or 'json', got {value!r}")
        return fmt

    @property
    def json_logs(self) -> bool:
        return self.log_format == "json"

    @property
    def is_memory_store(self) -> bool:
        return self.remote_url.startswith("memory")


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, SyncSettings] = {}


def get_settings(*, _force_reload: bool = False) -> SyncSettings:
    """Load, validate, and cache a :class:`SyncSettings` instance."""
    if _force_reload or "default" not in _settings_cache:
        _settings_cache["default"] = SyncSettings()
    return _settings_cache["default"]


def clear_settings_cache() -> None:
    """Forget the cached settings (tests and profile switches)."""
    _settings_cache.clear()


__all__ = [
    "SyncSettings",
    "get_settings",
    "clear_settings_cache",
]
