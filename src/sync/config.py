"""
Sync service configuration.

These are the deployment defaults. The three runtime knobs
(auto_sync_enabled, sync_platforms, max_mentions_per_sync) can be changed
without a restart through the sl_settings table, which is re-read at the
start of every sweep and falls back to these values for missing keys.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncConfig(BaseSettings):
    """
    Configuration for the sync service and its scheduler.

    All settings can be overridden via environment variables prefixed with SYNC_.

    Example:
        SYNC_AUTO_SYNC_ENABLED=false
        SYNC_SYNC_PLATFORMS='["reddit", "rss"]'
        SYNC_SWEEP_INTERVAL_MINUTES=5
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    auto_sync_enabled: bool = Field(
        default=True,
        description="Master switch for scheduled sweeps",
    )
    sync_platforms: list[str] = Field(
        default_factory=list,
        description="Platform allow-list for scheduled sweeps; empty means all",
    )
    max_mentions_per_sync: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Upper bound passed to fetch_mentions()",
    )
    due_batch_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Safety cap on sources synced per sweep",
    )
    backfill_days: int = Field(
        default=7,
        ge=1,
        le=90,
        description="Fetch window for sources that have never synced",
    )
    sweep_interval_minutes: int = Field(
        default=15,
        ge=1,
        le=1440,
        description="Scheduler cadence",
    )
    warmup_delay_seconds: float | None = Field(
        default=30.0,
        ge=0.0,
        description="Delay before the first sweep after start; None disables it",
    )

    @field_validator("sync_platforms")
    @classmethod
    def normalize_platforms(cls, v: list[str]) -> list[str]:
        return [p.strip().lower() for p in v if p and p.strip()]
