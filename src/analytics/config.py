"""
Analytics job configuration.

Windows and thresholds for the hourly recomputation of topic trends,
influencer scores and competitor share of voice.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AnalyticsConfig(BaseSettings):
    """
    Configuration for the analytics job.

    All settings can be overridden via environment variables prefixed with ANALYTICS_.

    Example:
        ANALYTICS_INTERVAL_MINUTES=30
        ANALYTICS_TREND_THRESHOLD=2.0
    """

    model_config = SettingsConfigDict(
        env_prefix="ANALYTICS_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Scheduling: hourly at :05 keeps clear of the :00/:15 sync sweeps
    interval_minutes: int = Field(default=60, ge=1, le=1440)
    offset_minutes: int = Field(default=5, ge=0, le=1439)
    warmup_delay_seconds: float | None = Field(
        default=None,
        ge=0.0,
        description="Optional early run after start; None waits for the first boundary",
    )

    # Topic trends
    recent_window_hours: int = Field(
        default=1,
        ge=1,
        description="Window whose volume is compared against the baseline",
    )
    baseline_window_hours: int = Field(
        default=168,
        ge=1,
        description="Trailing window whose hourly average is the baseline",
    )
    trend_threshold: float = Field(
        default=1.5,
        gt=0.0,
        description="recent >= baseline * threshold marks a topic trending",
    )

    # Influencers and share of voice
    influencer_window_days: int = Field(default=30, ge=1, le=365)
    share_of_voice_window_days: int = Field(default=30, ge=1, le=365)
