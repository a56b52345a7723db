"""Data models for the sources module."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum


class SourceStatus(str, Enum):
    """Health of a configured source as last observed by a sync."""

    PENDING = "pending"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class RateLimitSnapshot:
    """Platform rate-limit state as reported by the last response."""

    remaining: int | None = None
    limit: int | None = None
    reset_at: datetime | None = None


@dataclass
class Source:
    """A configured platform account, feed or search polled for mentions.

    Rows are created by the configuration layer; the sync service only
    mutates status, last_sync_at, error_message and the rate-limit columns.
    """

    id: str
    tenant_id: int
    platform: str
    name: str = ""
    credentials: dict = field(default_factory=dict)
    config: dict = field(default_factory=dict)
    status: SourceStatus = SourceStatus.PENDING
    last_sync_at: datetime | None = None
    sync_interval_minutes: int = 15
    rate_limit_remaining: int | None = None
    rate_limit_reset_at: datetime | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def sync_interval(self) -> timedelta:
        return timedelta(minutes=self.sync_interval_minutes)

    @property
    def rate_limit(self) -> RateLimitSnapshot:
        return RateLimitSnapshot(
            remaining=self.rate_limit_remaining,
            reset_at=self.rate_limit_reset_at,
        )

    def is_due(self, now: datetime) -> bool:
        """Whether the sync interval has elapsed since the last successful sync.

        Never-synced sources are always due, whatever their interval.
        """
        if self.status != SourceStatus.CONNECTED:
            return False
        if self.last_sync_at is None:
            return True
        return self.last_sync_at < now - self.sync_interval


def staleness_key(source: Source) -> tuple[bool, float]:
    """Sort key putting never-synced sources first, then oldest last_sync_at."""
    if source.last_sync_at is None:
        return (False, 0.0)
    return (True, source.last_sync_at.timestamp())
