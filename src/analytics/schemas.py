"""Data models for the analytics module."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


@dataclass
class TopicStats:
    """Mention aggregates for one topic over the baseline window."""

    topic_id: str
    name: str
    recent_count: int = 0
    week_count: int = 0
    avg_sentiment: float | None = None
    last_mention_at: datetime | None = None


@dataclass
class TopicTrend:
    """Values written back to an sl_topics row."""

    topic_id: str
    is_trending: bool
    trend_direction: TrendDirection
    trend_change_pct: float | None
    avg_sentiment: float | None
    mention_count: int
    last_seen_at: datetime | None


@dataclass
class InfluencerStats:
    """An influencer row joined with its mentions in the scoring window."""

    influencer_id: str
    handle: str
    follower_count: int = 0
    is_verified: bool = False
    mention_count: int = 0
    avg_engagement: float = 0.0
    avg_sentiment: float | None = None
    last_mention_at: datetime | None = None


@dataclass
class InfluencerScore:
    """Values written back to an sl_influencers row."""

    influencer_id: str
    influence_score: float
    mention_count: int
    avg_sentiment: float | None
    reach_estimate: int
    last_mention_at: datetime | None


@dataclass
class Competitor:
    competitor_id: str
    name: str
    keywords: list[str] = field(default_factory=list)


@dataclass
class CompetitorShare:
    """Values written back to an sl_competitors row."""

    competitor_id: str
    mention_count: int
    share_of_voice_pct: float


@dataclass
class AnalyticsRunResult:
    """Summary of one analytics run."""

    started_at: datetime
    tenants_processed: int = 0
    topics_updated: int = 0
    influencers_updated: int = 0
    competitors_updated: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        return data
