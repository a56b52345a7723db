"""
Canonical mention schema for the social-listening pipeline.

Every connector MUST return this exact structure from fetch_mentions().
The sync service persists it as-is and the analytics job reads the
normalized columns only; raw_data is kept as an opaque blob.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator


def _utc_now() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class Mention(BaseModel):
    """A single ingested post, comment or article from a source."""

    # Identity
    tenant_id: int = Field(..., description="Owning tenant")
    source_id: str = Field(..., description="sl_sources.id the mention came from")
    query_id: str | None = Field(
        default=None, description="sl_queries.id of the first query whose keywords matched"
    )
    platform: str = Field(..., description="Lowercase platform id")
    external_id: str = Field(
        ...,
        min_length=1,
        description="Platform-native id; unique per (tenant_id, platform)",
    )
    url: str | None = Field(default=None, description="Original content URL")

    # Content
    content: str = Field(default="", description="Cleaned text content")
    post_type: str = Field(default="post", description="post, comment, article, ...")

    # Author
    author_name: str | None = None
    author_handle: str | None = None
    author_followers: int = Field(default=0, ge=0)
    author_verified: bool = False

    # Timestamps
    published_at: datetime = Field(default_factory=_utc_now)

    # Engagement
    likes: int = Field(default=0, ge=0)
    comments: int = Field(default=0, ge=0)
    shares: int = Field(default=0, ge=0)
    engagement_score: float = Field(
        default=0.0,
        ge=0.0,
        description="Engagement rate, typically interactions per follower",
    )

    # Set by the enrichment service when not provided by the platform
    sentiment_score: float | None = Field(default=None, ge=-1.0, le=1.0)
    topics: list[str] = Field(default_factory=list)

    raw_data: dict[str, Any] = Field(
        default_factory=dict,
        description="Original platform payload; never parsed downstream",
    )

    @field_validator("platform")
    @classmethod
    def normalize_platform(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("external_id", mode="before")
    @classmethod
    def coerce_external_id(cls, v: Any) -> str:
        """Platforms return numeric ids; store them as text."""
        if v is None:
            raise ValueError("external_id is required")
        return str(v).strip()

    @field_validator("content")
    @classmethod
    def normalize_content(cls, v: str) -> str:
        return " ".join(v.split())

    @field_validator("published_at")
    @classmethod
    def ensure_timezone(cls, v: datetime) -> datetime:
        """Naive timestamps from upstream APIs are treated as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("topics")
    @classmethod
    def normalize_topics(cls, v: list[str]) -> list[str]:
        normalized: list[str] = []
        for topic in v:
            t = topic.strip()
            if t and t not in normalized:
                normalized.append(t)
        return normalized

    @property
    def interactions(self) -> int:
        return self.likes + self.comments + self.shares


class ConnectionTestResult(BaseModel):
    """Outcome of a connector's credential/reachability check."""

    success: bool
    message: str = ""
    platform_info: dict[str, Any] = Field(default_factory=dict)


def engagement_rate(likes: int, comments: int, shares: int, followers: int) -> float:
    """Interactions per follower; 0 when the follower count is unknown."""
    if followers <= 0:
        return 0.0
    return (likes + comments + shares) / followers
