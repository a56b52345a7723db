"""
Database repository for the analytics tables.

Reads mention aggregates from sl_mentions and writes recomputed values
to sl_topics, sl_influencers and sl_competitors. Rows in those three
tables are created by the configuration layer; this repository only
updates them.
"""

import logging
from datetime import datetime

from src.analytics.schemas import (
    Competitor,
    CompetitorShare,
    InfluencerScore,
    InfluencerStats,
    TopicStats,
    TopicTrend,
)
from src.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS sl_topics (
    id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    tenant_id        INTEGER NOT NULL,
    name             TEXT NOT NULL,
    mention_count    INTEGER NOT NULL DEFAULT 0,
    is_trending      BOOLEAN NOT NULL DEFAULT FALSE,
    trend_direction  TEXT NOT NULL DEFAULT 'stable',
    trend_change_pct REAL,
    avg_sentiment    REAL,
    last_seen_at     TIMESTAMPTZ,
    created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_sl_topics_tenant ON sl_topics(tenant_id);

CREATE TABLE IF NOT EXISTS sl_influencers (
    id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    tenant_id        INTEGER NOT NULL,
    handle           TEXT NOT NULL,
    follower_count   INTEGER NOT NULL DEFAULT 0,
    is_verified      BOOLEAN NOT NULL DEFAULT FALSE,
    mention_count    INTEGER NOT NULL DEFAULT 0,
    avg_sentiment    REAL,
    influence_score  REAL NOT NULL DEFAULT 0,
    reach_estimate   BIGINT NOT NULL DEFAULT 0,
    last_mention_at  TIMESTAMPTZ,
    created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_sl_influencers_tenant ON sl_influencers(tenant_id);

CREATE TABLE IF NOT EXISTS sl_competitors (
    id                 UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    tenant_id          INTEGER NOT NULL,
    name               TEXT NOT NULL,
    keywords           TEXT[] NOT NULL DEFAULT '{}',
    mention_count      INTEGER NOT NULL DEFAULT 0,
    share_of_voice_pct REAL NOT NULL DEFAULT 0,
    created_at         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at         TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_sl_competitors_tenant ON sl_competitors(tenant_id);
"""


def like_pattern(keyword: str) -> str:
    """Substring ILIKE pattern with LIKE wildcards in the keyword escaped."""
    escaped = keyword.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class AnalyticsRepository:
    """Aggregate reads and derived-value updates for the analytics job."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create the topics, influencers and competitors tables (idempotent)."""
        await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Analytics tables ensured")

    async def list_active_tenants(self) -> list[int]:
        """Tenants with at least one stored mention."""
        rows = await self._db.fetch(
            "SELECT DISTINCT tenant_id FROM sl_mentions ORDER BY tenant_id"
        )
        return [row["tenant_id"] for row in rows]

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    async def topic_stats(
        self,
        tenant_id: int,
        recent_since: datetime,
        baseline_since: datetime,
    ) -> list[TopicStats]:
        """
        Per-topic mention counts for the recent and baseline windows.

        A mention belongs to a topic when its topics array contains the
        topic name, compared case-insensitively.
        """
        rows = await self._db.fetch(
            """
            SELECT t.id,
                   t.name,
                   COUNT(m.id) FILTER (WHERE m.published_at >= $2) AS recent_count,
                   COUNT(m.id)                                     AS week_count,
                   AVG(m.sentiment_score)                          AS avg_sentiment,
                   MAX(m.published_at)                             AS last_mention_at
            FROM sl_topics t
            LEFT JOIN sl_mentions m
                   ON m.tenant_id = t.tenant_id
                  AND m.published_at >= $3
                  AND EXISTS (
                      SELECT 1 FROM unnest(m.topics) AS elem
                      WHERE lower(elem) = lower(t.name)
                  )
            WHERE t.tenant_id = $1
            GROUP BY t.id, t.name
            ORDER BY t.name
            """,
            tenant_id,
            recent_since,
            baseline_since,
        )
        return [
            TopicStats(
                topic_id=str(row["id"]),
                name=row["name"],
                recent_count=row["recent_count"] or 0,
                week_count=row["week_count"] or 0,
                avg_sentiment=(
                    float(row["avg_sentiment"]) if row["avg_sentiment"] is not None else None
                ),
                last_mention_at=row["last_mention_at"],
            )
            for row in rows
        ]

    async def update_topic(self, tenant_id: int, trend: TopicTrend) -> None:
        """Write a recomputed trend; sentiment and last_seen_at keep old values when None."""
        await self._db.execute(
            """
            UPDATE sl_topics
            SET is_trending      = $3,
                trend_direction  = $4,
                trend_change_pct = $5,
                avg_sentiment    = COALESCE($6, avg_sentiment),
                mention_count    = $7,
                last_seen_at     = COALESCE($8, last_seen_at),
                updated_at       = NOW()
            WHERE id = $2::uuid AND tenant_id = $1
            """,
            tenant_id,
            trend.topic_id,
            trend.is_trending,
            trend.trend_direction.value,
            trend.trend_change_pct,
            trend.avg_sentiment,
            trend.mention_count,
            trend.last_seen_at,
        )

    # ------------------------------------------------------------------
    # Influencers
    # ------------------------------------------------------------------

    async def influencer_stats(self, tenant_id: int, since: datetime) -> list[InfluencerStats]:
        """Influencers joined with their mentions (by handle, case-insensitive) since ``since``."""
        rows = await self._db.fetch(
            """
            SELECT i.id,
                   i.handle,
                   i.follower_count,
                   i.is_verified,
                   COUNT(m.id)             AS mention_count,
                   AVG(m.engagement_score) AS avg_engagement,
                   AVG(m.sentiment_score)  AS avg_sentiment,
                   MAX(m.published_at)     AS last_mention_at
            FROM sl_influencers i
            LEFT JOIN sl_mentions m
                   ON m.tenant_id = i.tenant_id
                  AND lower(m.author_handle) = lower(i.handle)
                  AND m.published_at >= $2
            WHERE i.tenant_id = $1
            GROUP BY i.id, i.handle, i.follower_count, i.is_verified
            ORDER BY i.handle
            """,
            tenant_id,
            since,
        )
        return [
            InfluencerStats(
                influencer_id=str(row["id"]),
                handle=row["handle"],
                follower_count=row["follower_count"] or 0,
                is_verified=bool(row["is_verified"]),
                mention_count=row["mention_count"] or 0,
                avg_engagement=float(row["avg_engagement"] or 0.0),
                avg_sentiment=(
                    float(row["avg_sentiment"]) if row["avg_sentiment"] is not None else None
                ),
                last_mention_at=row["last_mention_at"],
            )
            for row in rows
        ]

    async def update_influencer(self, tenant_id: int, score: InfluencerScore) -> None:
        await self._db.execute(
            """
            UPDATE sl_influencers
            SET influence_score = $3,
                mention_count   = $4,
                avg_sentiment   = COALESCE($5, avg_sentiment),
                reach_estimate  = $6,
                last_mention_at = COALESCE($7, last_mention_at),
                updated_at      = NOW()
            WHERE id = $2::uuid AND tenant_id = $1
            """,
            tenant_id,
            score.influencer_id,
            score.influence_score,
            score.mention_count,
            score.avg_sentiment,
            score.reach_estimate,
            score.last_mention_at,
        )

    # ------------------------------------------------------------------
    # Share of voice
    # ------------------------------------------------------------------

    async def list_competitors(self, tenant_id: int) -> list[Competitor]:
        rows = await self._db.fetch(
            "SELECT id, name, keywords FROM sl_competitors WHERE tenant_id = $1 ORDER BY name",
            tenant_id,
        )
        return [
            Competitor(
                competitor_id=str(row["id"]),
                name=row["name"],
                keywords=list(row["keywords"] or []),
            )
            for row in rows
        ]

    async def count_mentions(self, tenant_id: int, since: datetime) -> int:
        count = await self._db.fetchval(
            """
            SELECT COUNT(*) FROM sl_mentions
            WHERE tenant_id = $1 AND published_at >= $2
            """,
            tenant_id,
            since,
        )
        return int(count or 0)

    async def count_keyword_mentions(
        self,
        tenant_id: int,
        since: datetime,
        keywords: list[str],
    ) -> int:
        """Mentions whose content contains any keyword, case-insensitively."""
        patterns = [like_pattern(k) for k in keywords if k and k.strip()]
        if not patterns:
            return 0
        count = await self._db.fetchval(
            """
            SELECT COUNT(*) FROM sl_mentions
            WHERE tenant_id = $1
              AND published_at >= $2
              AND content ILIKE ANY($3::text[])
            """,
            tenant_id,
            since,
            patterns,
        )
        return int(count or 0)

    async def update_competitor(self, tenant_id: int, share: CompetitorShare) -> None:
        await self._db.execute(
            """
            UPDATE sl_competitors
            SET share_of_voice_pct = $3,
                mention_count      = $4,
                updated_at         = NOW()
            WHERE id = $2::uuid AND tenant_id = $1
            """,
            tenant_id,
            share.competitor_id,
            share.share_of_voice_pct,
            share.mention_count,
        )
