"""Database repository for the sl_mentions table."""

import json
import logging

import asyncpg

from src.connectors.schemas import Mention
from src.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS sl_mentions (
    id               UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    tenant_id        INTEGER NOT NULL,
    source_id        UUID,
    query_id         UUID,
    platform         TEXT NOT NULL,
    external_id      TEXT NOT NULL,
    url              TEXT,
    content          TEXT NOT NULL DEFAULT '',
    post_type        TEXT NOT NULL DEFAULT 'post',
    author_name      TEXT,
    author_handle    TEXT,
    author_followers INTEGER NOT NULL DEFAULT 0,
    author_verified  BOOLEAN NOT NULL DEFAULT FALSE,
    published_at     TIMESTAMPTZ NOT NULL,
    likes            INTEGER NOT NULL DEFAULT 0,
    comments         INTEGER NOT NULL DEFAULT 0,
    shares           INTEGER NOT NULL DEFAULT 0,
    engagement_score REAL NOT NULL DEFAULT 0,
    sentiment_score  REAL,
    topics           TEXT[] NOT NULL DEFAULT '{}',
    raw_data         JSONB NOT NULL DEFAULT '{}',
    created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- Tables created before query tagging
ALTER TABLE sl_mentions ADD COLUMN IF NOT EXISTS query_id UUID;

-- Existence check before insert; not a uniqueness constraint
CREATE INDEX IF NOT EXISTS idx_sl_mentions_identity
    ON sl_mentions(tenant_id, platform, external_id);
CREATE INDEX IF NOT EXISTS idx_sl_mentions_tenant_published
    ON sl_mentions(tenant_id, published_at DESC);
CREATE INDEX IF NOT EXISTS idx_sl_mentions_author
    ON sl_mentions(tenant_id, lower(author_handle));
CREATE INDEX IF NOT EXISTS idx_sl_mentions_topics
    ON sl_mentions USING GIN(topics);
CREATE INDEX IF NOT EXISTS idx_sl_mentions_query
    ON sl_mentions(query_id);
"""


class PersistenceError(Exception):
    """A single mention could not be checked or written."""

    def __init__(self, message: str, external_id: str | None = None):
        super().__init__(message)
        self.external_id = external_id


class MentionsRepository:
    """
    Write side of sl_mentions, used only by the sync service.

    Deduplication is an existence check on (tenant_id, platform, external_id)
    rather than a constraint; concurrent syncs of the same source are
    prevented upstream.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the mentions table and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Mentions table ensured")

    async def exists(self, tenant_id: int, platform: str, external_id: str) -> bool:
        """
        Check whether a mention was already stored.

        Raises:
            PersistenceError: On database failure
        """
        try:
            found = await self._db.fetchval(
                """
                SELECT EXISTS(
                    SELECT 1 FROM sl_mentions
                    WHERE tenant_id = $1 AND platform = $2 AND external_id = $3
                )
                """,
                tenant_id,
                platform,
                external_id,
            )
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise PersistenceError(
                f"Existence check failed: {e}", external_id=external_id
            ) from e
        return bool(found)

    async def insert(self, mention: Mention) -> str:
        """
        Insert a mention and return its id.

        Raises:
            PersistenceError: On database failure
        """
        try:
            mention_id = await self._db.fetchval(
                """
                INSERT INTO sl_mentions (
                    tenant_id, source_id, platform, external_id, url, content,
                    post_type, author_name, author_handle, author_followers,
                    author_verified, published_at, likes, comments, shares,
                    engagement_score, sentiment_score, topics, raw_data, query_id
                ) VALUES (
                    $1, $2::uuid, $3, $4, $5, $6, $7, $8, $9, $10,
                    $11, $12, $13, $14, $15, $16, $17, $18, $19::jsonb, $20::uuid
                )
                RETURNING id
                """,
                mention.tenant_id,
                mention.source_id,
                mention.platform,
                mention.external_id,
                mention.url,
                mention.content,
                mention.post_type,
                mention.author_name,
                mention.author_handle,
                mention.author_followers,
                mention.author_verified,
                mention.published_at,
                mention.likes,
                mention.comments,
                mention.shares,
                mention.engagement_score,
                mention.sentiment_score,
                mention.topics,
                json.dumps(mention.raw_data, default=str),
                mention.query_id,
            )
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise PersistenceError(
                f"Insert failed for {mention.platform}/{mention.external_id}: {e}",
                external_id=mention.external_id,
            ) from e
        return str(mention_id)
