"""Database repository for the sl_sources table."""

import json
import logging
from datetime import datetime

from src.sources.schemas import RateLimitSnapshot, Source, SourceStatus
from src.storage.database import Database, load_json

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS sl_sources (
    id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    tenant_id             INTEGER NOT NULL,
    platform              TEXT NOT NULL,
    name                  TEXT NOT NULL DEFAULT '',
    credentials           JSONB NOT NULL DEFAULT '{}',
    config                JSONB NOT NULL DEFAULT '{}',
    status                TEXT NOT NULL DEFAULT 'pending',
    last_sync_at          TIMESTAMPTZ,
    sync_interval_minutes INTEGER NOT NULL DEFAULT 15,
    error_message         TEXT,
    rate_limit_remaining  INTEGER,
    rate_limit_reset_at   TIMESTAMPTZ,
    created_at            TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at            TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_sl_sources_tenant
    ON sl_sources(tenant_id);
CREATE INDEX IF NOT EXISTS idx_sl_sources_due
    ON sl_sources(status, last_sync_at NULLS FIRST);
"""

_SELECT_COLUMNS = """
    id, tenant_id, platform, name, credentials, config, status,
    last_sync_at, sync_interval_minutes, error_message,
    rate_limit_remaining, rate_limit_reset_at, created_at, updated_at
"""


def _record_to_source(record) -> Source:
    """Convert an asyncpg Record to a Source dataclass."""
    return Source(
        id=str(record["id"]),
        tenant_id=record["tenant_id"],
        platform=record["platform"],
        name=record["name"] or "",
        credentials=load_json(record["credentials"], {}),
        config=load_json(record["config"], {}),
        status=SourceStatus(record["status"]),
        last_sync_at=record["last_sync_at"],
        sync_interval_minutes=record["sync_interval_minutes"],
        error_message=record["error_message"],
        rate_limit_remaining=record["rate_limit_remaining"],
        rate_limit_reset_at=record["rate_limit_reset_at"],
        created_at=record["created_at"],
        updated_at=record["updated_at"],
    )


class SourcesRepository:
    """Read and status-update operations for sl_sources.

    Source CRUD belongs to the configuration layer; this repository only
    loads sources for syncing and writes back the outcome of each attempt.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the sources table and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Sources table ensured")

    async def insert(self, source: Source) -> str:
        """Insert a source row and return its id. Used by seeding and tests."""
        source_id = await self._db.fetchval(
            """
            INSERT INTO sl_sources (
                tenant_id, platform, name, credentials, config, status,
                sync_interval_minutes
            ) VALUES ($1, $2, $3, $4::jsonb, $5::jsonb, $6, $7)
            RETURNING id
            """,
            source.tenant_id,
            source.platform,
            source.name,
            json.dumps(source.credentials),
            json.dumps(source.config),
            SourceStatus(source.status).value,
            source.sync_interval_minutes,
        )
        return str(source_id)

    async def get_by_id(self, source_id: str) -> Source | None:
        """Fetch a single source by id."""
        row = await self._db.fetchrow(
            f"SELECT {_SELECT_COLUMNS} FROM sl_sources WHERE id = $1::uuid",
            source_id,
        )
        return _record_to_source(row) if row else None

    async def list_for_tenant_sync(self, tenant_id: int) -> list[Source]:
        """All non-error sources of a tenant, never-synced first then oldest."""
        rows = await self._db.fetch(
            f"""
            SELECT {_SELECT_COLUMNS} FROM sl_sources
            WHERE tenant_id = $1 AND status <> 'error'
            ORDER BY last_sync_at ASC NULLS FIRST, created_at ASC
            """,
            tenant_id,
        )
        return [_record_to_source(r) for r in rows]

    async def list_due(
        self,
        now: datetime,
        platforms: list[str] | None = None,
        limit: int = 50,
    ) -> list[Source]:
        """Connected sources whose sync interval has elapsed, oldest first.

        Args:
            now: Reference time for the interval comparison
            platforms: Optional allow-list; None or empty means all platforms
            limit: Safety cap on the number of sources per sweep
        """
        conditions = [
            "status = 'connected'",
            "(last_sync_at IS NULL"
            " OR last_sync_at < $1::timestamptz - make_interval(mins => sync_interval_minutes))",
        ]
        params: list = [now]
        idx = 2

        if platforms:
            conditions.append(f"platform = ANY(${idx}::text[])")
            params.append([p.lower() for p in platforms])
            idx += 1

        params.append(limit)
        rows = await self._db.fetch(
            f"""
            SELECT {_SELECT_COLUMNS} FROM sl_sources
            WHERE {" AND ".join(conditions)}
            ORDER BY last_sync_at ASC NULLS FIRST, created_at ASC
            LIMIT ${idx}
            """,
            *params,
        )
        return [_record_to_source(r) for r in rows]

    async def update_status(
        self,
        source_id: str,
        status: SourceStatus,
        error_message: str | None = None,
        rate_limit: RateLimitSnapshot | None = None,
        synced_at: datetime | None = None,
    ) -> None:
        """Persist the outcome of a sync attempt.

        ``last_sync_at`` only moves when ``synced_at`` is given; rate-limit
        columns are only overwritten when a snapshot is supplied.
        """
        rate_limit = rate_limit or RateLimitSnapshot()
        await self._db.execute(
            """
            UPDATE sl_sources
            SET status               = $2,
                error_message        = $3,
                last_sync_at         = COALESCE($4, last_sync_at),
                rate_limit_remaining = CASE WHEN $5 THEN $6 ELSE rate_limit_remaining END,
                rate_limit_reset_at  = CASE WHEN $5 THEN $7 ELSE rate_limit_reset_at END,
                updated_at           = NOW()
            WHERE id = $1::uuid
            """,
            source_id,
            SourceStatus(status).value,
            error_message,
            synced_at,
            rate_limit.remaining is not None or rate_limit.reset_at is not None,
            rate_limit.remaining,
            rate_limit.reset_at,
        )
