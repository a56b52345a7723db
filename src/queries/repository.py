"""Database repository for the sl_queries table."""

import json
import logging

from src.queries.schemas import Query
from src.storage.database import Database, load_json

logger = logging.getLogger(__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS sl_queries (
    id          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    tenant_id   INTEGER NOT NULL,
    name        TEXT NOT NULL DEFAULT '',
    keywords    JSONB NOT NULL DEFAULT '[]',
    is_active   BOOLEAN NOT NULL DEFAULT TRUE,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_sl_queries_tenant
    ON sl_queries(tenant_id);
"""


def _record_to_query(record) -> Query:
    keywords = load_json(record["keywords"], [])
    return Query(
        id=str(record["id"]),
        tenant_id=record["tenant_id"],
        name=record["name"] or "",
        keywords=[str(k) for k in keywords] if isinstance(keywords, list) else [],
        is_active=record["is_active"],
    )


class QueriesRepository:
    """Read access to the keyword queries that scope each tenant's syncs.

    Query CRUD belongs to the configuration layer.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the queries table and index (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Queries table ensured")

    async def insert(self, query: Query) -> str:
        """Insert a query row and return its id. Used by seeding and tests."""
        query_id = await self._db.fetchval(
            """
            INSERT INTO sl_queries (tenant_id, name, keywords, is_active)
            VALUES ($1, $2, $3::jsonb, $4)
            RETURNING id
            """,
            query.tenant_id,
            query.name,
            json.dumps(query.keywords),
            query.is_active,
        )
        return str(query_id)

    async def list_active(self, tenant_id: int) -> list[Query]:
        """Active queries of a tenant, oldest first."""
        rows = await self._db.fetch(
            """
            SELECT id, tenant_id, name, keywords, is_active
            FROM sl_queries
            WHERE tenant_id = $1 AND is_active = TRUE
            ORDER BY created_at ASC
            """,
            tenant_id,
        )
        return [_record_to_query(r) for r in rows]
