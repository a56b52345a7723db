"""Shared fixtures for sync tests."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from src.connectors.base import BaseConnector
from src.connectors.errors import ConnectorConnectionError
from src.connectors.mock import MockConnector
from src.connectors.registry import ConnectorRegistry
from src.connectors.schemas import ConnectionTestResult
from src.sync.config import SyncConfig
from src.sync.service import SyncService


class ScriptedConnector(BaseConnector):
    """
    Connector driven entirely by its source's config.

    Config keys:
        external_ids: ids of the mentions to return
        test_fails: message for a failed connection test
        fetch_error: message for a ConnectorConnectionError from fetch
        crash: message for a RuntimeError from fetch
        gate: asyncio.Event that fetch waits on
        calls: list that receives (since, until, limit) per fetch
        keywords_seen: list that receives the keywords argument per fetch
    """

    platform = "scripted"

    async def test_connection(self) -> ConnectionTestResult:
        if self.config.get("test_fails"):
            return ConnectionTestResult(success=False, message=self.config["test_fails"])
        return ConnectionTestResult(success=True)

    async def fetch_mentions(self, since, until=None, limit=100, keywords=None):
        if "calls" in self.config:
            self.config["calls"].append((since, until, limit))
        if "keywords_seen" in self.config:
            self.config["keywords_seen"].append(keywords)
        gate: asyncio.Event | None = self.config.get("gate")
        if gate is not None:
            await gate.wait()
        if self.config.get("fetch_error"):
            raise ConnectorConnectionError(self.config["fetch_error"], platform=self.platform)
        if self.config.get("crash"):
            raise RuntimeError(self.config["crash"])

        mentions = []
        for i, external_id in enumerate(self.config.get("external_ids", [])):
            mention = self._build_mention(
                external_id=external_id,
                content=f"Mention {external_id}",
                published_at=since + timedelta(minutes=i + 1),
            )
            if mention is not None:
                mentions.append(mention)
        return mentions[:limit]


@pytest.fixture
def registry() -> ConnectorRegistry:
    registry = ConnectorRegistry()
    registry.register(ScriptedConnector)
    registry.register(MockConnector)
    return registry


@pytest.fixture
def sources_repo() -> AsyncMock:
    """SourcesRepository stand-in; get_by_id resolves from ``sources_repo.rows``."""
    repo = AsyncMock()
    repo.rows = {}
    repo.get_by_id.side_effect = lambda source_id: repo.rows.get(source_id)
    repo.list_for_tenant_sync.return_value = []
    repo.list_due.return_value = []
    return repo


@pytest.fixture
def mentions_repo() -> AsyncMock:
    repo = AsyncMock()
    repo.exists.return_value = False
    repo.insert.return_value = "mention-id"
    return repo


@pytest.fixture
def enrichment() -> AsyncMock:
    trigger = AsyncMock()
    trigger.trigger_enrichment.return_value = True
    return trigger


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(
        auto_sync_enabled=True,
        sync_platforms=[],
        max_mentions_per_sync=100,
        due_batch_size=50,
        backfill_days=7,
        warmup_delay_seconds=None,
    )


@pytest.fixture
def service(sources_repo, mentions_repo, registry, enrichment, sync_config, now) -> SyncService:
    return SyncService(
        sources=sources_repo,
        mentions=mentions_repo,
        registry=registry,
        enrichment=enrichment,
        config=sync_config,
        clock=lambda: now,
    )


@pytest.fixture
def add_source(sources_repo, make_source):
    """Create a scripted source and make it resolvable by id."""

    def _add(source_id: str = "src-1", **overrides):
        overrides.setdefault("platform", "scripted")
        source = make_source(id=source_id, **overrides)
        sources_repo.rows[source.id] = source
        return source

    return _add
