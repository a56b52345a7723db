"""Tests for SyncService."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from src.connectors.errors import UnsupportedPlatformError
from src.mentions.repository import PersistenceError
from src.queries.schemas import Query
from src.sources.schemas import SourceStatus
from src.sync.service import ALREADY_SYNCING, ActiveSyncRegistry, SyncService
from src.sync.settings_store import SyncSettings


def _status_calls(sources_repo) -> list[SourceStatus]:
    return [c.args[1] for c in sources_repo.update_status.call_args_list]


class TestActiveSyncRegistry:
    def test_single_winner(self, now):
        registry = ActiveSyncRegistry()

        assert registry.try_acquire("a", now) is True
        assert registry.try_acquire("a", now) is False
        assert "a" in registry
        assert len(registry) == 1

        registry.release("a")
        assert "a" not in registry
        assert registry.try_acquire("a", now) is True

    def test_snapshot_ordered_by_start(self, now):
        registry = ActiveSyncRegistry()
        registry.try_acquire("late", now)
        registry.try_acquire("early", now - timedelta(seconds=5))

        assert [a.source_id for a in registry.snapshot()] == ["early", "late"]


class TestSyncSource:
    """Tests for the single-source pipeline."""

    @pytest.mark.asyncio
    async def test_saves_new_mentions(
        self, service, add_source, sources_repo, mentions_repo, enrichment, now
    ):
        add_source(config={"external_ids": ["a", "b", "c"]})

        result = await service.sync_source("src-1")
        await service.drain()

        assert result.success is True
        assert result.mentions_fetched == 3
        assert result.mentions_saved == 3
        assert result.duplicates == 0
        assert mentions_repo.insert.await_count == 3

        inserted = mentions_repo.insert.call_args_list[0].args[0]
        assert inserted.tenant_id == 7
        assert inserted.source_id == "src-1"

        sources_repo.update_status.assert_awaited_once()
        call = sources_repo.update_status.call_args
        assert call.args == ("src-1", SourceStatus.CONNECTED)
        assert call.kwargs["synced_at"] == now
        assert call.kwargs["error_message"] is None

        enrichment.trigger_enrichment.assert_awaited_once_with(7, 3)

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(
        self, service, add_source, mentions_repo, enrichment, sources_repo
    ):
        """Mentions already stored are counted as duplicates and not re-inserted."""
        add_source(config={"external_ids": ["a", "b"]})
        mentions_repo.exists.return_value = True

        result = await service.sync_source("src-1")
        await service.drain()

        assert result.success is True
        assert result.mentions_saved == 0
        assert result.duplicates == 2
        mentions_repo.insert.assert_not_awaited()
        enrichment.trigger_enrichment.assert_not_awaited()
        assert _status_calls(sources_repo) == [SourceStatus.CONNECTED]

    @pytest.mark.asyncio
    async def test_window_starts_at_last_sync(self, service, add_source, now):
        calls: list = []
        last = now - timedelta(minutes=40)
        add_source(last_sync_at=last, config={"calls": calls})

        await service.sync_source("src-1")

        assert calls == [(last, None, 100)]

    @pytest.mark.asyncio
    async def test_never_synced_backfills(self, service, add_source, now):
        calls: list = []
        add_source(last_sync_at=None, config={"calls": calls})

        await service.sync_source("src-1", limit=25)

        assert calls == [(now - timedelta(days=7), None, 25)]

    @pytest.mark.asyncio
    async def test_unknown_source(self, service):
        result = await service.sync_source("missing")

        assert result.success is False
        assert result.message == "source not found"

    @pytest.mark.asyncio
    async def test_unsupported_platform_marks_error_and_raises(
        self, service, add_source, sources_repo
    ):
        add_source(platform="myspace")

        with pytest.raises(UnsupportedPlatformError):
            await service.sync_source("src-1")

        call = sources_repo.update_status.call_args
        assert call.args == ("src-1", SourceStatus.ERROR)
        assert "myspace" in call.kwargs["error_message"]
        assert service.get_sync_status("src-1").syncing is False

    @pytest.mark.asyncio
    async def test_rate_limited_source_skipped(self, service, add_source, sources_repo, now):
        calls: list = []
        add_source(
            rate_limit_remaining=0,
            rate_limit_reset_at=now + timedelta(minutes=2),
            config={"calls": calls},
        )

        result = await service.sync_source("src-1")

        assert result.success is False
        assert result.skipped is True
        assert result.message == "rate limited, resets in 120s"
        assert calls == []
        sources_repo.update_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exhausted_snapshot_without_reset_does_not_block(
        self, service, add_source, sources_repo
    ):
        """Without a reset time the stored snapshot is ignored and the sync runs."""
        calls: list = []
        add_source(
            rate_limit_remaining=0,
            rate_limit_reset_at=None,
            config={"calls": calls, "external_ids": ["a"]},
        )

        result = await service.sync_source("src-1")

        assert result.success is True
        assert result.skipped is False
        assert len(calls) == 1
        assert sources_repo.update_status.call_args.args == ("src-1", SourceStatus.CONNECTED)

    @pytest.mark.asyncio
    async def test_failed_connection_test_marks_error(self, service, add_source, sources_repo):
        calls: list = []
        add_source(config={"test_fails": "token revoked", "calls": calls})

        result = await service.sync_source("src-1")

        assert result.success is False
        assert result.message == "token revoked"
        assert calls == []
        call = sources_repo.update_status.call_args
        assert call.args == ("src-1", SourceStatus.ERROR)
        assert call.kwargs["error_message"] == "token revoked"
        assert call.kwargs["synced_at"] is None

    @pytest.mark.asyncio
    async def test_connector_error_marks_error(self, service, add_source, sources_repo):
        add_source(config={"fetch_error": "Reddit search failed: 503"})

        result = await service.sync_source("src-1")

        assert result.success is False
        assert result.message == "Reddit search failed: 503"
        assert _status_calls(sources_repo) == [SourceStatus.ERROR]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_contained(self, service, add_source, sources_repo):
        add_source(config={"crash": "unexpected payload"})

        result = await service.sync_source("src-1")

        assert result.success is False
        assert "unexpected payload" in result.message
        assert _status_calls(sources_repo) == [SourceStatus.ERROR]

    @pytest.mark.asyncio
    async def test_persistence_error_counted(
        self, service, add_source, mentions_repo, sources_repo
    ):
        add_source(config={"external_ids": ["a", "b", "c"]})
        mentions_repo.insert.side_effect = [
            "id-a",
            PersistenceError("insert failed", external_id="b"),
            "id-c",
        ]

        result = await service.sync_source("src-1")

        assert result.success is True
        assert result.mentions_saved == 2
        assert result.errors == 1
        assert _status_calls(sources_repo) == [SourceStatus.CONNECTED]

    @pytest.mark.asyncio
    async def test_status_write_failure_does_not_fail_sync(
        self, service, add_source, sources_repo
    ):
        add_source(config={"external_ids": ["a"]})
        sources_repo.update_status.side_effect = RuntimeError("db down")

        result = await service.sync_source("src-1")

        assert result.success is True
        assert result.mentions_saved == 1

    @pytest.mark.asyncio
    async def test_enrichment_failure_does_not_affect_result(
        self, service, add_source, enrichment
    ):
        add_source(config={"external_ids": ["a"]})
        enrichment.trigger_enrichment.side_effect = RuntimeError("enrichment down")

        result = await service.sync_source("src-1")
        await service.drain()

        assert result.success is True
        enrichment.trigger_enrichment.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_without_enrichment(self, sources_repo, mentions_repo, registry, add_source, now):
        service = SyncService(sources_repo, mentions_repo, registry=registry, clock=lambda: now)
        add_source(config={"external_ids": ["a"]})

        result = await service.sync_source("src-1")

        assert result.mentions_saved == 1


class TestQueryScoping:
    """Tenant queries feed the fetch keywords and tag saved mentions."""

    @pytest.fixture
    def queries_repo(self) -> AsyncMock:
        repo = AsyncMock()
        repo.list_active.return_value = [
            Query(id="q-brand", tenant_id=7, keywords=["acme", "Widget"]),
            Query(id="q-rival", tenant_id=7, keywords=["globex", "ACME"]),
        ]
        return repo

    @pytest.fixture
    def scoped_service(
        self, sources_repo, mentions_repo, registry, queries_repo, sync_config, now
    ) -> SyncService:
        return SyncService(
            sources=sources_repo,
            mentions=mentions_repo,
            registry=registry,
            config=sync_config,
            clock=lambda: now,
            queries=queries_repo,
        )

    @pytest.mark.asyncio
    async def test_keywords_passed_to_fetch(self, scoped_service, add_source, queries_repo):
        seen: list = []
        add_source(tenant_id=7, config={"keywords_seen": seen})

        await scoped_service.sync_source("src-1")

        queries_repo.list_active.assert_awaited_once_with(7)
        assert seen == [["acme", "Widget", "globex", "ACME"]]

    @pytest.mark.asyncio
    async def test_first_matching_query_tagged(self, scoped_service, add_source, mentions_repo):
        add_source(tenant_id=7, config={"external_ids": ["ACME-1", "globex-2", "other-3"]})

        result = await scoped_service.sync_source("src-1")

        assert result.mentions_saved == 3
        tagged = {
            call.args[0].external_id: call.args[0].query_id
            for call in mentions_repo.insert.call_args_list
        }
        assert tagged == {"ACME-1": "q-brand", "globex-2": "q-rival", "other-3": None}

    @pytest.mark.asyncio
    async def test_no_active_queries(self, scoped_service, add_source, queries_repo, mentions_repo):
        queries_repo.list_active.return_value = []
        seen: list = []
        add_source(tenant_id=7, config={"keywords_seen": seen, "external_ids": ["acme-1"]})

        await scoped_service.sync_source("src-1")

        assert seen == [None]
        assert mentions_repo.insert.call_args.args[0].query_id is None

    @pytest.mark.asyncio
    async def test_without_queries_repository(self, service, add_source, mentions_repo):
        seen: list = []
        add_source(config={"keywords_seen": seen, "external_ids": ["acme-1"]})

        await service.sync_source("src-1")

        assert seen == [None]
        assert mentions_repo.insert.call_args.args[0].query_id is None


class TestSingleFlight:
    """Concurrent syncs of one source."""

    @pytest.mark.asyncio
    async def test_concurrent_call_rejected(self, service, add_source, mentions_repo, now):
        gate = asyncio.Event()
        add_source(config={"gate": gate, "external_ids": ["a"]})

        first = asyncio.create_task(service.sync_source("src-1"))
        await asyncio.sleep(0)

        status = service.get_sync_status("src-1")
        assert status.syncing is True
        assert status.started_at == now
        assert status.to_dict()["duration_ms"] == 0

        second = await service.sync_source("src-1")
        assert second.success is False
        assert second.skipped is True
        assert second.message == ALREADY_SYNCING

        gate.set()
        result = await first

        assert result.success is True
        assert mentions_repo.insert.await_count == 1
        assert service.get_sync_status("src-1").to_dict() == {"syncing": False}

    @pytest.mark.asyncio
    async def test_other_sources_unaffected(self, service, add_source):
        gate = asyncio.Event()
        add_source("slow", config={"gate": gate})
        add_source("fast", config={"external_ids": ["x"]})

        slow = asyncio.create_task(service.sync_source("slow"))
        await asyncio.sleep(0)

        fast = await service.sync_source("fast")
        assert fast.success is True
        assert [a["source_id"] for a in service.active_syncs()] == ["slow"]

        gate.set()
        await slow
        assert service.active_syncs() == []

    @pytest.mark.asyncio
    async def test_trigger_source(self, service, add_source):
        gate = asyncio.Event()
        add_source(config={"gate": gate})

        ack = service.trigger_source("src-1")
        assert ack["accepted"] is True
        await asyncio.sleep(0)

        again = service.trigger_source("src-1")
        assert again["accepted"] is False
        assert again["message"] == ALREADY_SYNCING

        gate.set()
        await service.drain()
        assert service.get_sync_status("src-1").syncing is False


class TestSyncTenant:
    @pytest.mark.asyncio
    async def test_failures_isolated_and_aggregated(
        self, service, add_source, sources_repo, now
    ):
        ok = add_source("ok", last_sync_at=now - timedelta(hours=1), config={"external_ids": ["a", "b"]})
        broken = add_source("broken", last_sync_at=None, config={"fetch_error": "auth failed"})
        unsupported = add_source("legacy", platform="myspace", last_sync_at=now - timedelta(days=1))
        sources_repo.list_for_tenant_sync.return_value = [ok, broken, unsupported]

        result = await service.sync_tenant(7)

        assert result.tenant_id == 7
        assert result.sources_total == 3
        assert result.sources_succeeded == 1
        assert result.sources_failed == 2
        assert result.mentions_saved == 2
        # Never-synced first, then oldest
        assert [r.source_id for r in result.results] == ["broken", "legacy", "ok"]

    @pytest.mark.asyncio
    async def test_trigger_tenant(self, service, add_source, sources_repo):
        source = add_source(config={"external_ids": ["a"]})
        sources_repo.list_for_tenant_sync.return_value = [source]

        ack = service.trigger_tenant(7)
        await service.drain()

        assert ack == {"accepted": True, "tenant_id": 7, "message": "sync started"}
        sources_repo.list_for_tenant_sync.assert_awaited_once_with(7)


class TestSyncDueSources:
    @pytest.mark.asyncio
    async def test_disabled_short_circuits(self, service, sources_repo):
        store = service._settings_store = _settings_store(SyncSettings(auto_sync_enabled=False))

        result = await service.sync_due_sources()

        assert result.skipped is True
        assert result.reason == "auto sync disabled"
        store.load.assert_awaited_once()
        sources_repo.list_due.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_syncs_due_sources_oldest_first(self, service, add_source, sources_repo, now):
        recent = add_source("recent", last_sync_at=now - timedelta(minutes=20), config={"external_ids": ["r"]})
        never = add_source("never", last_sync_at=None, sync_interval_minutes=10_000, config={"external_ids": ["n"]})
        sources_repo.list_due.return_value = [recent, never]

        result = await service.sync_due_sources()

        assert result.skipped is False
        assert result.sources_total == 2
        assert result.sources_succeeded == 2
        assert result.mentions_saved == 2
        assert [c.args[0] for c in sources_repo.get_by_id.call_args_list] == ["never", "recent"]

    @pytest.mark.asyncio
    async def test_not_due_sources_filtered(self, service, add_source, sources_repo, now):
        fresh = add_source("fresh", last_sync_at=now - timedelta(minutes=10), sync_interval_minutes=15)
        sources_repo.list_due.return_value = [fresh]

        result = await service.sync_due_sources()

        assert result.sources_total == 0
        sources_repo.get_by_id.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_platform_allow_list_and_batch_cap(
        self, service, add_source, sources_repo, sync_config, now
    ):
        service._settings_store = _settings_store(
            SyncSettings(auto_sync_enabled=True, sync_platforms=["scripted"], max_mentions_per_sync=5)
        )
        sync_config.due_batch_size = 2
        due = [
            add_source(f"s{i}", last_sync_at=now - timedelta(hours=i + 1))
            for i in range(3)
        ]
        other = add_source("m", platform="mock", last_sync_at=None)
        sources_repo.list_due.return_value = due + [other]

        result = await service.sync_due_sources()

        call = sources_repo.list_due.call_args
        assert call.kwargs["platforms"] == ["scripted"]
        assert call.kwargs["limit"] == 2
        assert result.sources_total == 2
        assert [c.args[0] for c in sources_repo.get_by_id.call_args_list] == ["s2", "s1"]

    @pytest.mark.asyncio
    async def test_one_source_failure_does_not_stop_sweep(
        self, service, add_source, sources_repo, now
    ):
        broken = add_source("broken", last_sync_at=None, config={"crash": "boom"})
        ok = add_source("ok", last_sync_at=now - timedelta(hours=1), config={"external_ids": ["a"]})
        sources_repo.list_due.return_value = [broken, ok]

        result = await service.sync_due_sources()

        assert result.sources_failed == 1
        assert result.sources_succeeded == 1


def _settings_store(settings: SyncSettings):
    store = AsyncMock()
    store.load.return_value = settings
    return store
