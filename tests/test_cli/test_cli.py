"""Tests for the social-listening CLI commands."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from src.analytics.schemas import AnalyticsRunResult
from src.cli import main
from src.connectors.errors import UnsupportedPlatformError
from src.sync.service import SweepResult, SyncResult, SyncService, TenantSyncResult


# ── Fixtures ──────────────────────────────────────────────


@pytest.fixture
def runner():
    return CliRunner()


def _mock_db():
    """Create a mock Database that connects and closes cleanly."""
    db = AsyncMock()
    db.connect = AsyncMock()
    db.close = AsyncMock()
    db.execute = AsyncMock(return_value="CREATE TABLE")
    db.fetch = AsyncMock(return_value=[])
    db.health_check = AsyncMock(return_value=True)
    return db


def _mock_service(**methods):
    service = AsyncMock(spec=SyncService)
    for name, value in methods.items():
        setattr(service, name, value)
    return service


# ── init-db ──────────────────────────────────────────────


class TestInitDb:
    def test_creates_tables(self, runner):
        mock_db = _mock_db()

        with patch("src.storage.database.Database", return_value=mock_db):
            result = runner.invoke(main, ["init-db"])

        assert result.exit_code == 0
        assert "Database initialized successfully" in result.output
        statements = " ".join(call.args[0] for call in mock_db.execute.call_args_list)
        assert "sl_sources" in statements
        assert "sl_mentions" in statements
        assert "sl_queries" in statements
        mock_db.close.assert_awaited_once()


# ── sync commands ────────────────────────────────────────


class TestSyncSource:
    def test_prints_result(self, runner):
        mock_db = _mock_db()
        service = _mock_service(
            sync_source=AsyncMock(
                return_value=SyncResult(
                    success=True,
                    source_id="src-1",
                    platform="mock",
                    mentions_fetched=3,
                    mentions_saved=2,
                    duplicates=1,
                )
            )
        )

        with patch("src.storage.database.Database", return_value=mock_db), \
             patch.object(SyncService, "from_database", return_value=service):
            result = runner.invoke(main, ["sync-source", "src-1"])

        assert result.exit_code == 0
        assert '"mentions_saved": 2' in result.output
        assert '"duplicates": 1' in result.output
        service.sync_source.assert_awaited_once_with("src-1")
        service.drain.assert_awaited_once()
        mock_db.close.assert_awaited_once()

    def test_failed_sync_exits_nonzero(self, runner):
        service = _mock_service(
            sync_source=AsyncMock(
                return_value=SyncResult(success=False, source_id="src-1", message="Source not found")
            )
        )

        with patch("src.storage.database.Database", return_value=_mock_db()), \
             patch.object(SyncService, "from_database", return_value=service):
            result = runner.invoke(main, ["sync-source", "src-1"])

        assert result.exit_code == 1
        assert "Source not found" in result.output

    def test_unsupported_platform(self, runner):
        mock_db = _mock_db()
        service = _mock_service(
            sync_source=AsyncMock(side_effect=UnsupportedPlatformError("myspace"))
        )

        with patch("src.storage.database.Database", return_value=mock_db), \
             patch.object(SyncService, "from_database", return_value=service):
            result = runner.invoke(main, ["sync-source", "src-1"])

        assert result.exit_code == 1
        assert "Unsupported platform: myspace" in result.output
        mock_db.close.assert_awaited_once()


class TestSyncTenant:
    def test_prints_totals_and_failures(self, runner):
        tenant_result = TenantSyncResult(tenant_id=7)
        tenant_result.add(SyncResult(success=True, source_id="a", mentions_saved=4))
        tenant_result.add(SyncResult(success=False, source_id="b", message="HTTP 500"))
        service = _mock_service(sync_tenant=AsyncMock(return_value=tenant_result))

        with patch("src.storage.database.Database", return_value=_mock_db()), \
             patch.object(SyncService, "from_database", return_value=service):
            result = runner.invoke(main, ["sync-tenant", "7"])

        assert result.exit_code == 0
        assert "Succeeded:   1" in result.output
        assert "Failed:      1" in result.output
        assert "b: HTTP 500" in result.output
        service.sync_tenant.assert_awaited_once_with(7)

    def test_tenant_id_must_be_integer(self, runner):
        result = runner.invoke(main, ["sync-tenant", "acme"])

        assert result.exit_code == 2


class TestSyncDue:
    def test_skipped_sweep(self, runner):
        service = _mock_service(
            sync_due_sources=AsyncMock(
                return_value=SweepResult(skipped=True, reason="auto_sync_disabled")
            )
        )

        with patch("src.storage.database.Database", return_value=_mock_db()), \
             patch.object(SyncService, "from_database", return_value=service):
            result = runner.invoke(main, ["sync-due"])

        assert result.exit_code == 0
        assert "Sweep skipped: auto_sync_disabled" in result.output

    def test_sweep_totals(self, runner):
        sweep = SweepResult(elapsed_seconds=1.5)
        sweep.add(SyncResult(success=True, source_id="a", mentions_saved=3))
        sweep.add(SyncResult(success=False, source_id="b", skipped=True))
        service = _mock_service(sync_due_sources=AsyncMock(return_value=sweep))

        with patch("src.storage.database.Database", return_value=_mock_db()), \
             patch.object(SyncService, "from_database", return_value=service):
            result = runner.invoke(main, ["sync-due"])

        assert result.exit_code == 0
        assert "Sources:     2" in result.output
        assert "Skipped:     1" in result.output
        assert "Elapsed:     1.50s" in result.output


# ── analytics ────────────────────────────────────────────


class TestAnalytics:
    def test_prints_results(self, runner):
        run_result = AnalyticsRunResult(
            started_at=datetime(2025, 6, 2, 12, 5, tzinfo=timezone.utc),
            tenants_processed=2,
            topics_updated=5,
            errors=[{"tenant_id": 3, "pass": "topics", "error": "timeout"}],
        )
        mock_job = AsyncMock()
        mock_job.run_now = AsyncMock(return_value=run_result)

        with patch("src.storage.database.Database", return_value=_mock_db()), \
             patch("src.analytics.job.AnalyticsJob", return_value=mock_job):
            result = runner.invoke(main, ["analytics"])

        assert result.exit_code == 0
        assert "Tenants processed:    2" in result.output
        assert "Topics updated:       5" in result.output
        assert "tenant 3 topics: timeout" in result.output

    def test_run_in_progress(self, runner):
        mock_job = AsyncMock()
        mock_job.run_now = AsyncMock(return_value=None)

        with patch("src.storage.database.Database", return_value=_mock_db()), \
             patch("src.analytics.job.AnalyticsJob", return_value=mock_job):
            result = runner.invoke(main, ["analytics"])

        assert result.exit_code == 1
        assert "Analytics run failed" in result.output


# ── diagnostics ──────────────────────────────────────────


class TestPlatforms:
    def test_lists_builtin_connectors(self, runner):
        result = runner.invoke(main, ["platforms"])

        assert result.exit_code == 0
        assert result.output.split() == ["mock", "reddit", "rss"]


class TestHealth:
    def test_healthy(self, runner):
        with patch("src.storage.database.Database", return_value=_mock_db()):
            result = runner.invoke(main, ["health"])

        assert result.exit_code == 0
        assert "✓ postgres: True" in result.output
        assert "All core services healthy!" in result.output

    def test_postgres_down(self, runner):
        mock_db = _mock_db()
        mock_db.connect = AsyncMock(side_effect=OSError("connection refused"))

        with patch("src.storage.database.Database", return_value=mock_db):
            result = runner.invoke(main, ["health"])

        assert result.exit_code == 1
        assert "✗ postgres: False" in result.output
