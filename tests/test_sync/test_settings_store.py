"""Tests for SyncSettingsRepository."""

import json
from unittest.mock import AsyncMock

import pytest

from src.sync.config import SyncConfig
from src.sync.settings_store import GLOBAL_TENANT, SyncSettingsRepository


@pytest.fixture
def config() -> SyncConfig:
    return SyncConfig(auto_sync_enabled=True, sync_platforms=["reddit"], max_mentions_per_sync=100)


class TestLoad:
    @pytest.mark.asyncio
    async def test_falls_back_to_config(self, mock_database: AsyncMock, config) -> None:
        repo = SyncSettingsRepository(mock_database, config)

        settings = await repo.load()

        assert settings.auto_sync_enabled is True
        assert settings.sync_platforms == ["reddit"]
        assert settings.max_mentions_per_sync == 100
        args = mock_database.fetch.call_args[0]
        assert args[1] == GLOBAL_TENANT

    @pytest.mark.asyncio
    async def test_stored_values_override(self, mock_database: AsyncMock, config) -> None:
        mock_database.fetch.return_value = [
            {"setting_key": "auto_sync_enabled", "setting_value": "false"},
            {"setting_key": "sync_platforms", "setting_value": ["RSS", " mock "]},
            {"setting_key": "max_mentions_per_sync", "setting_value": "25"},
        ]
        repo = SyncSettingsRepository(mock_database, config)

        settings = await repo.load()

        assert settings.auto_sync_enabled is False
        assert settings.sync_platforms == ["rss", "mock"]
        assert settings.max_mentions_per_sync == 25

    @pytest.mark.asyncio
    async def test_malformed_value_ignored(self, mock_database: AsyncMock, config) -> None:
        mock_database.fetch.return_value = [
            {"setting_key": "max_mentions_per_sync", "setting_value": '"lots"'},
        ]
        repo = SyncSettingsRepository(mock_database, config)

        settings = await repo.load()

        assert settings.max_mentions_per_sync == 100

    @pytest.mark.asyncio
    async def test_comma_separated_platforms(self, mock_database: AsyncMock, config) -> None:
        mock_database.fetch.return_value = [
            {"setting_key": "sync_platforms", "setting_value": '"reddit, rss"'},
        ]
        repo = SyncSettingsRepository(mock_database, config)

        settings = await repo.load()

        assert settings.sync_platforms == ["reddit", "rss"]


class TestSet:
    @pytest.mark.asyncio
    async def test_upserts_json(self, mock_database: AsyncMock, config) -> None:
        repo = SyncSettingsRepository(mock_database, config)

        await repo.set("sync_platforms", ["reddit", "rss"])

        args = mock_database.execute.call_args[0]
        assert "ON CONFLICT (tenant_id, setting_key)" in args[0]
        assert args[1] == GLOBAL_TENANT
        assert args[2] == "sync_platforms"
        assert json.loads(args[3]) == ["reddit", "rss"]


def test_config_normalizes_platforms():
    config = SyncConfig(sync_platforms=[" Reddit", "", "RSS"])
    assert config.sync_platforms == ["reddit", "rss"]
