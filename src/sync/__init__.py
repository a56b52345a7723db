"""Sync orchestration: pulling mentions from sources into the store."""

from src.sync.config import SyncConfig
from src.sync.enrichment import EnrichmentClient
from src.sync.service import (
    ActiveSyncRegistry,
    SweepResult,
    SyncResult,
    SyncService,
    SyncStatus,
    TenantSyncResult,
)
from src.sync.settings_store import SyncSettings, SyncSettingsRepository

__all__ = [
    "ActiveSyncRegistry",
    "EnrichmentClient",
    "SweepResult",
    "SyncConfig",
    "SyncResult",
    "SyncService",
    "SyncSettings",
    "SyncSettingsRepository",
    "SyncStatus",
    "TenantSyncResult",
]
