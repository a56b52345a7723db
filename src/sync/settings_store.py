"""Runtime sync settings stored in the sl_settings key/value table."""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from src.storage.database import Database, load_json
from src.sync.config import SyncConfig

logger = logging.getLogger(__name__)

AUTO_SYNC_ENABLED = "auto_sync_enabled"
SYNC_PLATFORMS = "sync_platforms"
MAX_MENTIONS_PER_SYNC = "max_mentions_per_sync"

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS sl_settings (
    tenant_id     INTEGER NOT NULL DEFAULT 0,
    setting_key   TEXT NOT NULL,
    setting_value JSONB NOT NULL,
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (tenant_id, setting_key)
);
"""

# Global settings live under tenant 0
GLOBAL_TENANT = 0


@dataclass
class SyncSettings:
    """Effective settings for one sweep."""

    auto_sync_enabled: bool = True
    sync_platforms: list[str] = field(default_factory=list)
    max_mentions_per_sync: int = 100

    @classmethod
    def from_config(cls, config: SyncConfig) -> "SyncSettings":
        return cls(
            auto_sync_enabled=config.auto_sync_enabled,
            sync_platforms=list(config.sync_platforms),
            max_mentions_per_sync=config.max_mentions_per_sync,
        )


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _as_platforms(value: Any) -> list[str]:
    if isinstance(value, str):
        value = value.split(",")
    return [str(p).strip().lower() for p in value or [] if str(p).strip()]


class SyncSettingsRepository:
    """Reads and writes the global sync settings."""

    def __init__(self, database: Database, config: SyncConfig | None = None) -> None:
        self._db = database
        self._config = config or SyncConfig()

    async def create_table(self) -> None:
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Settings table ensured")

    async def load(self) -> SyncSettings:
        """Current settings; keys absent from the table use SyncConfig values."""
        settings = SyncSettings.from_config(self._config)
        rows = await self._db.fetch(
            """
            SELECT setting_key, setting_value FROM sl_settings
            WHERE tenant_id = $1 AND setting_key = ANY($2::text[])
            """,
            GLOBAL_TENANT,
            [AUTO_SYNC_ENABLED, SYNC_PLATFORMS, MAX_MENTIONS_PER_SYNC],
        )

        for row in rows:
            key = row["setting_key"]
            value = load_json(row["setting_value"])
            try:
                if key == AUTO_SYNC_ENABLED:
                    settings.auto_sync_enabled = _as_bool(value)
                elif key == SYNC_PLATFORMS:
                    settings.sync_platforms = _as_platforms(value)
                elif key == MAX_MENTIONS_PER_SYNC:
                    settings.max_mentions_per_sync = max(1, int(value))
            except (TypeError, ValueError):
                logger.warning(f"Ignoring malformed setting {key}={value!r}")

        return settings

    async def set(self, key: str, value: Any) -> None:
        """Upsert a global setting."""
        await self._db.execute(
            """
            INSERT INTO sl_settings (tenant_id, setting_key, setting_value, updated_at)
            VALUES ($1, $2, $3::jsonb, NOW())
            ON CONFLICT (tenant_id, setting_key)
            DO UPDATE SET setting_value = EXCLUDED.setting_value, updated_at = NOW()
            """,
            GLOBAL_TENANT,
            key,
            json.dumps(value),
        )
