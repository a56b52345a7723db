"""
Sync service - pulls mentions from configured sources into sl_mentions.

For each source: single-flight guard, connector resolution, connection
test, windowed fetch scoped by the tenant's query keywords, query tagging,
existence-checked persistence, status write-back and a fire-and-forget
enrichment trigger. Tenant syncs and due sweeps run
sources one at a time and aggregate the per-source outcomes.

Features:
- At most one in-flight sync per source (concurrent callers are rejected)
- Failures stay contained to the source that caused them
- Runtime settings re-read at every sweep
- Background triggers for manual syncs
"""

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.connectors.base import BaseConnector
from src.connectors.errors import ConnectorError, UnsupportedPlatformError
from src.connectors.registry import ConnectorRegistry, get_registry
from src.mentions.repository import MentionsRepository, PersistenceError
from src.observability.metrics import get_metrics
from src.observability.tracing import get_tracer, traced
from src.queries.repository import QueriesRepository
from src.queries.schemas import Query, match_query, query_keywords
from src.sources.repository import SourcesRepository
from src.sources.schemas import Source, SourceStatus, staleness_key
from src.storage.database import Database
from src.sync.config import SyncConfig
from src.sync.enrichment import EnrichmentClient, EnrichmentTrigger
from src.sync.settings_store import SyncSettings, SyncSettingsRepository

logger = structlog.get_logger(__name__)

ALREADY_SYNCING = "already syncing"

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started_at: datetime, now: datetime) -> int:
    return max(0, int((now - started_at).total_seconds() * 1000))


@dataclass
class ActiveSync:
    """An in-flight source sync."""

    source_id: str
    started_at: datetime


class ActiveSyncRegistry:
    """
    Keyed set of in-flight syncs.

    try_acquire() is a single test-and-set under a lock, so two callers
    racing for the same source can never both win.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: dict[str, ActiveSync] = {}

    def try_acquire(self, source_id: str, now: datetime) -> bool:
        with self._lock:
            if source_id in self._active:
                return False
            self._active[source_id] = ActiveSync(source_id=source_id, started_at=now)
            return True

    def release(self, source_id: str) -> None:
        with self._lock:
            self._active.pop(source_id, None)

    def get(self, source_id: str) -> ActiveSync | None:
        with self._lock:
            return self._active.get(source_id)

    def snapshot(self) -> list[ActiveSync]:
        with self._lock:
            return sorted(self._active.values(), key=lambda a: a.started_at)

    def __contains__(self, source_id: object) -> bool:
        with self._lock:
            return source_id in self._active

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)


@dataclass
class SyncResult:
    """Outcome of syncing one source."""

    success: bool
    source_id: str
    message: str = ""
    platform: str | None = None
    skipped: bool = False
    mentions_fetched: int = 0
    mentions_saved: int = 0
    duplicates: int = 0
    errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SyncTotals:
    """Aggregated outcome of several source syncs."""

    sources_total: int = 0
    sources_succeeded: int = 0
    sources_failed: int = 0
    sources_skipped: int = 0
    mentions_fetched: int = 0
    mentions_saved: int = 0
    duplicates: int = 0
    errors: int = 0

    def add(self, result: SyncResult) -> None:
        self.sources_total += 1
        if result.success:
            self.sources_succeeded += 1
        elif result.skipped:
            self.sources_skipped += 1
        else:
            self.sources_failed += 1
        self.mentions_fetched += result.mentions_fetched
        self.mentions_saved += result.mentions_saved
        self.duplicates += result.duplicates
        self.errors += result.errors

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TenantSyncResult(SyncTotals):
    """Outcome of syncing every active source of a tenant."""

    tenant_id: int = 0
    results: list[SyncResult] = field(default_factory=list)

    def add(self, result: SyncResult) -> None:
        super().add(result)
        self.results.append(result)


@dataclass
class SweepResult(SyncTotals):
    """Outcome of one scheduled sweep over due sources."""

    skipped: bool = False
    reason: str | None = None
    elapsed_seconds: float = 0.0


@dataclass
class SyncStatus:
    """Whether a source is currently syncing, and for how long."""

    syncing: bool
    started_at: datetime | None = None
    duration_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"syncing": self.syncing}
        if self.syncing:
            data["started_at"] = self.started_at.isoformat() if self.started_at else None
            data["duration_ms"] = self.duration_ms
        return data


class SyncService:
    """
    Orchestrates mention syncs for individual sources, tenants and due sweeps.

    Usage:
        service = SyncService.from_database(db)
        result = await service.sync_source(source_id)
        sweep = await service.sync_due_sources()
    """

    def __init__(
        self,
        sources: SourcesRepository,
        mentions: MentionsRepository,
        registry: ConnectorRegistry | None = None,
        settings_store: SyncSettingsRepository | None = None,
        enrichment: EnrichmentTrigger | None = None,
        config: SyncConfig | None = None,
        queries: QueriesRepository | None = None,
        clock: Clock | None = None,
    ):
        """
        Initialize sync service.

        Args:
            sources: Source loading and status persistence
            mentions: Mention existence checks and inserts
            registry: Connector registry (default: built-in connectors)
            settings_store: Runtime settings; None uses config values only
            enrichment: Enrichment trigger; None disables the trigger
            config: Deployment defaults (default: from env)
            clock: Source of "now" (default: UTC wall clock)
            queries: Tenant keyword queries; None syncs without query keywords
        """
        self._sources = sources
        self._mentions = mentions
        self._registry = registry or get_registry()
        self._settings_store = settings_store
        self._enrichment = enrichment
        self._config = config or SyncConfig()
        self._clock = clock or _utc_now
        self._queries = queries
        self._active = ActiveSyncRegistry()
        self._background: set[asyncio.Task] = set()
        self._metrics = get_metrics()
        self._tracer = get_tracer("sync")

    @classmethod
    def from_database(
        cls,
        database: Database,
        config: SyncConfig | None = None,
        registry: ConnectorRegistry | None = None,
    ) -> "SyncService":
        """Wire the service with repositories over one database."""
        config = config or SyncConfig()
        return cls(
            sources=SourcesRepository(database),
            mentions=MentionsRepository(database),
            registry=registry,
            settings_store=SyncSettingsRepository(database, config),
            enrichment=EnrichmentClient(),
            config=config,
            queries=QueriesRepository(database),
        )

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def registry(self) -> ConnectorRegistry:
        return self._registry

    async def load_settings(self) -> SyncSettings:
        """Effective runtime settings; falls back to config when unavailable."""
        if self._settings_store is None:
            return SyncSettings.from_config(self._config)
        return await self._settings_store.load()

    # ------------------------------------------------------------------
    # Single source
    # ------------------------------------------------------------------

    async def sync_source(self, source_id: str, limit: int | None = None) -> SyncResult:
        """
        Sync one source.

        Args:
            source_id: sl_sources.id
            limit: Max mentions to fetch (default: current max_mentions_per_sync)

        Returns:
            SyncResult; connector and persistence failures are reported here

        Raises:
            UnsupportedPlatformError: No connector for the source's platform
                (the source is marked error first)
        """
        if not self._active.try_acquire(source_id, self._clock()):
            logger.info("Sync rejected, already in progress", source_id=source_id)
            self._metrics.record_sync("unknown", "skipped")
            return SyncResult(
                success=False,
                source_id=source_id,
                message=ALREADY_SYNCING,
                skipped=True,
            )

        self._metrics.set_active_syncs(len(self._active))
        try:
            if limit is None:
                limit = (await self.load_settings()).max_mentions_per_sync
            with traced(self._tracer, "sync_source", {"source.id": source_id}) as span:
                result = await self._sync_locked(source_id, limit)
                span.set_attribute("sync.success", result.success)
                span.set_attribute("sync.mentions_saved", result.mentions_saved)
                return result
        finally:
            self._active.release(source_id)
            self._metrics.set_active_syncs(len(self._active))

    async def _sync_locked(self, source_id: str, limit: int) -> SyncResult:
        start = time.monotonic()
        source = await self._sources.get_by_id(source_id)
        if source is None:
            logger.warning("Sync requested for unknown source", source_id=source_id)
            return SyncResult(success=False, source_id=source_id, message="source not found")

        log = logger.bind(source_id=source.id, tenant_id=source.tenant_id, platform=source.platform)
        platform = source.platform.lower()

        try:
            connector = self._registry.create(source, status_store=self._sources)
        except UnsupportedPlatformError as e:
            log.warning("Unsupported platform")
            self._metrics.record_sync(platform, "failed")
            await self._sources.update_status(source.id, SourceStatus.ERROR, error_message=str(e))
            raise

        now = self._clock()
        if connector.is_rate_limited(now):
            wait = connector.get_time_until_reset(now)
            log.info("Source still rate limited", resets_in_seconds=int(wait.total_seconds()))
            self._metrics.record_sync(platform, "skipped")
            return SyncResult(
                success=False,
                source_id=source.id,
                platform=platform,
                skipped=True,
                message=f"rate limited, resets in {int(wait.total_seconds())}s",
            )

        queries = await self._load_queries(source.tenant_id)
        keywords = query_keywords(queries)
        if keywords:
            log.debug("Query keywords loaded", queries=len(queries), keywords=len(keywords))

        try:
            test = await connector.test_connection()
            if not test.success:
                message = test.message or "Connection test failed"
                log.warning("Connection test failed", error=message)
                await self._write_status(connector, SourceStatus.ERROR, message)
                self._metrics.record_sync(platform, "failed", time.monotonic() - start)
                return SyncResult(
                    success=False, source_id=source.id, platform=platform, message=message
                )

            since = source.last_sync_at or now - timedelta(days=self._config.backfill_days)
            mentions = await connector.fetch_mentions(
                since=since, until=None, limit=limit, keywords=keywords or None
            )
        except ConnectorError as e:
            log.warning("Connector failed", error=str(e), error_type=type(e).__name__)
            self._metrics.record_connector_error(platform, type(e).__name__)
            await self._write_status(connector, SourceStatus.ERROR, str(e))
            self._metrics.record_sync(platform, "failed", time.monotonic() - start)
            return SyncResult(success=False, source_id=source.id, platform=platform, message=str(e))
        except Exception as e:
            log.error("Unexpected connector failure", error=str(e), exc_info=True)
            self._metrics.record_connector_error(platform, type(e).__name__)
            await self._write_status(connector, SourceStatus.ERROR, str(e))
            self._metrics.record_sync(platform, "failed", time.monotonic() - start)
            return SyncResult(success=False, source_id=source.id, platform=platform, message=str(e))

        result = SyncResult(
            success=True,
            source_id=source.id,
            platform=platform,
            mentions_fetched=len(mentions),
        )
        for mention in mentions:
            matched = match_query(queries, mention.content)
            mention = mention.model_copy(
                update={
                    "tenant_id": source.tenant_id,
                    "source_id": source.id,
                    "query_id": matched.id if matched else None,
                }
            )
            try:
                if await self._mentions.exists(
                    mention.tenant_id, mention.platform, mention.external_id
                ):
                    result.duplicates += 1
                    continue
                await self._mentions.insert(mention)
                result.mentions_saved += 1
            except PersistenceError as e:
                result.errors += 1
                log.warning("Failed to persist mention", external_id=e.external_id, error=str(e))

        await self._write_status(connector, SourceStatus.CONNECTED, None)
        result.message = f"Synced {result.mentions_saved} new mentions"

        if result.mentions_saved > 0:
            self._schedule_enrichment(source.tenant_id, result.mentions_saved)

        latency = time.monotonic() - start
        self._metrics.record_sync(platform, "success", latency)
        self._metrics.record_mentions(
            platform,
            fetched=result.mentions_fetched,
            saved=result.mentions_saved,
            duplicates=result.duplicates,
            errors=result.errors,
        )
        log.info(
            "Source synced",
            fetched=result.mentions_fetched,
            saved=result.mentions_saved,
            duplicates=result.duplicates,
            errors=result.errors,
            latency_seconds=round(latency, 3),
        )
        return result

    async def _load_queries(self, tenant_id: int) -> list[Query]:
        if self._queries is None:
            return []
        return await self._queries.list_active(tenant_id)

    async def _write_status(
        self,
        connector: BaseConnector,
        status: SourceStatus,
        error_message: str | None,
    ) -> None:
        """Persist connector health; a failed write is logged, not raised."""
        try:
            await connector.update_source_status(status, error_message, now=self._clock())
        except Exception as e:
            logger.error(
                "Failed to update source status",
                source_id=connector.source.id,
                status=status.value,
                error=str(e),
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    def _schedule_enrichment(self, tenant_id: int, new_mention_count: int) -> None:
        if self._enrichment is None:
            return
        self._spawn(self._run_enrichment(tenant_id, new_mention_count))

    async def _run_enrichment(self, tenant_id: int, new_mention_count: int) -> None:
        try:
            sent = await self._enrichment.trigger_enrichment(tenant_id, new_mention_count)
        except Exception as e:
            self._metrics.record_enrichment("failed")
            logger.warning("Enrichment trigger failed", tenant_id=tenant_id, error=str(e))
            return
        self._metrics.record_enrichment("sent" if sent else "disabled")

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for background work (triggers, enrichment) to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def _sync_contained(self, source: Source, limit: int) -> SyncResult:
        """sync_source() for batch callers: every failure becomes a result."""
        try:
            return await self.sync_source(source.id, limit=limit)
        except UnsupportedPlatformError as e:
            return SyncResult(
                success=False, source_id=source.id, platform=source.platform, message=str(e)
            )
        except Exception as e:
            logger.error("Source sync crashed", source_id=source.id, error=str(e), exc_info=True)
            return SyncResult(
                success=False, source_id=source.id, platform=source.platform, message=str(e)
            )

    async def sync_tenant(self, tenant_id: int) -> TenantSyncResult:
        """Sync every non-error source of a tenant, least recently synced first."""
        settings = await self.load_settings()
        sources = sorted(await self._sources.list_for_tenant_sync(tenant_id), key=staleness_key)

        result = TenantSyncResult(tenant_id=tenant_id)
        for source in sources:
            result.add(await self._sync_contained(source, settings.max_mentions_per_sync))

        logger.info(
            "Tenant synced",
            tenant_id=tenant_id,
            sources=result.sources_total,
            succeeded=result.sources_succeeded,
            failed=result.sources_failed,
            saved=result.mentions_saved,
        )
        return result

    async def sync_due_sources(self) -> SweepResult:
        """
        Sync every connected source whose interval has elapsed.

        Honors auto_sync_enabled and the sync_platforms allow-list, and
        never syncs more than due_batch_size sources per sweep.
        """
        start = time.monotonic()
        settings = await self.load_settings()
        if not settings.auto_sync_enabled:
            logger.info("Auto sync disabled, skipping sweep")
            return SweepResult(skipped=True, reason="auto sync disabled")

        now = self._clock()
        platforms = settings.sync_platforms or None
        candidates = await self._sources.list_due(
            now, platforms=platforms, limit=self._config.due_batch_size
        )
        due = [
            s
            for s in candidates
            if s.is_due(now) and (platforms is None or s.platform.lower() in platforms)
        ]
        due.sort(key=staleness_key)
        due = due[: self._config.due_batch_size]

        result = SweepResult()
        for source in due:
            result.add(await self._sync_contained(source, settings.max_mentions_per_sync))

        result.elapsed_seconds = time.monotonic() - start
        logger.info(
            "Due sweep complete",
            due=len(due),
            succeeded=result.sources_succeeded,
            failed=result.sources_failed,
            skipped=result.sources_skipped,
            saved=result.mentions_saved,
            elapsed_seconds=round(result.elapsed_seconds, 3),
        )
        return result

    # ------------------------------------------------------------------
    # Status and manual triggers
    # ------------------------------------------------------------------

    def get_sync_status(self, source_id: str) -> SyncStatus:
        active = self._active.get(source_id)
        if active is None:
            return SyncStatus(syncing=False)
        return SyncStatus(
            syncing=True,
            started_at=active.started_at,
            duration_ms=_elapsed_ms(active.started_at, self._clock()),
        )

    def active_syncs(self) -> list[dict[str, Any]]:
        now = self._clock()
        return [
            {
                "source_id": a.source_id,
                "started_at": a.started_at.isoformat(),
                "elapsed_ms": _elapsed_ms(a.started_at, now),
            }
            for a in self._active.snapshot()
        ]

    def trigger_source(self, source_id: str) -> dict[str, Any]:
        """Start a source sync in the background and acknowledge immediately."""
        if source_id in self._active:
            return {"accepted": False, "source_id": source_id, "message": ALREADY_SYNCING}
        self._spawn(self._run_triggered_source(source_id))
        return {"accepted": True, "source_id": source_id, "message": "sync started"}

    def trigger_tenant(self, tenant_id: int) -> dict[str, Any]:
        """Start a tenant sync in the background and acknowledge immediately."""
        self._spawn(self._run_triggered_tenant(tenant_id))
        return {"accepted": True, "tenant_id": tenant_id, "message": "sync started"}

    async def _run_triggered_source(self, source_id: str) -> None:
        try:
            result = await self.sync_source(source_id)
        except Exception as e:
            logger.error("Triggered sync failed", source_id=source_id, error=str(e))
            return
        logger.info("Triggered sync finished", **result.to_dict())

    async def _run_triggered_tenant(self, tenant_id: int) -> None:
        try:
            result = await self.sync_tenant(tenant_id)
        except Exception as e:
            logger.error("Triggered tenant sync failed", tenant_id=tenant_id, error=str(e))
            return
        logger.info(
            "Triggered tenant sync finished",
            tenant_id=tenant_id,
            succeeded=result.sources_succeeded,
            failed=result.sources_failed,
            saved=result.mentions_saved,
        )
