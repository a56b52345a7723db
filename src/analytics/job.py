"""Hourly analytics job: topic trends, influencer scores and share of voice.

For every tenant with at least one stored mention, three independent passes
recompute derived values from sl_mentions:

1. Topic trends: last-hour volume against the 7-day hourly baseline
2. Influencer scores: weighted score normalised within the tenant (30 days)
3. Share of voice: competitor keyword matches against the tenant's own
   volume (30 days)

A failing pass is recorded against its tenant and the remaining passes and
tenants still run. Overlapping runs are skipped, never queued.
"""

import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.analytics.config import AnalyticsConfig
from src.analytics.repository import AnalyticsRepository
from src.analytics.schemas import AnalyticsRunResult
from src.analytics.scoring import compute_topic_trend, score_influencers, share_of_voice
from src.observability.metrics import get_metrics
from src.observability.tracing import get_tracer, traced
from src.services.periodic import PeriodicTask

logger = structlog.get_logger(__name__)


class AnalyticsJob:
    """
    Periodic recomputation of per-tenant analytics.

    Usage:
        job = AnalyticsJob(AnalyticsRepository(db))
        await job.start()      # hourly at :05
        result = await job.run_now()
    """

    def __init__(
        self,
        repository: AnalyticsRepository,
        config: AnalyticsConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._repo = repository
        self._config = config or AnalyticsConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._metrics = get_metrics()
        self._tracer = get_tracer("analytics")
        self._task = PeriodicTask(
            name="analytics",
            func=self._run,
            interval=timedelta(minutes=self._config.interval_minutes),
            offset=timedelta(minutes=self._config.offset_minutes),
            warmup_delay=self._config.warmup_delay_seconds,
            clock=self._clock,
        )

    async def start(self) -> None:
        await self._task.start()

    async def stop(self) -> None:
        await self._task.stop()

    async def run_now(self) -> AnalyticsRunResult | None:
        """Run immediately; None when a run is already in progress."""
        return await self._task.run_now()

    def get_status(self) -> dict[str, Any]:
        last = self._task.last_result
        return {
            "running": self._task.running,
            "in_flight": self._task.in_flight,
            "cadence": self._task.cadence,
            "last_run_at": self._task.last_run_at.isoformat() if self._task.last_run_at else None,
            "last_result": last.to_dict() if last is not None else None,
            "skipped_ticks": self._task.skipped_ticks,
        }

    async def _run(self) -> AnalyticsRunResult:
        now = self._clock()
        result = AnalyticsRunResult(started_at=now)
        start = time.monotonic()
        logger.info("Starting analytics computation")

        try:
            tenants = await self._repo.list_active_tenants()
        except Exception as e:
            logger.error("Failed to list tenants", error=str(e), exc_info=True)
            result.errors.append({"tenant_id": None, "pass": "tenants", "error": str(e)})
            result.duration_seconds = time.monotonic() - start
            return result

        for tenant_id in tenants:
            failed = False
            for name, analysis in (
                ("topics", self.update_topic_trends),
                ("influencers", self.update_influencer_scores),
                ("competitors", self.update_share_of_voice),
            ):
                try:
                    with traced(self._tracer, f"analytics.{name}", {"tenant.id": tenant_id}):
                        updated = await analysis(tenant_id, now)
                except Exception as e:
                    failed = True
                    self._metrics.record_analytics_error(name)
                    logger.error(
                        "Tenant analytics pass failed",
                        tenant_id=tenant_id,
                        analysis=name,
                        error=str(e),
                        exc_info=True,
                    )
                    result.errors.append({"tenant_id": tenant_id, "pass": name, "error": str(e)})
                    continue

                if name == "topics":
                    result.topics_updated += updated
                elif name == "influencers":
                    result.influencers_updated += updated
                else:
                    result.competitors_updated += updated

            if not failed:
                result.tenants_processed += 1

        result.duration_seconds = time.monotonic() - start
        self._metrics.record_analytics_run(
            result.duration_seconds,
            topics=result.topics_updated,
            influencers=result.influencers_updated,
            competitors=result.competitors_updated,
        )
        logger.info(
            "Analytics computation complete",
            tenants=len(tenants),
            tenants_processed=result.tenants_processed,
            topics_updated=result.topics_updated,
            influencers_updated=result.influencers_updated,
            competitors_updated=result.competitors_updated,
            errors=len(result.errors),
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    async def update_topic_trends(self, tenant_id: int, now: datetime) -> int:
        """Recompute trend fields for every topic of the tenant."""
        stats = await self._repo.topic_stats(
            tenant_id,
            recent_since=now - timedelta(hours=self._config.recent_window_hours),
            baseline_since=now - timedelta(hours=self._config.baseline_window_hours),
        )
        for topic in stats:
            trend = compute_topic_trend(
                topic,
                baseline_hours=self._config.baseline_window_hours,
                threshold=self._config.trend_threshold,
            )
            await self._repo.update_topic(tenant_id, trend)
        return len(stats)

    async def update_influencer_scores(self, tenant_id: int, now: datetime) -> int:
        """Rescore every influencer of the tenant from scratch."""
        stats = await self._repo.influencer_stats(
            tenant_id, since=now - timedelta(days=self._config.influencer_window_days)
        )
        scores = score_influencers(stats)
        for score in scores:
            await self._repo.update_influencer(tenant_id, score)
        return len(scores)

    async def update_share_of_voice(self, tenant_id: int, now: datetime) -> int:
        """Recompute each competitor's share of the tenant's conversation."""
        competitors = await self._repo.list_competitors(tenant_id)
        if not competitors:
            return 0

        since = now - timedelta(days=self._config.share_of_voice_window_days)
        own_count = await self._repo.count_mentions(tenant_id, since)
        counts = {
            c.competitor_id: await self._repo.count_keyword_mentions(tenant_id, since, c.keywords)
            for c in competitors
        }

        shares = share_of_voice(own_count, counts)
        for share in shares:
            await self._repo.update_competitor(tenant_id, share)
        return len(shares)
