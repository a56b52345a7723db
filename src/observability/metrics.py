"""
Prometheus metrics for monitoring the sync and analytics pipeline.

Defines and exposes metrics for:
- Sync attempts and latency per platform
- Mention persistence outcomes
- Connector errors
- Periodic task ticks (ran / skipped / failed)
- Analytics rows updated and pass failures
- Enrichment triggers

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for sync latency (in seconds); syncs make several HTTP calls
SYNC_LATENCY_BUCKETS = (0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0)

# Buckets for analytics run duration (in seconds)
RUN_DURATION_BUCKETS = (0.5, 1.0, 5.0, 15.0, 30.0, 60.0, 300.0, 900.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the social-listening service.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_sync("reddit", "success", latency=1.2)
        metrics.record_mentions("reddit", saved=10, duplicates=3)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Sync counters
        self.sync_attempts = Counter(
            "social_listening_sync_attempts_total",
            "Total source sync attempts",
            ["platform", "outcome"],  # success, failed, skipped
        )

        self.mentions_fetched = Counter(
            "social_listening_mentions_fetched_total",
            "Total mentions returned by connectors",
            ["platform"],
        )

        self.mentions_persisted = Counter(
            "social_listening_mentions_persisted_total",
            "Mentions by persistence outcome",
            ["platform", "result"],  # saved, duplicate, error
        )

        # Error counters
        self.connector_errors = Counter(
            "social_listening_connector_errors_total",
            "Total connector errors",
            ["platform", "error_type"],
        )

        # Latency histograms
        self.sync_latency = Histogram(
            "social_listening_sync_latency_seconds",
            "Time to sync a single source",
            ["platform"],
            buckets=SYNC_LATENCY_BUCKETS,
        )

        self.active_syncs = Gauge(
            "social_listening_active_syncs",
            "Number of source syncs currently in flight",
        )

        # Periodic tasks
        self.task_ticks = Counter(
            "social_listening_task_ticks_total",
            "Periodic task ticks by outcome",
            ["task", "outcome"],  # ran, skipped, failed
        )

        # Analytics
        self.analytics_rows_updated = Counter(
            "social_listening_analytics_rows_updated_total",
            "Rows updated by the analytics job",
            ["analysis"],  # topics, influencers, competitors
        )

        self.analytics_errors = Counter(
            "social_listening_analytics_errors_total",
            "Analytics pass failures",
            ["analysis"],
        )

        self.analytics_duration = Histogram(
            "social_listening_analytics_duration_seconds",
            "Duration of a full analytics run",
            buckets=RUN_DURATION_BUCKETS,
        )

        # Enrichment
        self.enrichment_triggers = Counter(
            "social_listening_enrichment_triggers_total",
            "Enrichment trigger attempts",
            ["outcome"],  # sent, disabled, failed
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_sync(
        self,
        platform: str,
        outcome: str,
        latency: float | None = None,
    ) -> None:
        """
        Record a sync attempt.

        Args:
            platform: Source platform
            outcome: success, failed or skipped
            latency: Optional sync duration in seconds
        """
        self.sync_attempts.labels(platform=platform, outcome=outcome).inc()
        if latency is not None:
            self.sync_latency.labels(platform=platform).observe(latency)

    def record_mentions(
        self,
        platform: str,
        fetched: int = 0,
        saved: int = 0,
        duplicates: int = 0,
        errors: int = 0,
    ) -> None:
        """Record the persistence outcome of one sync's mentions."""
        if fetched:
            self.mentions_fetched.labels(platform=platform).inc(fetched)
        for result, count in (("saved", saved), ("duplicate", duplicates), ("error", errors)):
            if count:
                self.mentions_persisted.labels(platform=platform, result=result).inc(count)

    def record_connector_error(self, platform: str, error_type: str) -> None:
        self.connector_errors.labels(platform=platform, error_type=error_type).inc()

    def set_active_syncs(self, count: int) -> None:
        self.active_syncs.set(count)

    def record_tick(self, task: str, outcome: str) -> None:
        """
        Record a periodic task tick.

        Args:
            task: Task name (sync_sweep, analytics)
            outcome: ran, skipped or failed
        """
        self.task_ticks.labels(task=task, outcome=outcome).inc()

    def record_analytics_run(
        self,
        duration: float,
        topics: int = 0,
        influencers: int = 0,
        competitors: int = 0,
    ) -> None:
        """Record a completed analytics run."""
        self.analytics_duration.observe(duration)
        for analysis, count in (
            ("topics", topics),
            ("influencers", influencers),
            ("competitors", competitors),
        ):
            if count:
                self.analytics_rows_updated.labels(analysis=analysis).inc(count)

    def record_analytics_error(self, analysis: str) -> None:
        self.analytics_errors.labels(analysis=analysis).inc()

    def record_enrichment(self, outcome: str) -> None:
        self.enrichment_triggers.labels(outcome=outcome).inc()


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
