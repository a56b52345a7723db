"""
Command-line interface for social-listening.

Provides commands to run the sync scheduler and analytics job, trigger
one-off syncs, initialize the database, and run diagnostic checks.

Usage:
    social-listening run                  # Scheduler + analytics job
    social-listening sync-source <id>     # Sync one source now
    social-listening sync-tenant <id>     # Sync a tenant's sources now
    social-listening sync-due             # Run one due-source sweep
    social-listening analytics            # Run analytics once
    social-listening init-db              # Initialize database
    social-listening health               # Check service health
"""

import asyncio
import json
import signal
import sys
from typing import Any

import click

from src.config.settings import get_settings
from src.observability.logging import bind_context, setup_logging
from src.observability.metrics import get_metrics


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Social Listening - multi-platform mention sync and analytics."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()

    # Initialize tracing if enabled
    settings = get_settings()
    if settings.tracing_enabled:
        from src.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


def _echo_json(data: dict[str, Any]) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@main.command("init-db")
def init_db() -> None:
    """Initialize the database schema."""
    from src.analytics.repository import AnalyticsRepository
    from src.mentions.repository import MentionsRepository
    from src.queries.repository import QueriesRepository
    from src.sources.repository import SourcesRepository
    from src.storage.database import Database
    from src.sync.settings_store import SyncSettingsRepository

    async def run():
        db = Database()
        await db.connect()

        try:
            await SourcesRepository(db).create_table()
            await QueriesRepository(db).create_table()
            await MentionsRepository(db).create_table()
            await SyncSettingsRepository(db).create_table()
            await AnalyticsRepository(db).create_tables()
            click.echo("Database initialized successfully")
        finally:
            await db.close()

    asyncio.run(run())


@main.command()
@click.option("--analytics/--no-analytics", default=True, help="Run the hourly analytics job")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def run(analytics: bool, metrics: bool, metrics_port: int | None) -> None:
    """Run the sync scheduler (and analytics job) until interrupted."""
    from src.analytics.job import AnalyticsJob
    from src.analytics.repository import AnalyticsRepository
    from src.services.sync_scheduler import SyncScheduler
    from src.storage.database import Database
    from src.sync.service import SyncService

    async def run_services():
        db = Database()
        await db.connect()

        service = SyncService.from_database(db)
        scheduler = SyncScheduler(service)
        job = AnalyticsJob(AnalyticsRepository(db)) if analytics else None

        if metrics:
            get_metrics().start_server(port=metrics_port)

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)

        await scheduler.start()
        if job is not None:
            await job.start()

        try:
            await stop_event.wait()
        finally:
            click.echo("Shutting down...")
            await scheduler.stop()
            if job is not None:
                await job.stop()
            await service.drain()
            await db.close()

    asyncio.run(run_services())


@main.command("sync-source")
@click.argument("source_id")
def sync_source(source_id: str) -> None:
    """Sync a single source now and print the result."""
    from src.connectors.errors import UnsupportedPlatformError
    from src.storage.database import Database
    from src.sync.service import SyncService

    bind_context(source_id=source_id)

    async def run():
        db = Database()
        await db.connect()

        try:
            service = SyncService.from_database(db)
            try:
                result = await service.sync_source(source_id)
            except UnsupportedPlatformError as e:
                click.echo(click.style(str(e), fg="red"))
                sys.exit(1)
            await service.drain()
        finally:
            await db.close()

        _echo_json(result.to_dict())
        if not result.success:
            sys.exit(1)

    asyncio.run(run())


@main.command("sync-tenant")
@click.argument("tenant_id", type=int)
def sync_tenant(tenant_id: int) -> None:
    """Sync every active source of a tenant."""
    from src.storage.database import Database
    from src.sync.service import SyncService

    bind_context(tenant_id=tenant_id)

    async def run():
        db = Database()
        await db.connect()

        try:
            service = SyncService.from_database(db)
            result = await service.sync_tenant(tenant_id)
            await service.drain()
        finally:
            await db.close()

        click.echo(f"\nTenant {tenant_id} sync:")
        click.echo(f"  Sources:     {result.sources_total}")
        click.echo(f"  Succeeded:   {result.sources_succeeded}")
        click.echo(f"  Failed:      {result.sources_failed}")
        click.echo(f"  Skipped:     {result.sources_skipped}")
        click.echo(f"  Fetched:     {result.mentions_fetched}")
        click.echo(f"  Saved:       {result.mentions_saved}")
        click.echo(f"  Duplicates:  {result.duplicates}")
        click.echo(f"  Errors:      {result.errors}")

        failures = [r for r in result.results if not r.success and not r.skipped]
        if failures:
            click.echo("\nFailures:")
            for r in failures:
                click.echo(click.style(f"  - {r.source_id}: {r.message}", fg="red"))

    asyncio.run(run())


@main.command("sync-due")
def sync_due() -> None:
    """Run one sweep over all due sources."""
    from src.storage.database import Database
    from src.sync.service import SyncService

    async def run():
        db = Database()
        await db.connect()

        try:
            service = SyncService.from_database(db)
            result = await service.sync_due_sources()
            await service.drain()
        finally:
            await db.close()

        if result.skipped:
            click.echo(f"Sweep skipped: {result.reason}")
            return

        click.echo("\nDue sweep:")
        click.echo(f"  Sources:     {result.sources_total}")
        click.echo(f"  Succeeded:   {result.sources_succeeded}")
        click.echo(f"  Failed:      {result.sources_failed}")
        click.echo(f"  Skipped:     {result.sources_skipped}")
        click.echo(f"  Saved:       {result.mentions_saved}")
        click.echo(f"  Duplicates:  {result.duplicates}")
        click.echo(f"  Elapsed:     {result.elapsed_seconds:.2f}s")

    asyncio.run(run())


@main.command()
def analytics() -> None:
    """Run the analytics computation once."""
    from src.analytics.job import AnalyticsJob
    from src.analytics.repository import AnalyticsRepository
    from src.storage.database import Database

    async def run():
        db = Database()
        await db.connect()

        try:
            job = AnalyticsJob(AnalyticsRepository(db))
            result = await job.run_now()
        finally:
            await db.close()

        if result is None:
            click.echo(click.style("Analytics run failed", fg="red"))
            sys.exit(1)

        click.echo("\nAnalytics Results:")
        click.echo(f"  Tenants processed:    {result.tenants_processed}")
        click.echo(f"  Topics updated:       {result.topics_updated}")
        click.echo(f"  Influencers updated:  {result.influencers_updated}")
        click.echo(f"  Competitors updated:  {result.competitors_updated}")
        click.echo(f"  Errors:               {len(result.errors)}")
        click.echo(f"  Elapsed:              {result.duration_seconds:.2f}s")

        if result.errors:
            click.echo("\nErrors:")
            for err in result.errors:
                click.echo(click.style(
                    f"  - tenant {err['tenant_id']} {err['pass']}: {err['error']}", fg="red"
                ))

    asyncio.run(run())


@main.command()
def platforms() -> None:
    """List platforms with a registered connector."""
    from src.connectors.registry import get_registry

    for platform in get_registry().supported_platforms:
        click.echo(platform)


@main.command()
def health() -> None:
    """Check health of all dependencies."""
    import structlog
    logger = structlog.get_logger()

    async def check():
        results: dict[str, bool] = {}

        # Check PostgreSQL
        try:
            from src.storage.database import Database
            db = Database()
            await db.connect()
            results["postgres"] = await db.health_check()
            await db.close()
        except Exception as e:
            results["postgres"] = False
            logger.error("Postgres health check failed", error=str(e))

        settings = get_settings()
        results["reddit_configured"] = settings.reddit_configured
        results["enrichment_configured"] = settings.enrichment_configured

        click.echo("\nHealth Check Results:")
        click.echo("-" * 40)

        for name, status in results.items():
            icon = "✓" if status else "✗"
            color = "green" if status else "red"
            click.echo(click.style(f"  {icon} {name}: {status}", fg=color))

        click.echo("-" * 40)

        if results["postgres"]:
            click.echo(click.style("All core services healthy!", fg="green"))
            sys.exit(0)
        else:
            click.echo(click.style("Some services unhealthy!", fg="red"))
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
