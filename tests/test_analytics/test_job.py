"""Tests for AnalyticsJob."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from src.analytics.config import AnalyticsConfig
from src.analytics.job import AnalyticsJob
from src.analytics.schemas import Competitor, InfluencerStats, TopicStats, TrendDirection

NOW = datetime(2025, 6, 2, 12, 5, tzinfo=timezone.utc)


@pytest.fixture
def repo() -> AsyncMock:
    repo = AsyncMock()
    repo.list_active_tenants.return_value = [1, 2]
    repo.topic_stats.return_value = [
        TopicStats(topic_id="t1", name="pricing", recent_count=2, week_count=168)
    ]
    repo.influencer_stats.return_value = [
        InfluencerStats(influencer_id="i1", handle="solo", follower_count=100, mention_count=2)
    ]
    repo.list_competitors.return_value = [
        Competitor(competitor_id="c1", name="Globex", keywords=["globex"]),
        Competitor(competitor_id="c2", name="Initech", keywords=["initech"]),
    ]
    repo.count_mentions.return_value = 50
    repo.count_keyword_mentions.side_effect = lambda tenant_id, since, keywords: (
        30 if keywords == ["globex"] else 20
    )
    return repo


@pytest.fixture
def config() -> AnalyticsConfig:
    return AnalyticsConfig(warmup_delay_seconds=None)


@pytest.fixture
def job(repo, config) -> AnalyticsJob:
    return AnalyticsJob(repo, config=config, clock=lambda: NOW)


class TestAnalyticsRun:
    @pytest.mark.asyncio
    async def test_all_passes_for_every_tenant(self, job, repo):
        result = await job.run_now()

        assert result.tenants_processed == 2
        assert result.topics_updated == 2
        assert result.influencers_updated == 2
        assert result.competitors_updated == 4
        assert result.errors == []
        assert result.started_at == NOW

    @pytest.mark.asyncio
    async def test_windows_derived_from_run_time(self, job, repo):
        await job.run_now()

        topic_call = repo.topic_stats.call_args_list[0]
        assert topic_call.kwargs["recent_since"] == NOW - timedelta(hours=1)
        assert topic_call.kwargs["baseline_since"] == NOW - timedelta(hours=168)
        assert repo.influencer_stats.call_args_list[0].kwargs["since"] == NOW - timedelta(days=30)
        assert repo.count_mentions.call_args_list[0].args == (1, NOW - timedelta(days=30))

    @pytest.mark.asyncio
    async def test_written_values(self, job, repo):
        await job.run_now()

        tenant, trend = repo.update_topic.call_args_list[0].args
        assert tenant == 1
        assert trend.is_trending is True
        assert trend.trend_direction == TrendDirection.UP

        _, score = repo.update_influencer.call_args_list[0].args
        assert score.influence_score == 100.0

        shares = {c.args[1].competitor_id: c.args[1].share_of_voice_pct for c in repo.update_competitor.call_args_list}
        assert shares == {"c1": 30.0, "c2": 20.0}

    @pytest.mark.asyncio
    async def test_failing_pass_isolated(self, job, repo):
        """A failed pass is recorded; other passes and tenants still run."""

        async def topic_stats(tenant_id, recent_since, baseline_since):
            if tenant_id == 1:
                raise RuntimeError("statement timeout")
            return [TopicStats(topic_id="t2", name="support")]

        repo.topic_stats.side_effect = topic_stats

        result = await job.run_now()

        assert result.errors == [{"tenant_id": 1, "pass": "topics", "error": "statement timeout"}]
        assert result.tenants_processed == 1
        assert result.topics_updated == 1
        assert result.influencers_updated == 2
        assert result.competitors_updated == 4

    @pytest.mark.asyncio
    async def test_tenant_listing_failure(self, job, repo):
        repo.list_active_tenants.side_effect = RuntimeError("connection refused")

        result = await job.run_now()

        assert result.tenants_processed == 0
        assert result.errors[0]["pass"] == "tenants"
        repo.topic_stats.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_competitors(self, job, repo):
        repo.list_competitors.return_value = []

        result = await job.run_now()

        assert result.competitors_updated == 0
        repo.count_mentions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_status_after_run(self, job):
        await job.run_now()

        status = job.get_status()

        assert status["cadence"] == "every 60 minutes (offset 5 minutes)"
        assert status["last_run_at"] == NOW.isoformat()
        assert status["last_result"]["tenants_processed"] == 2
