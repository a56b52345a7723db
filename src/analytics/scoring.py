"""
Pure scoring functions for the analytics passes.

Kept free of I/O so the formulas can be checked directly:

    influence raw = followers * 0.3
                  + mentions * 10 * 0.2
                  + avg_engagement * 100 * 0.3
                  + verified * 1000 * 0.2

Influence scores are normalised to 0-100 against the tenant's own
highest raw score (floored at 1), so they are only comparable within
a tenant.
"""

import math

from src.analytics.schemas import (
    CompetitorShare,
    InfluencerScore,
    InfluencerStats,
    TopicStats,
    TopicTrend,
    TrendDirection,
)

FOLLOWER_WEIGHT = 0.3
MENTION_WEIGHT = 10 * 0.2
ENGAGEMENT_WEIGHT = 100 * 0.3
VERIFIED_WEIGHT = 1000 * 0.2

# Share of followers assumed to see a single mention
REACH_RATE = 0.03


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_topic_trend(
    stats: TopicStats,
    baseline_hours: int = 168,
    threshold: float = 1.5,
) -> TopicTrend:
    """
    Compare a topic's recent volume with its hourly baseline.

    Args:
        stats: Recent and baseline-window counts for the topic
        baseline_hours: Length of the baseline window in hours
        threshold: Multiple of the baseline that counts as trending
    """
    baseline = stats.week_count / baseline_hours
    recent = stats.recent_count

    if recent > baseline:
        direction = TrendDirection.UP
    elif recent < baseline:
        direction = TrendDirection.DOWN
    else:
        direction = TrendDirection.STABLE

    change_pct = None
    if baseline > 0:
        change_pct = round((recent - baseline) / baseline * 100, 1)

    return TopicTrend(
        topic_id=stats.topic_id,
        is_trending=baseline > 0 and recent >= baseline * threshold,
        trend_direction=direction,
        trend_change_pct=change_pct,
        avg_sentiment=stats.avg_sentiment,
        mention_count=stats.week_count,
        last_seen_at=stats.last_mention_at,
    )


def influencer_raw_score(
    followers: int,
    mentions: int,
    avg_engagement: float,
    verified: bool,
) -> float:
    return (
        followers * FOLLOWER_WEIGHT
        + mentions * MENTION_WEIGHT
        + avg_engagement * ENGAGEMENT_WEIGHT
        + (1 if verified else 0) * VERIFIED_WEIGHT
    )


def reach_estimate(followers: int, mentions: int) -> int:
    """Estimated audience reached; an influencer with no mentions counts once."""
    return round_half_up(followers * REACH_RATE * max(mentions, 1))


def score_influencers(stats: list[InfluencerStats]) -> list[InfluencerScore]:
    """Score a tenant's influencers relative to the highest raw score among them."""
    if not stats:
        return []

    raw = [
        influencer_raw_score(s.follower_count, s.mention_count, s.avg_engagement, s.is_verified)
        for s in stats
    ]
    max_raw = max(max(raw), 1.0)

    return [
        InfluencerScore(
            influencer_id=s.influencer_id,
            influence_score=round(r / max_raw * 100, 2),
            mention_count=s.mention_count,
            avg_sentiment=round(s.avg_sentiment, 3) if s.avg_sentiment is not None else None,
            reach_estimate=reach_estimate(s.follower_count, s.mention_count),
            last_mention_at=s.last_mention_at,
        )
        for s, r in zip(stats, raw)
    ]


def share_of_voice(own_count: int, competitor_counts: dict[str, int]) -> list[CompetitorShare]:
    """
    Each competitor's share of the combined conversation.

    The total is the tenant's own mention count plus every competitor's
    count; the tenant's own share is implied and not returned.
    """
    total = own_count + sum(competitor_counts.values())
    return [
        CompetitorShare(
            competitor_id=competitor_id,
            mention_count=count,
            share_of_voice_pct=round(count / total * 100, 2) if total > 0 else 0.0,
        )
        for competitor_id, count in competitor_counts.items()
    ]
