"""Derived analytics over stored mentions: trends, influencers, share of voice."""

from src.analytics.config import AnalyticsConfig
from src.analytics.job import AnalyticsJob
from src.analytics.repository import AnalyticsRepository
from src.analytics.schemas import AnalyticsRunResult, TrendDirection

__all__ = [
    "AnalyticsConfig",
    "AnalyticsJob",
    "AnalyticsRepository",
    "AnalyticsRunResult",
    "TrendDirection",
]
