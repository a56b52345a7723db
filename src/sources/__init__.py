"""Sources: configured platform feeds and their sync state."""

from src.sources.repository import SourcesRepository
from src.sources.schemas import RateLimitSnapshot, Source, SourceStatus, staleness_key

__all__ = [
    "RateLimitSnapshot",
    "Source",
    "SourceStatus",
    "SourcesRepository",
    "staleness_key",
]
