"""
Mock connector for testing and development.

Generates synthetic mentions that mimic real platform data. Output is
deterministic for a given source and window, so repeated syncs hit the
duplicate check instead of inserting new rows.

Useful for:
- Running the sync loop without API credentials
- Exercising analytics against a seeded tenant
- Development and debugging

Source config knobs:
    mentions_per_fetch: how many mentions to generate (default 10)
    topics: topic names attached round-robin
    keywords: terms mentioned round-robin in the generated content, together
        with the tenant query keywords passed to fetch_mentions
    fail_connection: make test_connection() report failure
    fail_fetch: make fetch_mentions() raise ConnectorConnectionError
"""

from datetime import datetime, timedelta, timezone

from src.connectors.base import BaseConnector
from src.connectors.errors import ConnectorConnectionError
from src.connectors.schemas import ConnectionTestResult, Mention, engagement_rate

SAMPLE_TEMPLATES = [
    "Really impressed with the new release, support was quick too.",
    "Anyone else seeing checkout errors today? Third time this week.",
    "Switched over last month and the onboarding was painless.",
    "Pricing page is confusing, not sure which plan I need.",
    "Great talk at the conference about their roadmap.",
    "The mobile app keeps logging me out after the update.",
]

# (handle, followers, verified, sentiment)
SAMPLE_AUTHORS = [
    ("product_hunter", 15000, True, 0.6),
    ("cx_daily", 8500, True, 0.2),
    ("angry_customer_99", 210, False, -0.7),
    ("tech_reviewer_jen", 45000, True, 0.4),
    ("random_user_123", 150, False, 0.0),
]


class MockConnector(BaseConnector):
    """Connector that fabricates mentions without any network access."""

    platform = "mock"

    async def test_connection(self) -> ConnectionTestResult:
        if self.config.get("fail_connection"):
            return ConnectionTestResult(success=False, message="Mock connection refused")
        return ConnectionTestResult(
            success=True,
            message="Mock connector ready",
            platform_info={"mentions_per_fetch": self._mentions_per_fetch},
        )

    @property
    def _mentions_per_fetch(self) -> int:
        return int(self.config.get("mentions_per_fetch", 10))

    @staticmethod
    def _content(index: int, terms: list[str]) -> str:
        text = SAMPLE_TEMPLATES[index % len(SAMPLE_TEMPLATES)]
        if terms:
            text = f"{text} #{terms[index % len(terms)]}"
        return text

    async def fetch_mentions(
        self,
        since: datetime,
        until: datetime | None = None,
        limit: int = 100,
        keywords: list[str] | None = None,
    ) -> list[Mention]:
        if self.config.get("fail_fetch"):
            raise ConnectorConnectionError("Mock fetch failed", platform=self.platform)

        topics = list(self.config.get("topics", []))
        terms = self.search_terms(keywords)
        end = until or datetime.now(timezone.utc)
        count = min(self._mentions_per_fetch, limit)

        mentions: list[Mention] = []
        for i in range(count):
            handle, followers, verified, sentiment = SAMPLE_AUTHORS[i % len(SAMPLE_AUTHORS)]
            likes, comments, shares = 10 * (i + 1), i + 1, i
            published_at = max(since, end - timedelta(minutes=i))

            mention = self._build_mention(
                external_id=f"mock-{self.source.id}-{i}",
                url=f"https://example.com/mock/{self.source.id}/{i}",
                content=self._content(i, terms),
                author_name=handle.replace("_", " ").title(),
                author_handle=handle,
                author_followers=followers,
                author_verified=verified,
                published_at=published_at,
                likes=likes,
                comments=comments,
                shares=shares,
                engagement_score=engagement_rate(likes, comments, shares, followers),
                sentiment_score=sentiment,
                topics=[topics[i % len(topics)]] if topics else [],
                raw_data={"generator": "mock", "index": i},
            )
            if mention is not None:
                mentions.append(mention)

        return mentions
