"""
RSS / Atom feed connector.

Monitors one or more feed URLs for new items. Handles:
- RSS 2.0 and Atom parsing (feedparser)
- HTML description cleaning
- Optional keyword filtering
- Feed categories as mention topics

Source shape:
    credentials.feed_urls or config.feed_urls: list of feed URLs
    config.keywords: optional; keep only items containing one of these terms
        (tenant query keywords passed to fetch_mentions are added to them)
    config.max_items: max items per feed per run (default 50)
"""

import calendar
import hashlib
import html
import logging
import re
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlparse

import feedparser
from bs4 import BeautifulSoup

from src.connectors.base import BaseConnector, within_window
from src.connectors.errors import ConnectorConnectionError, PartialFetchError
from src.connectors.http_client import HTTPClient, HTTPClientError
from src.connectors.schemas import ConnectionTestResult, Mention

logger = logging.getLogger(__name__)

USER_AGENT = "SocialListening/1.0 (RSS Monitor)"
DEFAULT_MAX_ITEMS = 50
MAX_CONTENT_LENGTH = 2000
MAX_TOPICS = 10


def _as_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(v) for v in value if v]


def clean_html(html_content: str) -> str:
    """Extract plain text from an HTML fragment."""
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()

    text = html.unescape(soup.get_text(separator=" "))
    return re.sub(r"\s+", " ", text).strip()


def _matches_terms(mention: Mention, terms: list[str]) -> bool:
    """No terms keeps everything; otherwise any lowercase term must occur."""
    if not terms:
        return True
    text = mention.content.lower()
    return any(term in text for term in terms)


def stable_id(value: str) -> str:
    """Deterministic id for entries without guid or link."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


class RSSConnector(BaseConnector):
    """
    Feed connector for news sites, blogs and newsletters.

    A feed that cannot be fetched is a partial failure: its items are
    omitted and the remaining feeds are still processed. Only when every
    configured feed fails is the sync treated as a connection failure.
    """

    platform = "rss"

    @property
    def feed_urls(self) -> list[str]:
        return _as_list(self.credentials.get("feed_urls") or self.config.get("feed_urls"))

    @property
    def max_items(self) -> int:
        try:
            return int(self.config.get("max_items") or DEFAULT_MAX_ITEMS)
        except (TypeError, ValueError):
            return DEFAULT_MAX_ITEMS

    def _client(self) -> HTTPClient:
        return HTTPClient(
            on_response=self.observe_response,
            headers={
                "User-Agent": USER_AGENT,
                "Accept": "application/rss+xml, application/atom+xml, text/xml, application/xml, */*",
            },
        )

    async def test_connection(self) -> ConnectionTestResult:
        """Fetch the first feed and check that it parses as RSS or Atom."""
        urls = self.feed_urls
        if not urls:
            return ConnectionTestResult(success=False, message="No feed URLs configured")

        url = urls[0]
        try:
            async with self._client() as client:
                response = await client.get(url)
        except HTTPClientError as e:
            return ConnectionTestResult(success=False, message=str(e))

        feed = feedparser.parse(response.text)
        if not feed.get("version"):
            return ConnectionTestResult(
                success=False,
                message=f"{url} does not appear to be an RSS/Atom feed",
            )

        return ConnectionTestResult(
            success=True,
            message=f"Found {len(feed.entries)} items in first feed",
            platform_info={
                "feed_title": feed.feed.get("title", ""),
                "feed_count": len(urls),
            },
        )

    async def fetch_mentions(
        self,
        since: datetime,
        until: datetime | None = None,
        limit: int = 100,
        keywords: list[str] | None = None,
    ) -> list[Mention]:
        urls = self.feed_urls
        terms = [t.lower() for t in self.search_terms(keywords)]
        if not urls:
            raise ConnectorConnectionError("No feed URLs configured", platform=self.platform)

        mentions: list[Mention] = []
        failed = 0

        async with self._client() as client:
            for url in urls:
                if len(mentions) >= limit:
                    break
                try:
                    entries = await self._fetch_feed(client, url)
                except PartialFetchError as e:
                    failed += 1
                    self._skip_partial(e)
                    continue

                for entry in entries[: self.max_items]:
                    if len(mentions) >= limit:
                        break
                    mention = self._transform(entry, url)
                    if mention is None:
                        continue
                    if not within_window(mention.published_at, since, until):
                        continue
                    if not _matches_terms(mention, terms):
                        continue
                    mentions.append(mention)

        if failed == len(urls):
            raise ConnectorConnectionError(
                f"All {failed} feeds failed to load", platform=self.platform
            )

        logger.debug(f"Fetched {len(mentions)} items from {len(urls) - failed} feeds")
        return mentions

    async def _fetch_feed(self, client: HTTPClient, url: str) -> list[dict[str, Any]]:
        try:
            response = await client.get(url)
        except HTTPClientError as e:
            raise PartialFetchError(f"Feed {url} failed: {e}", platform=self.platform) from e

        feed = feedparser.parse(response.text)
        if feed.bozo and not feed.entries:
            raise PartialFetchError(f"Feed {url} could not be parsed", platform=self.platform)
        return list(feed.entries)

    def _transform(self, entry: dict[str, Any], feed_url: str) -> Mention | None:
        """Transform a feedparser entry to a Mention."""
        title = clean_html(entry.get("title", ""))

        description = ""
        if entry.get("content"):
            description = entry["content"][0].get("value", "")
        elif entry.get("summary"):
            description = entry.get("summary", "")
        description = clean_html(description)

        content = f"{title}: {description}" if description else title
        if not content:
            return None

        feed_domain = urlparse(feed_url).hostname or "rss"
        feed_domain = feed_domain.removeprefix("www.")
        author_name = entry.get("author") or feed_domain
        author_handle = re.sub(r"[^a-z0-9_.]", "", author_name.lower()) or feed_domain

        link = entry.get("link") or ""
        external_id = entry.get("id") or entry.get("guid") or link or stable_id(title)

        categories = [t.get("term", "") for t in entry.get("tags", []) if t.get("term")]

        return self._build_mention(
            external_id=external_id,
            url=link or feed_url,
            content=content[:MAX_CONTENT_LENGTH],
            post_type="article",
            author_name=author_name,
            author_handle=author_handle,
            published_at=self._parse_timestamp(entry),
            topics=categories[:MAX_TOPICS],
            raw_data={
                "title": title,
                "feed_url": feed_url,
                "categories": categories,
            },
        )

    def _parse_timestamp(self, entry: dict[str, Any]) -> datetime:
        """Parse timestamp from a feed entry; feedparser normalizes to UTC."""
        for field in ("published_parsed", "updated_parsed", "created_parsed"):
            parsed = entry.get(field)
            if parsed:
                return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
        return datetime.now(timezone.utc)
