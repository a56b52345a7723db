"""
Reddit API connector.

Uses the OAuth API to search for keywords and monitor subreddits.
Handles:
- OAuth2 authentication (user token from credentials, or app-only token)
- Rate-limit headers (x-ratelimit-remaining / x-ratelimit-reset)
- Keyword search across configured subreddits
- Optional comment fetching per post

Source shape:
    credentials.access_token: user OAuth token (optional)
    config.keywords: search terms, joined with OR together with the
        tenant query keywords passed to fetch_mentions
    config.subreddits: subreddits to monitor for new posts
    config.include_comments: also fetch top comments of matched posts
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any

from src.config.settings import get_settings
from src.connectors.base import BaseConnector, within_window
from src.connectors.errors import ConnectorConnectionError, PartialFetchError
from src.connectors.http_client import HTTPClient, HTTPClientError
from src.connectors.schemas import ConnectionTestResult, Mention

logger = logging.getLogger(__name__)

REDDIT_API_BASE = "https://oauth.reddit.com"
REDDIT_TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
COMMENTS_PER_POST = 5


def clean_reddit_markdown(text: str) -> str:
    """
    Clean Reddit-specific markdown formatting.

    Args:
        text: Raw Reddit text with markdown

    Returns:
        Cleaned plain text
    """
    # Remove blockquotes
    text = re.sub(r"^>+\s*", "", text, flags=re.MULTILINE)

    # Remove bold/italic markers
    text = re.sub(r"\*{1,2}([^*]+)\*{1,2}", r"\1", text)

    # Remove links but keep text
    text = re.sub(r"\[([^\]]+)\]\([^)]+\)", r"\1", text)

    # Remove code blocks
    text = re.sub(r"```[^`]*```", "", text)

    # Remove strikethrough
    text = re.sub(r"~~([^~]+)~~", r"\1", text)

    # Remove heading markers
    text = re.sub(r"^#{1,6}\s+", "", text, flags=re.MULTILINE)

    return text


class RedditConnector(BaseConnector):
    """
    Reddit connector for keyword and subreddit monitoring.

    Content Handling:
        - Posts: title + selftext
        - Comments: body, only when include_comments is set
        - upvote_ratio is used as the engagement rate

    A subreddit listing or a post's comments that cannot be fetched are
    partial failures. Auth failures and a failed keyword search abort the
    sync with ConnectorConnectionError.
    """

    platform = "reddit"

    def __init__(self, source, status_store=None) -> None:
        super().__init__(source, status_store)
        settings = get_settings()
        self._client_id = settings.reddit_client_id
        self._client_secret = settings.reddit_client_secret
        self._user_agent = settings.reddit_user_agent
        self._access_token: str | None = self.credentials.get("access_token")

    @property
    def subreddits(self) -> list[str]:
        return [s for s in self.config.get("subreddits", []) if s]

    def _client(self) -> HTTPClient:
        return HTTPClient(
            on_response=self.observe_response,
            headers={"User-Agent": self._user_agent},
        )

    async def _get_access_token(self, client: HTTPClient) -> str:
        """
        Return the user token, or obtain an app-only token.

        Raises:
            ConnectorConnectionError: When no credentials are available or the
                token exchange fails
        """
        if self._access_token:
            return self._access_token

        if not self._client_id or not self._client_secret:
            raise ConnectorConnectionError(
                "Reddit credentials not configured", platform=self.platform
            )

        try:
            response = await client.post(
                REDDIT_TOKEN_URL,
                auth=(self._client_id, self._client_secret),
                data={"grant_type": "client_credentials"},
            )
        except HTTPClientError as e:
            raise ConnectorConnectionError(
                f"Reddit token request failed: {e}", platform=self.platform
            ) from e

        token = response.json().get("access_token")
        if not token:
            raise ConnectorConnectionError(
                "Reddit token response had no access_token", platform=self.platform
            )
        self._access_token = token
        return token

    async def _get(
        self,
        client: HTTPClient,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        token = await self._get_access_token(client)
        response = await client.get(
            f"{REDDIT_API_BASE}{path}",
            params=params,
            headers={"Authorization": f"Bearer {token}"},
        )
        return response.json()

    async def test_connection(self) -> ConnectionTestResult:
        try:
            async with self._client() as client:
                if self.credentials.get("access_token"):
                    me = await self._get(client, "/api/v1/me")
                    return ConnectionTestResult(
                        success=True,
                        message=f"Connected as u/{me.get('name')}",
                        platform_info={
                            "username": me.get("name"),
                            "karma": me.get("total_karma"),
                        },
                    )
                await self._get_access_token(client)
        except (ConnectorConnectionError, HTTPClientError) as e:
            return ConnectionTestResult(success=False, message=str(e))

        return ConnectionTestResult(
            success=True,
            message="Connected with application credentials",
            platform_info={"auth": "application"},
        )

    async def fetch_mentions(
        self,
        since: datetime,
        until: datetime | None = None,
        limit: int = 100,
        keywords: list[str] | None = None,
    ) -> list[Mention]:
        mentions: dict[str, Mention] = {}
        terms = self.search_terms(keywords)
        include_comments = bool(self.config.get("include_comments", False))

        async with self._client() as client:
            posts: list[dict[str, Any]] = []

            if terms:
                posts.extend(await self._search_keywords(client, terms, limit))

            for subreddit in self.subreddits:
                try:
                    posts.extend(await self._subreddit_new(client, subreddit, limit))
                except PartialFetchError as e:
                    self._skip_partial(e)

            for post in posts:
                if len(mentions) >= limit:
                    break
                mention = self._transform(post)
                if mention is None or mention.external_id in mentions:
                    continue
                if not within_window(mention.published_at, since, until):
                    continue
                mentions[mention.external_id] = mention

                if not include_comments:
                    continue
                try:
                    comments = await self._post_comments(client, post["id"])
                except PartialFetchError as e:
                    comments = self._skip_partial(e)
                for raw in comments:
                    if len(mentions) >= limit:
                        break
                    comment = self._transform(raw)
                    if comment is None or comment.external_id in mentions:
                        continue
                    if within_window(comment.published_at, since, until):
                        mentions[comment.external_id] = comment

        logger.debug(f"Fetched {len(mentions)} Reddit mentions")
        return list(mentions.values())

    async def _search_keywords(
        self, client: HTTPClient, terms: list[str], limit: int
    ) -> list[dict[str, Any]]:
        subreddit = "+".join(self.subreddits) if self.subreddits else "all"
        params = {
            "q": " OR ".join(terms),
            "sort": "new",
            "limit": min(limit, 100),
            "t": "week",
            "restrict_sr": "true" if self.subreddits else "false",
        }
        try:
            data = await self._get(client, f"/r/{subreddit}/search", params=params)
        except HTTPClientError as e:
            raise ConnectorConnectionError(
                f"Reddit search failed: {e}", platform=self.platform
            ) from e
        return [child.get("data", {}) for child in data.get("data", {}).get("children", [])]

    async def _subreddit_new(
        self,
        client: HTTPClient,
        subreddit: str,
        limit: int,
    ) -> list[dict[str, Any]]:
        try:
            data = await self._get(
                client, f"/r/{subreddit}/new", params={"limit": min(limit, 100)}
            )
        except HTTPClientError as e:
            if e.is_auth_error:
                raise ConnectorConnectionError(
                    f"Reddit rejected credentials: {e}", platform=self.platform
                ) from e
            raise PartialFetchError(
                f"r/{subreddit} failed: {e}", platform=self.platform
            ) from e
        return [child.get("data", {}) for child in data.get("data", {}).get("children", [])]

    async def _post_comments(self, client: HTTPClient, post_id: str) -> list[dict[str, Any]]:
        try:
            data = await self._get(
                client, f"/comments/{post_id}", params={"limit": COMMENTS_PER_POST}
            )
        except HTTPClientError as e:
            raise PartialFetchError(
                f"Comments for {post_id} failed: {e}", platform=self.platform
            ) from e

        # Reddit returns [post_listing, comments_listing]
        if not isinstance(data, list) or len(data) < 2:
            return []
        children = data[1].get("data", {}).get("children", [])
        return [
            c.get("data", {})
            for c in children
            if c.get("kind") == "t1" and c.get("data", {}).get("body")
            and not c.get("data", {}).get("stickied")
        ]

    def _transform(self, raw: dict[str, Any]) -> Mention | None:
        """Transform a Reddit post or comment to a Mention."""
        if raw.get("stickied") or raw.get("removed_by_category"):
            return None

        is_comment = "body" in raw
        if is_comment:
            content = raw.get("body", "")
            post_type = "comment"
        else:
            content = f"{raw.get('title', '')}\n\n{raw.get('selftext', '')}"
            post_type = "post" if raw.get("is_self") else "link"
        content = clean_reddit_markdown(content)

        permalink = raw.get("permalink", "")
        return self._build_mention(
            external_id=raw.get("id"),
            url=f"https://reddit.com{permalink}" if permalink else None,
            content=content,
            post_type=post_type,
            author_name=raw.get("author"),
            author_handle=raw.get("author"),
            published_at=datetime.fromtimestamp(raw.get("created_utc", 0), tz=timezone.utc),
            likes=max(raw.get("ups") or raw.get("score") or 0, 0),
            comments=0 if is_comment else raw.get("num_comments", 0),
            shares=raw.get("num_crossposts", 0),
            engagement_score=raw.get("upvote_ratio") or 0.0,
            raw_data={
                "subreddit": raw.get("subreddit"),
                "flair": raw.get("link_flair_text"),
                "domain": raw.get("domain"),
            },
        )
