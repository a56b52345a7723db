"""
Base connector interface and shared functionality for platform connectors.

Each connector wraps one configured Source and must implement:
    - test_connection(): credential/reachability check without side effects
    - fetch_mentions(): fully normalized Mention records for a time window

The base class provides:
    - Rate-limit tracking from response headers, seeded from the Source row
    - Persisting connector health back onto the Source
    - Mention construction that drops records failing validation
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from src.connectors.errors import PartialFetchError
from src.connectors.schemas import ConnectionTestResult, Mention
from src.sources.schemas import RateLimitSnapshot, Source, SourceStatus

logger = logging.getLogger(__name__)

# Reset header values above this are absolute epoch seconds, below it a delta.
EPOCH_RESET_THRESHOLD = 1_000_000_000

_REMAINING_HEADERS = ("x-rate-limit-remaining", "x-ratelimit-remaining")
_LIMIT_HEADERS = ("x-rate-limit-limit", "x-ratelimit-limit")
_RESET_HEADERS = ("x-rate-limit-reset", "x-ratelimit-reset")


class SourceStatusStore(Protocol):
    """Persistence seam for connector health (implemented by SourcesRepository)."""

    async def update_status(
        self,
        source_id: str,
        status: SourceStatus,
        error_message: str | None = None,
        rate_limit: RateLimitSnapshot | None = None,
        synced_at: datetime | None = None,
    ) -> None: ...


def _first_header(headers: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    for name in names:
        value = headers.get(name)
        if value not in (None, ""):
            return value
    return None


def _parse_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        # Reddit sends remaining as a float string ("598.0")
        return int(float(value))
    except ValueError:
        return None


def parse_reset(value: str | None, now: datetime) -> datetime | None:
    """Interpret a rate-limit reset header as an absolute UTC time."""
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    if seconds > EPOCH_RESET_THRESHOLD:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    return now + timedelta(seconds=seconds)


class BaseConnector(ABC):
    """
    Abstract base class for platform connectors.

    Subclasses must implement:
        - platform: lowercase platform id (class attribute)
        - test_connection()
        - fetch_mentions()

    Auth and network failures raise ConnectorConnectionError; the sync
    service turns them into a Source status update. Failures of a
    sub-resource (a single feed, a post's comments) are swallowed here and
    only that subset is omitted.
    """

    platform: str = ""

    def __init__(
        self,
        source: Source,
        status_store: SourceStatusStore | None = None,
    ) -> None:
        """
        Initialize connector for one source.

        Args:
            source: The Source row this connector syncs
            status_store: Where update_source_status() writes; None disables persistence
        """
        self.source = source
        self._status_store = status_store
        self._rate_limit = RateLimitSnapshot()
        # A stored snapshot without a reset time can never expire, so only
        # snapshots with a known reset carry over into a new sync.
        if source.rate_limit_reset_at is not None:
            self._rate_limit = RateLimitSnapshot(
                remaining=source.rate_limit_remaining,
                reset_at=source.rate_limit_reset_at,
            )

    @property
    def name(self) -> str:
        """Human-readable connector name."""
        return f"{self.platform}_connector"

    @property
    def credentials(self) -> dict[str, Any]:
        return self.source.credentials or {}

    @property
    def config(self) -> dict[str, Any]:
        return self.source.config or {}

    @property
    def rate_limit(self) -> RateLimitSnapshot:
        """Copy of the last observed rate-limit state."""
        return RateLimitSnapshot(
            remaining=self._rate_limit.remaining,
            limit=self._rate_limit.limit,
            reset_at=self._rate_limit.reset_at,
        )

    @abstractmethod
    async def test_connection(self) -> ConnectionTestResult:
        """Check credentials and reachability. Must not persist anything."""
        ...

    def search_terms(self, keywords: list[str] | None = None) -> list[str]:
        """config.keywords followed by ``keywords``, without case-insensitive repeats."""
        terms: list[str] = []
        seen: set[str] = set()
        configured = self.config.get("keywords") or []
        if isinstance(configured, str):
            configured = [configured]
        for term in [*configured, *(keywords or [])]:
            term = str(term).strip()
            if term and term.lower() not in seen:
                seen.add(term.lower())
                terms.append(term)
        return terms

    @abstractmethod
    async def fetch_mentions(
        self,
        since: datetime,
        until: datetime | None = None,
        limit: int = 100,
        keywords: list[str] | None = None,
    ) -> list[Mention]:
        """
        Fetch mentions published in [since, until].

        Args:
            since: Lower bound on published_at
            until: Optional upper bound on published_at
            limit: Maximum number of mentions to return
            keywords: Tenant query keywords, searched or filtered on in
                addition to the source's own config.keywords

        Returns:
            Normalized mentions, never more than ``limit``

        Raises:
            ConnectorConnectionError: On auth or network failure
        """
        ...

    # ------------------------------------------------------------------
    # Rate limits
    # ------------------------------------------------------------------

    def handle_rate_limit_headers(
        self,
        headers: Mapping[str, str],
        now: datetime | None = None,
    ) -> None:
        """Update rate-limit state from a platform response's headers.

        Responses without rate-limit headers leave the state untouched.
        """
        remaining = _parse_int(_first_header(headers, _REMAINING_HEADERS))
        limit = _parse_int(_first_header(headers, _LIMIT_HEADERS))
        reset_raw = _first_header(headers, _RESET_HEADERS)

        if remaining is None and limit is None and reset_raw is None:
            return

        now = now or datetime.now(timezone.utc)
        self._rate_limit = RateLimitSnapshot(
            remaining=remaining,
            limit=limit,
            reset_at=parse_reset(reset_raw, now),
        )
        logger.debug(
            f"{self.name} rate limit updated: remaining={remaining} "
            f"limit={limit} reset_at={self._rate_limit.reset_at}"
        )

    def observe_response(self, response: httpx.Response) -> None:
        """HTTPClient response hook: track rate limits from every response."""
        self.handle_rate_limit_headers(response.headers)

    def is_rate_limited(self, now: datetime | None = None) -> bool:
        """True when no requests remain and the reset time has not passed."""
        remaining = self._rate_limit.remaining
        if remaining is None or remaining > 0:
            return False
        if self._rate_limit.reset_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now < self._rate_limit.reset_at

    def get_time_until_reset(self, now: datetime | None = None) -> timedelta:
        """Time until the rate limit resets; zero when unknown or passed."""
        if self._rate_limit.reset_at is None:
            return timedelta(0)
        now = now or datetime.now(timezone.utc)
        return max(timedelta(0), self._rate_limit.reset_at - now)

    # ------------------------------------------------------------------
    # Source health
    # ------------------------------------------------------------------

    async def update_source_status(
        self,
        status: SourceStatus,
        error_message: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """
        Persist connector health and the rate-limit snapshot onto the Source.

        last_sync_at only advances when the source is marked connected.
        """
        synced_at = None
        if status == SourceStatus.CONNECTED:
            synced_at = now or datetime.now(timezone.utc)

        self.source.status = status
        self.source.error_message = error_message
        if synced_at is not None:
            self.source.last_sync_at = synced_at

        if self._status_store is None:
            return

        await self._status_store.update_status(
            self.source.id,
            status,
            error_message=error_message,
            rate_limit=self.rate_limit,
            synced_at=synced_at,
        )

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _build_mention(self, **fields: Any) -> Mention | None:
        """
        Construct a Mention stamped with this source's identity.

        Returns None (and logs) when the platform payload does not validate,
        so only fully normalized records leave the connector.
        """
        try:
            return Mention(
                tenant_id=self.source.tenant_id,
                source_id=self.source.id,
                platform=self.platform,
                **fields,
            )
        except ValidationError as e:
            logger.warning(
                f"{self.name} dropped invalid item {fields.get('external_id')!r}: "
                f"{e.error_count()} validation errors"
            )
            return None

    def _skip_partial(self, error: PartialFetchError) -> list[Mention]:
        """Log a swallowed sub-resource failure and return the empty subset."""
        logger.debug(f"{self.name} partial fetch failure: {error}")
        return []


def within_window(
    published_at: datetime,
    since: datetime,
    until: datetime | None,
) -> bool:
    """Whether a timestamp falls inside the [since, until] fetch window."""
    if published_at < since:
        return False
    if until is not None and published_at > until:
        return False
    return True
