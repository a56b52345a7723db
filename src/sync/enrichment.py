"""
Client for the downstream enrichment (AI) service.

After a sync saves new mentions, the sync service asks the enrichment
service to fill in sentiment and topics for the tenant's newest mentions.
The call is fire-and-forget from the sync's point of view.
"""

import logging
from typing import Protocol

from src.config.settings import get_settings
from src.connectors.http_client import HTTPClient, RetryConfig

logger = logging.getLogger(__name__)


class EnrichmentTrigger(Protocol):
    async def trigger_enrichment(self, tenant_id: int, new_mention_count: int) -> bool: ...


class EnrichmentClient:
    """
    POSTs enrichment requests to ``{base_url}/enrichment/mentions``.

    Without a configured URL every trigger is a logged no-op.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        retry_config: RetryConfig | None = None,
    ) -> None:
        settings = get_settings()
        url = base_url if base_url is not None else settings.enrichment_service_url
        self._base_url = url.rstrip("/") if url else None
        self._timeout = timeout or settings.enrichment_timeout_seconds
        self._retry_config = retry_config or RetryConfig(max_retries=1)

    @property
    def enabled(self) -> bool:
        return self._base_url is not None

    async def trigger_enrichment(self, tenant_id: int, new_mention_count: int) -> bool:
        """
        Request enrichment of the tenant's newest mentions.

        Returns:
            True if the request was sent and accepted, False when disabled

        Raises:
            HTTPClientError: When the service rejects the request
        """
        if not self.enabled:
            logger.debug(f"Enrichment disabled, skipping tenant {tenant_id}")
            return False

        async with HTTPClient(retry_config=self._retry_config, timeout=self._timeout) as client:
            await client.post(
                f"{self._base_url}/enrichment/mentions",
                json_body={"tenant_id": tenant_id, "limit": new_mention_count},
            )

        logger.info(f"Enrichment triggered for tenant {tenant_id} ({new_mention_count} mentions)")
        return True
