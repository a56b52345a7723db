"""
Connector registry mapping platform ids to connector classes.

New platforms plug in by registering a BaseConnector subclass; the sync
service only ever talks to the registry.

Example:
    registry = ConnectorRegistry()

    @registry.register
    class MastodonConnector(BaseConnector):
        platform = "mastodon"
        ...

    connector = registry.create(source, status_store=sources_repo)
"""

import logging

from src.connectors.base import BaseConnector, SourceStatusStore
from src.connectors.errors import UnsupportedPlatformError
from src.sources.schemas import Source

logger = logging.getLogger(__name__)


class ConnectorRegistry:
    """Lowercase platform id -> connector class."""

    def __init__(self) -> None:
        self._connectors: dict[str, type[BaseConnector]] = {}

    def register(
        self,
        connector_cls: type[BaseConnector],
        platform: str | None = None,
    ) -> type[BaseConnector]:
        """
        Register a connector class. Usable as a class decorator.

        Args:
            connector_cls: BaseConnector subclass
            platform: Override for the class's ``platform`` attribute

        Returns:
            The class, unchanged
        """
        key = (platform or connector_cls.platform).strip().lower()
        if not key:
            raise ValueError(f"{connector_cls.__name__} does not declare a platform")
        if key in self._connectors and self._connectors[key] is not connector_cls:
            logger.warning(
                f"Replacing connector for {key}: "
                f"{self._connectors[key].__name__} -> {connector_cls.__name__}"
            )
        self._connectors[key] = connector_cls
        return connector_cls

    def supports(self, platform: str) -> bool:
        return platform.strip().lower() in self._connectors

    @property
    def supported_platforms(self) -> list[str]:
        return sorted(self._connectors)

    def create(
        self,
        source: Source,
        status_store: SourceStatusStore | None = None,
    ) -> BaseConnector:
        """
        Instantiate the connector for a source.

        Raises:
            UnsupportedPlatformError: No connector registered for source.platform
        """
        connector_cls = self._connectors.get(source.platform.strip().lower())
        if connector_cls is None:
            raise UnsupportedPlatformError(source.platform)
        return connector_cls(source, status_store)


_registry: ConnectorRegistry | None = None


def get_registry() -> ConnectorRegistry:
    """Get the global registry with the built-in connectors registered."""
    global _registry
    if _registry is None:
        from src.connectors.mock import MockConnector
        from src.connectors.reddit import RedditConnector
        from src.connectors.rss import RSSConnector

        _registry = ConnectorRegistry()
        for connector_cls in (RSSConnector, RedditConnector, MockConnector):
            _registry.register(connector_cls)
    return _registry
