"""Platform connectors: capability contract, registry and built-in plugins."""

from src.connectors.base import BaseConnector, SourceStatusStore
from src.connectors.errors import (
    ConnectorConnectionError,
    ConnectorError,
    PartialFetchError,
    UnsupportedPlatformError,
)
from src.connectors.registry import ConnectorRegistry, get_registry
from src.connectors.schemas import ConnectionTestResult, Mention

__all__ = [
    "BaseConnector",
    "ConnectionTestResult",
    "ConnectorConnectionError",
    "ConnectorError",
    "ConnectorRegistry",
    "Mention",
    "PartialFetchError",
    "SourceStatusStore",
    "UnsupportedPlatformError",
    "get_registry",
]
