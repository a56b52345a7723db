"""Exceptions raised by platform connectors and the connector registry."""


class ConnectorError(Exception):
    """Base exception for connector failures."""

    def __init__(self, message: str, platform: str | None = None):
        super().__init__(message)
        self.platform = platform


class ConnectorConnectionError(ConnectorError):
    """Authentication or network failure talking to the platform.

    Aborts the sync of the affected source; the sync service records the
    message on the source row and moves on to its siblings.
    """


class PartialFetchError(ConnectorError):
    """A sub-resource of an item could not be fetched (e.g. comments disabled).

    Connectors swallow this and return the remaining results.
    """


class UnsupportedPlatformError(ConnectorError):
    """No connector is registered for the requested platform id."""

    def __init__(self, platform: str):
        super().__init__(f"Unsupported platform: {platform}", platform=platform)
