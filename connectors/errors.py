"""
Exception hierarchy for connector, vault and sync failures.

Services raise these; the route layer maps them to HTTP responses.
"""

from __future__ import annotations


class ConnectorError(Exception):
    """Base class for every knowledge-base connector failure."""


class ConfigurationError(ConnectorError):
    """Required server configuration (client id, secret, key) is missing."""


class InvalidStateError(ConnectorError):
    """The OAuth ``state`` token could not be decoded or validated."""


class ProviderError(ConnectorError):
    """The external provider rejected a request or returned garbage."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        self.message = message
        super().__init__(f"{provider}: {message}")


class SourceNotFoundError(ConnectorError):
    """No live data source matches the given (tenant, source) pair."""

    def __init__(self, tenant_id: str, source_id: str):
        self.tenant_id = tenant_id
        self.source_id = source_id
        super().__init__(f"Data source {source_id} not found for tenant {tenant_id}")


class SourceNotEligibleError(ConnectorError):
    """The source is in a status that does not allow the requested action."""

    def __init__(self, source_id: str, status: str, action: str = "sync"):
        self.source_id = source_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} data source {source_id} in status {status}")


class ConnectorNotImplementedError(ConnectorError):
    """The source type is known but has no content fetcher."""

    def __init__(self, source_type: str):
        self.source_type = source_type
        super().__init__(f"Connector for source type '{source_type}' is not implemented yet")


class ObjectNotFoundError(ConnectorError):
    """The requested key does not exist in the object store."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Object not found: {key}")
