"""
ConnectorRegistry — provides access to every OAuth connector.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from connectors.base import BaseConnector
from connectors.dropbox import DropboxConnector
from connectors.google_drive import GoogleDriveConnector
from connectors.sharepoint import SharePointConnector

logger = logging.getLogger(__name__)


def _default_connectors() -> List[BaseConnector]:
    # All known OAuth connectors — add new ones here
    return [
        DropboxConnector(),
        GoogleDriveConnector(),
        SharePointConnector(),
    ]


class ConnectorRegistry:
    """
    Singleton registry for all OAuth connectors.

    Unconfigured connectors stay registered: a request for one must be
    answered with a configuration error, not "unknown provider".
    """

    _instance: Optional["ConnectorRegistry"] = None

    def __new__(cls) -> "ConnectorRegistry":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._connectors = {}
            for conn in _default_connectors():
                cls._instance._connectors[conn.provider_name] = conn
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    def register(self, connector: BaseConnector) -> None:
        """Add or replace a connector (used for custom providers and tests)."""
        self._connectors[connector.provider_name] = connector

    def get(self, provider: str) -> Optional[BaseConnector]:
        """Get a connector by provider name."""
        return self._connectors.get(provider)

    def for_source_type(self, source_type: str) -> Optional[BaseConnector]:
        """Get the connector that created sources of ``source_type``."""
        for conn in self._connectors.values():
            if conn.source_type == source_type:
                return conn
        return None

    def list_providers(self) -> List[Dict[str, object]]:
        """Return info about all available connectors."""
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "source_type": c.source_type,
                "configured": c.is_configured(),
            }
            for c in self._connectors.values()
        ]

    def log_configuration(self) -> None:
        for conn in self._connectors.values():
            if conn.is_configured():
                logger.info("Connector available: %s (%s)", conn.display_name, conn.provider_name)
            else:
                logger.warning(
                    "Connector %s not configured — initiation will fail with a configuration error",
                    conn.provider_name,
                )
