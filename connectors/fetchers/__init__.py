"""
Content fetchers, one per source type.
"""

from __future__ import annotations

from typing import Dict, Optional

import httpx

from connectors.fetchers.base import BaseFetcher, RawDocument
from connectors.fetchers.confluence import ConfluenceFetcher
from connectors.fetchers.dropbox import DropboxFetcher
from connectors.fetchers.gdrive import GoogleDriveFetcher
from connectors.fetchers.github import GitHubFetcher
from connectors.fetchers.notion import NotionFetcher
from connectors.fetchers.sharepoint import SharePointFetcher
from connectors.fetchers.unsupported import UnsupportedFetcher
from connectors.fetchers.website import WebsiteFetcher

# Sales-enablement platforms without a content integration.
UNSUPPORTED_SOURCE_TYPES = ("highspot", "showpad", "seismic", "mindtickle", "enableus")


def build_fetchers(transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, BaseFetcher]:
    """Map every source type to its fetcher."""
    fetchers: Dict[str, BaseFetcher] = {
        f.source_type: f
        for f in (
            WebsiteFetcher(transport),
            DropboxFetcher(transport),
            GoogleDriveFetcher(transport),
            SharePointFetcher(transport),
            GitHubFetcher(transport),
            NotionFetcher(transport),
            ConfluenceFetcher(transport),
        )
    }
    for source_type in UNSUPPORTED_SOURCE_TYPES:
        fetchers[source_type] = UnsupportedFetcher(source_type)
    return fetchers


__all__ = ["BaseFetcher", "RawDocument", "UNSUPPORTED_SOURCE_TYPES", "build_fetchers"]
