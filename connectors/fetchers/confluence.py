"""
ConfluenceFetcher — reads the pages of one Confluence Cloud space.

The credential is an Atlassian API token plus the account email; page
bodies arrive in storage format (XHTML) and are normalized as HTML.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from connectors.errors import ProviderError
from connectors.fetchers.base import BaseFetcher, RawDocument

logger = logging.getLogger(__name__)

PAGE_SIZE = 50


class ConfluenceFetcher(BaseFetcher):
    @property
    def source_type(self) -> str:
        return "confluence"

    async def fetch(self, source: Dict[str, Any], credential: Optional[Dict[str, Any]]) -> List[RawDocument]:
        cfg = source.get("config") or {}
        base_url = (cfg.get("baseUrl") or "").rstrip("/")
        space = cfg.get("spaceKey")
        if not base_url or not space:
            raise ProviderError(self.source_type, "baseUrl and spaceKey are required")
        if not credential or not credential.get("api_key") or not credential.get("email"):
            raise ProviderError(self.source_type, "credential needs an email and api_key")
        max_pages = int(cfg.get("maxPages", 500))

        documents: List[RawDocument] = []
        auth = (credential["email"], credential["api_key"])
        async with self._client(auth=auth) as client:
            start = 0
            while len(documents) < max_pages:
                body = self._check(
                    await client.get(
                        f"{base_url}/rest/api/content",
                        params={
                            "spaceKey": space,
                            "type": "page",
                            "expand": "body.storage",
                            "limit": str(PAGE_SIZE),
                            "start": str(start),
                        },
                    ),
                    "list content",
                ).json()
                results = body.get("results", [])
                for page in results:
                    html = ((page.get("body") or {}).get("storage") or {}).get("value", "")
                    webui = (page.get("_links") or {}).get("webui", "")
                    documents.append(
                        RawDocument(
                            document_id=str(page["id"]),
                            title=page.get("title", ""),
                            content=f"<html><head><title>{page.get('title', '')}</title></head>"
                            f"<body><main>{html}</main></body></html>".encode("utf-8"),
                            mime_type="text/html",
                            url=f"{base_url}{webui}" if webui else None,
                        )
                    )
                if len(results) < PAGE_SIZE or not (body.get("_links") or {}).get("next"):
                    break
                start += PAGE_SIZE

        logger.info("Confluence %s: fetched %d page(s)", space, len(documents))
        return documents[:max_pages]
