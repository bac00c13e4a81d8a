"""
SharePointFetcher — walks a OneDrive / SharePoint document library via
Microsoft Graph and downloads every supported file.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from connectors.fetchers.base import BaseFetcher, RawDocument, bearer, guess_mime, is_supported

logger = logging.getLogger(__name__)

GRAPH_URL = "https://graph.microsoft.com/v1.0"


class SharePointFetcher(BaseFetcher):
    @property
    def source_type(self) -> str:
        return "sharepoint"

    async def fetch(self, source: Dict[str, Any], credential: Optional[Dict[str, Any]]) -> List[RawDocument]:
        cfg = source.get("config") or {}
        max_files = int(cfg.get("maxFiles", 500))
        drive = f"{GRAPH_URL}/sites/{cfg['siteId']}/drive" if cfg.get("siteId") else f"{GRAPH_URL}/me/drive"

        documents: List[RawDocument] = []
        async with self._client(headers=bearer(credential, self.source_type), follow_redirects=True) as client:
            pending: Deque[str] = deque([f"{drive}/root/children"])
            files: List[Dict[str, Any]] = []
            while pending and len(files) < max_files:
                url: Optional[str] = pending.popleft()
                while url:
                    body = self._check(await client.get(url), "list children").json()
                    for item in body.get("value", []):
                        if "folder" in item:
                            pending.append(f"{drive}/items/{item['id']}/children")
                        elif "file" in item and is_supported(item.get("name", "")):
                            files.append(item)
                    url = body.get("@odata.nextLink")

            for item in files[:max_files]:
                resp = self._check(
                    await client.get(f"{drive}/items/{item['id']}/content"),
                    f"download {item.get('name')}",
                )
                documents.append(
                    RawDocument(
                        document_id=item["id"],
                        title=item.get("name", ""),
                        content=resp.content,
                        mime_type=guess_mime(item.get("name", "")),
                        url=item.get("webUrl"),
                    )
                )

        logger.info("SharePoint: fetched %d file(s)", len(documents))
        return documents
