"""
DropboxFetcher — lists a Dropbox folder recursively and downloads
every supported file.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from connectors.fetchers.base import BaseFetcher, RawDocument, bearer, guess_mime, is_supported

logger = logging.getLogger(__name__)

API_URL = "https://api.dropboxapi.com/2"
CONTENT_URL = "https://content.dropboxapi.com/2"


class DropboxFetcher(BaseFetcher):
    @property
    def source_type(self) -> str:
        return "dropbox"

    async def fetch(self, source: Dict[str, Any], credential: Optional[Dict[str, Any]]) -> List[RawDocument]:
        cfg = source.get("config") or {}
        max_files = int(cfg.get("maxFiles", 500))
        headers = bearer(credential, self.source_type)

        async with self._client(headers=headers) as client:
            entries: List[Dict[str, Any]] = []
            resp = self._check(
                await client.post(
                    f"{API_URL}/files/list_folder",
                    json={"path": cfg.get("path", ""), "recursive": True, "limit": 2000},
                ),
                "list_folder",
            )
            body = resp.json()
            entries.extend(body.get("entries", []))
            while body.get("has_more"):
                resp = self._check(
                    await client.post(f"{API_URL}/files/list_folder/continue", json={"cursor": body["cursor"]}),
                    "list_folder/continue",
                )
                body = resp.json()
                entries.extend(body.get("entries", []))

            files = [e for e in entries if e.get(".tag") == "file" and is_supported(e.get("name", ""))]
            files.sort(key=lambda e: e.get("path_lower", ""))

            documents: List[RawDocument] = []
            for entry in files[:max_files]:
                resp = self._check(
                    await client.post(
                        f"{CONTENT_URL}/files/download",
                        headers={"Dropbox-API-Arg": json.dumps({"path": entry["id"]})},
                    ),
                    f"download {entry.get('path_display')}",
                )
                documents.append(
                    RawDocument(
                        document_id=entry["id"],
                        title=entry.get("name", ""),
                        content=resp.content,
                        mime_type=guess_mime(entry.get("name", "")),
                        url=f"https://www.dropbox.com/home{entry.get('path_display', '')}",
                    )
                )

        logger.info("Dropbox: fetched %d of %d file(s)", len(documents), len(entries))
        return documents
