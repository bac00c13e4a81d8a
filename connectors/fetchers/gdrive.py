"""
GoogleDriveFetcher — reads files from Google Drive.

Native Google Docs / Sheets / Slides are exported as text; uploaded files
of a supported type are downloaded as-is.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from connectors.fetchers.base import SUPPORTED_EXTENSIONS, BaseFetcher, RawDocument, bearer

logger = logging.getLogger(__name__)

DRIVE_URL = "https://www.googleapis.com/drive/v3"

# native Google type -> (export MIME, normalized MIME)
EXPORTS = {
    "application/vnd.google-apps.document": ("text/plain", "text/plain"),
    "application/vnd.google-apps.presentation": ("text/plain", "text/plain"),
    "application/vnd.google-apps.spreadsheet": ("text/csv", "text/csv"),
}

DOWNLOADABLE = set(SUPPORTED_EXTENSIONS.values())


class GoogleDriveFetcher(BaseFetcher):
    @property
    def source_type(self) -> str:
        return "gdrive"

    async def fetch(self, source: Dict[str, Any], credential: Optional[Dict[str, Any]]) -> List[RawDocument]:
        cfg = source.get("config") or {}
        max_files = int(cfg.get("maxFiles", 500))
        query = "trashed = false and mimeType != 'application/vnd.google-apps.folder'"
        if cfg.get("folderId"):
            query += f" and '{cfg['folderId']}' in parents"

        async with self._client(headers=bearer(credential, self.source_type)) as client:
            files: List[Dict[str, Any]] = []
            page_token: Optional[str] = None
            while True:
                params = {
                    "q": query,
                    "fields": "nextPageToken, files(id, name, mimeType, webViewLink)",
                    "pageSize": "100",
                    "orderBy": "name",
                }
                if page_token:
                    params["pageToken"] = page_token
                resp = self._check(await client.get(f"{DRIVE_URL}/files", params=params), "files.list")
                body = resp.json()
                files.extend(body.get("files", []))
                page_token = body.get("nextPageToken")
                if not page_token or len(files) >= max_files:
                    break

            documents: List[RawDocument] = []
            for item in files[:max_files]:
                mime = item.get("mimeType", "")
                if mime in EXPORTS:
                    export_mime, doc_mime = EXPORTS[mime]
                    resp = self._check(
                        await client.get(f"{DRIVE_URL}/files/{item['id']}/export", params={"mimeType": export_mime}),
                        f"export {item.get('name')}",
                    )
                elif mime in DOWNLOADABLE:
                    doc_mime = mime
                    resp = self._check(
                        await client.get(f"{DRIVE_URL}/files/{item['id']}", params={"alt": "media"}),
                        f"download {item.get('name')}",
                    )
                else:
                    logger.debug("Skipping unsupported Drive file %s (%s)", item.get("name"), mime)
                    continue
                documents.append(
                    RawDocument(
                        document_id=item["id"],
                        title=item.get("name", ""),
                        content=resp.content,
                        mime_type=doc_mime,
                        url=item.get("webViewLink"),
                    )
                )

        logger.info("Google Drive: fetched %d of %d file(s)", len(documents), len(files))
        return documents
