"""
NotionFetcher — reads every page shared with the integration and flattens
its blocks into Markdown-ish text.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from connectors.fetchers.base import BaseFetcher, RawDocument, bearer

logger = logging.getLogger(__name__)

NOTION_API = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"

_PREFIXES = {
    "heading_1": "# ",
    "heading_2": "## ",
    "heading_3": "### ",
    "bulleted_list_item": "- ",
    "numbered_list_item": "1. ",
    "to_do": "- [ ] ",
    "quote": "> ",
    "callout": "> ",
    "toggle": "",
    "paragraph": "",
    "code": "",
}


def _plain(rich_text: List[Dict[str, Any]]) -> str:
    return "".join(part.get("plain_text", "") for part in rich_text)


def page_title(page: Dict[str, Any]) -> str:
    for prop in (page.get("properties") or {}).values():
        if prop.get("type") == "title":
            return _plain(prop.get("title", []))
    return ""


def block_text(block: Dict[str, Any]) -> Optional[str]:
    kind = block.get("type", "")
    if kind not in _PREFIXES:
        return None
    text = _plain((block.get(kind) or {}).get("rich_text", []))
    if kind == "code":
        return f"```\n{text}\n```"
    if kind == "to_do" and (block.get(kind) or {}).get("checked"):
        return f"- [x] {text}"
    return _PREFIXES[kind] + text


class NotionFetcher(BaseFetcher):
    @property
    def source_type(self) -> str:
        return "notion"

    async def fetch(self, source: Dict[str, Any], credential: Optional[Dict[str, Any]]) -> List[RawDocument]:
        cfg = source.get("config") or {}
        max_pages = int(cfg.get("maxPages", 500))
        headers = bearer(credential, self.source_type)
        headers["Notion-Version"] = NOTION_VERSION

        async with self._client(headers=headers) as client:
            pages: List[Dict[str, Any]] = []
            cursor: Optional[str] = None
            while len(pages) < max_pages:
                payload: Dict[str, Any] = {
                    "filter": {"property": "object", "value": "page"},
                    "page_size": 100,
                }
                if cursor:
                    payload["start_cursor"] = cursor
                body = self._check(await client.post(f"{NOTION_API}/search", json=payload), "search").json()
                pages.extend(body.get("results", []))
                cursor = body.get("next_cursor")
                if not body.get("has_more") or not cursor:
                    break

            documents: List[RawDocument] = []
            for page in pages[:max_pages]:
                lines = await self._page_lines(client, page["id"])
                title = page_title(page) or "Untitled"
                documents.append(
                    RawDocument(
                        document_id=page["id"],
                        title=title,
                        content="\n\n".join([f"# {title}"] + lines).encode("utf-8"),
                        mime_type="text/markdown",
                        url=page.get("url"),
                    )
                )

        logger.info("Notion: fetched %d page(s)", len(documents))
        return documents

    async def _page_lines(self, client: httpx.AsyncClient, page_id: str) -> List[str]:
        lines: List[str] = []
        cursor: Optional[str] = None
        while True:
            params = {"page_size": "100"}
            if cursor:
                params["start_cursor"] = cursor
            body = self._check(
                await client.get(f"{NOTION_API}/blocks/{page_id}/children", params=params),
                "list blocks",
            ).json()
            for block in body.get("results", []):
                text = block_text(block)
                if text and text.strip():
                    lines.append(text)
            cursor = body.get("next_cursor")
            if not body.get("has_more") or not cursor:
                return lines
