"""
WebsiteFetcher — polite, bounded crawl of a public website.

Seeds from sitemap.xml when present, respects robots.txt, stays on the
root's origin and scope path, and stops at ``maxPages`` / ``maxDepth``.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set, Tuple
from urllib.parse import urljoin, urlparse
from urllib.robotparser import RobotFileParser

import httpx
from bs4 import BeautifulSoup

from config.settings import config
from connectors.errors import ProviderError
from connectors.fetchers.base import BaseFetcher, RawDocument

logger = logging.getLogger(__name__)

_ASSET_RE = re.compile(r"\.(jpg|jpeg|png|gif|pdf|zip|css|js|svg|ico|webp|mp4|mp3)$", re.IGNORECASE)
_BREADCRUMB_SELECTOR = 'nav[aria-label="breadcrumb"], .breadcrumb, [class*="breadcrumbs"]'


class WebsiteFetcher(BaseFetcher):
    requires_credential = False

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, delay_seconds: Optional[float] = None):
        super().__init__(transport)
        self.delay_seconds = config.crawler_delay_seconds if delay_seconds is None else delay_seconds

    @property
    def source_type(self) -> str:
        return "website"

    async def fetch(self, source: Dict[str, Any], credential: Optional[Dict[str, Any]]) -> List[RawDocument]:
        cfg = source.get("config") or {}
        root_url = cfg.get("url") or source.get("name", "")
        root = urlparse(root_url)
        if root.scheme not in ("http", "https") or not root.netloc:
            raise ProviderError(self.source_type, f"invalid website URL: {root_url!r}")

        max_depth = int(cfg.get("maxDepth", config.crawler_max_depth))
        max_pages = int(cfg.get("maxPages", config.crawler_max_pages))
        keywords = [k.lower() for k in cfg.get("filterKeywords", []) if k]
        exclude_paths = list(cfg.get("excludePaths", []))
        scope_path = cfg.get("scopePath", "") or ""
        origin = f"{root.scheme}://{root.netloc}"
        scope_url = (origin + ("" if scope_path.startswith("/") else "/") + scope_path).rstrip("/")

        def in_scope(url: str) -> bool:
            if not url.startswith(scope_url):
                return False
            path = urlparse(url).path
            return not any(path.startswith(p) for p in exclude_paths)

        def matches(*texts: str) -> bool:
            if not keywords:
                return True
            return any(k in (t or "").lower() for t in texts for k in keywords)

        documents: List[RawDocument] = []
        failures = 0
        headers = {"User-Agent": config.crawler_user_agent}

        async with self._client(headers=headers, follow_redirects=True) as client:
            robots = await self._load_robots(client, origin)

            queue: Deque[Tuple[str, int]] = deque()
            visited: Set[str] = set()
            for loc in await self._sitemap_urls(client, origin):
                if loc not in visited and in_scope(loc) and matches(loc):
                    queue.append((loc, 0))
                    visited.add(loc)
            if scope_url not in visited:
                queue.appendleft((scope_url, 0))
                visited.add(scope_url)

            while queue and len(documents) < max_pages:
                url, depth = queue.popleft()
                if robots is not None and not robots.can_fetch(config.crawler_user_agent, url):
                    logger.debug("Skipping disallowed URL by robots.txt: %s", url)
                    continue
                try:
                    page = await self._fetch_page(client, url)
                except (httpx.HTTPError, ProviderError) as exc:
                    failures += 1
                    logger.warning("Failed to crawl %s: %s", url, exc)
                    continue
                finally:
                    if self.delay_seconds:
                        await asyncio.sleep(self.delay_seconds)
                if page is None:
                    continue

                title, section, html, links = page
                if matches(url, title, section):
                    documents.append(
                        RawDocument(
                            document_id=url,
                            title=title,
                            content=html,
                            mime_type="text/html",
                            url=url,
                            metadata={"section": section} if section else {},
                        )
                    )
                if depth < max_depth:
                    for link in links:
                        if link not in visited and in_scope(link):
                            visited.add(link)
                            queue.append((link, depth + 1))

        if not documents and failures:
            raise ProviderError(self.source_type, f"no pages could be fetched from {root_url}")
        logger.info("Crawled %s: %d page(s), %d failure(s)", root_url, len(documents), failures)
        return documents

    async def _load_robots(self, client: httpx.AsyncClient, origin: str) -> Optional[RobotFileParser]:
        try:
            resp = await client.get(f"{origin}/robots.txt")
        except httpx.HTTPError as exc:
            logger.warning("Could not fetch robots.txt for %s: %s", origin, exc)
            return None
        if resp.status_code != 200:
            return None
        parser = RobotFileParser()
        parser.parse(resp.text.splitlines())
        return parser

    async def _sitemap_urls(self, client: httpx.AsyncClient, origin: str) -> List[str]:
        try:
            resp = await client.get(f"{origin}/sitemap.xml")
        except httpx.HTTPError:
            return []
        if resp.status_code != 200:
            return []
        soup = BeautifulSoup(resp.text, "html.parser")
        return [loc.get_text(strip=True) for loc in soup.find_all("loc") if loc.get_text(strip=True)]

    async def _fetch_page(
        self, client: httpx.AsyncClient, url: str
    ) -> Optional[Tuple[str, str, bytes, List[str]]]:
        resp = self._check(await client.get(url), f"GET {url}")
        if "text/html" not in resp.headers.get("content-type", ""):
            logger.debug("Skipping non-HTML page: %s", url)
            return None

        soup = BeautifulSoup(resp.text, "html.parser")
        title_tag = soup.find("title")
        h1 = soup.find("h1")
        title = (title_tag.get_text(strip=True) if title_tag else "") or (h1.get_text(strip=True) if h1 else "") or url
        section = breadcrumb_section(soup)

        base_origin = urlparse(url)
        links: List[str] = []
        for a in soup.find_all("a", href=True):
            href = a["href"].strip()
            if href.startswith(("mailto:", "tel:", "javascript:")):
                continue
            absolute = urljoin(url, href).split("#")[0].split("?")[0]
            parsed = urlparse(absolute)
            if (parsed.scheme, parsed.netloc) != (base_origin.scheme, base_origin.netloc):
                continue
            if _ASSET_RE.search(parsed.path):
                continue
            if absolute not in links:
                links.append(absolute)
        return title, section, resp.content, links


def breadcrumb_section(soup: BeautifulSoup) -> str:
    """Breadcrumb trail of a page as "Docs / Security", without the leading "Home"."""
    items: List[str] = []
    for trail in soup.select(_BREADCRUMB_SELECTOR):
        for el in trail.find_all(["li", "a", "span"]):
            text = el.get_text(" ", strip=True).replace(">", "").strip()
            if text and text.lower() != "home" and text not in items:
                items.append(text)
    return " / ".join(items)
