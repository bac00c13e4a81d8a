"""
GitHubFetcher — reads documentation files (Markdown, text, reST) from a
repository branch using a personal access token.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from connectors.errors import ProviderError
from connectors.fetchers.base import BaseFetcher, RawDocument, bearer

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
DOC_EXTENSIONS = (".md", ".mdx", ".txt", ".rst")


class GitHubFetcher(BaseFetcher):
    @property
    def source_type(self) -> str:
        return "github"

    async def fetch(self, source: Dict[str, Any], credential: Optional[Dict[str, Any]]) -> List[RawDocument]:
        cfg = source.get("config") or {}
        repo = cfg.get("repo", "")
        if repo.count("/") != 1:
            raise ProviderError(self.source_type, f"repository must be 'owner/name', got {repo!r}")
        prefix = (cfg.get("path") or "").strip("/")
        max_files = int(cfg.get("maxFiles", 500))

        headers = bearer(credential, self.source_type)
        headers["Accept"] = "application/vnd.github+json"
        async with self._client(headers=headers) as client:
            branch = cfg.get("branch")
            if not branch:
                meta = self._check(await client.get(f"{GITHUB_API}/repos/{repo}"), "get repository").json()
                branch = meta.get("default_branch", "main")

            tree = self._check(
                await client.get(f"{GITHUB_API}/repos/{repo}/git/trees/{branch}", params={"recursive": "1"}),
                "get tree",
            ).json()
            paths = sorted(
                node["path"]
                for node in tree.get("tree", [])
                if node.get("type") == "blob"
                and node["path"].lower().endswith(DOC_EXTENSIONS)
                and (not prefix or node["path"].startswith(prefix + "/"))
            )

            documents: List[RawDocument] = []
            for path in paths[:max_files]:
                resp = self._check(
                    await client.get(
                        f"{GITHUB_API}/repos/{repo}/contents/{path}",
                        params={"ref": branch},
                        headers={"Accept": "application/vnd.github.raw"},
                    ),
                    f"get {path}",
                )
                documents.append(
                    RawDocument(
                        document_id=f"{repo}:{path}",
                        title=path.rsplit("/", 1)[-1],
                        content=resp.content,
                        mime_type="text/markdown" if path.lower().endswith((".md", ".mdx")) else "text/plain",
                        url=f"https://github.com/{repo}/blob/{branch}/{path}",
                    )
                )

        logger.info("GitHub %s@%s: fetched %d file(s)", repo, branch, len(documents))
        return documents
