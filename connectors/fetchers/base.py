"""
BaseFetcher — reads the remote content of one data source.

A fetcher turns a connected source plus its credential into an ordered list
of ``RawDocument`` objects.  It performs network I/O only; cleaning,
chunking and tagging belong to the content normalizer.
"""

from __future__ import annotations

import mimetypes
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

import httpx

from config.settings import config
from connectors.errors import ProviderError

# File types the normalizer can extract text from.
SUPPORTED_EXTENSIONS = {
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xls": "application/vnd.ms-excel",
    ".csv": "text/csv",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".mdx": "text/markdown",
    ".rst": "text/plain",
    ".html": "text/html",
    ".htm": "text/html",
}


@dataclass
class RawDocument:
    document_id: str
    title: str
    content: bytes
    mime_type: str
    url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def is_supported(name: str) -> bool:
    return PurePosixPath(name.lower()).suffix in SUPPORTED_EXTENSIONS


def guess_mime(name: str) -> str:
    suffix = PurePosixPath(name.lower()).suffix
    if suffix in SUPPORTED_EXTENSIONS:
        return SUPPORTED_EXTENSIONS[suffix]
    return mimetypes.guess_type(name)[0] or "application/octet-stream"


class BaseFetcher(ABC):
    """Abstract base for all content fetchers."""

    #: Whether a vault credential must exist before fetching.
    requires_credential: bool = True

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    @property
    @abstractmethod
    def source_type(self) -> str:
        ...

    @abstractmethod
    async def fetch(self, source: Dict[str, Any], credential: Optional[Dict[str, Any]]) -> List[RawDocument]:
        """
        Fetch every document of ``source``.

        Parameters
        ----------
        source : the source's public view (``DataSource.to_dict()``)
        credential : the decrypted vault credential, or None
        """
        ...

    def _client(self, headers: Optional[Dict[str, str]] = None, **kwargs: Any) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=config.http_timeout_seconds,
            transport=self._transport,
            headers=headers,
            **kwargs,
        )

    def _check(self, resp: httpx.Response, what: str) -> httpx.Response:
        """Raise ``ProviderError`` for a failed response."""
        if resp.status_code >= 400:
            raise ProviderError(self.source_type, f"{what} failed ({resp.status_code}): {resp.text[:200]}")
        return resp


def bearer(credential: Optional[Dict[str, Any]], source_type: str) -> Dict[str, str]:
    """Authorization header for an OAuth or API-key credential."""
    if not credential:
        raise ProviderError(source_type, "no credential stored for this source")
    token = credential.get("access_token") or credential.get("api_key")
    if not token:
        raise ProviderError(source_type, "credential has no token")
    return {"Authorization": f"Bearer {token}"}
