"""
Test doubles for connectors and fetchers.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from connectors.base import BaseConnector
from connectors.fetchers.base import BaseFetcher, RawDocument


def sqlite_engine(path):
    """File-backed sqlite so concurrent sessions get separate connections."""
    return create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)


class FakeConnector(BaseConnector):
    """OAuth connector that never touches the network."""

    def __init__(self, provider: str = "fakebox", source_type: str = "dropbox", configured: bool = True):
        super().__init__()
        self._provider = provider
        self._source_type = source_type
        self._configured = configured
        self.exchanged: List[str] = []
        self.refreshed: List[str] = []
        self.fail_with: Optional[Exception] = None

    @property
    def provider_name(self) -> str:
        return self._provider

    @property
    def display_name(self) -> str:
        return "Fakebox"

    @property
    def source_type(self) -> str:
        return self._source_type

    @property
    def scopes(self) -> List[str]:
        return ["read"]

    def is_configured(self) -> bool:
        return self._configured

    def get_auth_url(self, state: str) -> str:
        return f"https://auth.fake.test/authorize?state={state}"

    async def handle_callback(self, code: str) -> Dict[str, Any]:
        self.exchanged.append(code)
        if self.fail_with is not None:
            raise self.fail_with
        return {
            "access_token": f"access-{code}",
            "refresh_token": f"refresh-{code}",
            "expires_in": 3600,
            "scopes": ["read"],
            "account_label": "Jane Doe",
        }

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        self.refreshed.append(refresh_token)
        return {"access_token": "access-refreshed", "expires_in": 3600}


class FakeFetcher(BaseFetcher):
    """Returns canned documents and counts calls."""

    def __init__(self, source_type: str = "dropbox", documents: Optional[List[RawDocument]] = None,
                 requires_credential: bool = True):
        super().__init__()
        self._source_type = source_type
        self.documents = documents if documents is not None else sample_documents()
        self.requires_credential = requires_credential
        self.calls = 0
        self.credentials: List[Any] = []
        self.gate = None
        self.error: Optional[Exception] = None

    @property
    def source_type(self) -> str:
        return self._source_type

    async def fetch(self, source, credential):
        self.calls += 1
        self.credentials.append(credential)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.documents)


def sample_documents() -> List[RawDocument]:
    return [
        RawDocument(
            document_id="doc-b",
            title="Security.md",
            content=b"# Security\n\nWe are SOC 2 Type II certified.\n\nData is encrypted at rest.",
            mime_type="text/markdown",
            url="https://files.test/doc-b",
        ),
        RawDocument(
            document_id="doc-a",
            title="Overview.txt",
            content=b"Acme builds RFP tooling.\n\nCustomers include banks and insurers.",
            mime_type="text/plain",
            url="https://files.test/doc-a",
        ),
    ]
