"""
BaseConnector — abstract interface for all OAuth2 data-source connectors.

Every provider (Dropbox, Google Drive, SharePoint, …) subclasses this and
implements the core methods.  A connector only knows how to talk OAuth to
its provider; reading content is the job of the matching fetcher in
``connectors.fetchers``.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from config.settings import config
from connectors.errors import ProviderError


class BaseConnector(ABC):
    """Abstract base for all OAuth2 connectors."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Route slug: 'dropbox', 'google', 'microsoft'."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable: 'Dropbox', 'Google Drive', 'SharePoint'."""
        ...

    @property
    @abstractmethod
    def source_type(self) -> str:
        """The ``DataSource.type`` this connector creates."""
        ...

    @property
    @abstractmethod
    def scopes(self) -> List[str]:
        """OAuth scopes required by this connector (always refresh-capable)."""
        ...

    # ── OAuth flow ──────────────────────────────────────────────────────

    @abstractmethod
    def get_auth_url(self, state: str) -> str:
        """
        Build the provider's OAuth2 authorization URL.

        Parameters
        ----------
        state : str
            Opaque state string (encodes tenant_id + source_id).

        Returns
        -------
        The full URL to redirect the user to.
        """
        ...

    @abstractmethod
    async def handle_callback(self, code: str) -> Dict[str, Any]:
        """
        Exchange the authorization code for tokens.

        Returns
        -------
        dict with keys:
            access_token, refresh_token, expires_in, scopes,
            account_id, account_label
        """
        ...

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        """
        Refresh an expired access token.

        Returns
        -------
        dict with keys: access_token, expires_in, (optional) refresh_token
        """
        ...

    async def revoke_token(self, access_token: str) -> bool:
        """
        Revoke the token at the provider (optional).
        Returns True on success, False if provider doesn't support revocation.
        """
        return False

    # ── Helpers ─────────────────────────────────────────────────────────

    def is_configured(self) -> bool:
        """
        Return True if this connector has all required config
        (client IDs, secrets, callback base URL).
        """
        return True

    def redirect_uri(self) -> str:
        return f"{config.app_url.rstrip('/')}/api/auth/{self.provider_name}/callback"

    def connection_name(self, account_label: str) -> str:
        """Display name of a connected source, e.g. ``Dropbox (Jane Doe)``."""
        return f"{self.display_name} ({account_label})" if account_label else self.display_name

    def pending_name(self) -> str:
        return f"{self.display_name} (Connecting...)"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=config.http_timeout_seconds, transport=self._transport)

    async def _token_request(self, client: httpx.AsyncClient, url: str, data: Dict[str, str]) -> Dict[str, Any]:
        """POST a token grant and return the JSON body, raising ``ProviderError``."""
        resp = await client.post(url, data=data, headers={"Accept": "application/json"})
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code >= 400 or "error" in body:
            detail = body.get("error_description") or body.get("error") or resp.text[:200]
            raise ProviderError(self.provider_name, f"token request failed ({resp.status_code}): {detail}")
        if "access_token" not in body:
            raise ProviderError(self.provider_name, "token response did not include an access_token")
        return body


def to_credential(provider: str, token_data: Dict[str, Any]) -> Dict[str, Any]:
    """Convert a callback/refresh payload into the vault's credential shape."""
    expires_in = token_data.get("expires_in")
    scopes = token_data.get("scopes") or []
    return {
        "kind": "oauth",
        "provider": provider,
        "access_token": token_data["access_token"],
        "refresh_token": token_data.get("refresh_token"),
        "token_type": token_data.get("token_type", "Bearer"),
        "scope": " ".join(scopes) if isinstance(scopes, list) else str(scopes),
        "expires_at": int(time.time()) + int(expires_in) if expires_in else None,
    }
