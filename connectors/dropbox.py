"""
DropboxConnector — OAuth2 for Dropbox file access.

Requests ``token_access_type=offline`` so the first exchange returns a
refresh token and later syncs never need re-consent.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List
from urllib.parse import urlencode

from config.settings import config
from connectors.base import BaseConnector
from connectors.errors import ProviderError

logger = logging.getLogger(__name__)

# Dropbox OAuth2 endpoints
_DBX_AUTH_URL = "https://www.dropbox.com/oauth2/authorize"
_DBX_TOKEN_URL = "https://api.dropboxapi.com/oauth2/token"
_DBX_API = "https://api.dropboxapi.com/2"


class DropboxConnector(BaseConnector):
    """OAuth2 connector for Dropbox."""

    @property
    def provider_name(self) -> str:
        return "dropbox"

    @property
    def display_name(self) -> str:
        return "Dropbox"

    @property
    def source_type(self) -> str:
        return "dropbox"

    @property
    def scopes(self) -> List[str]:
        return ["files.metadata.read", "files.content.read", "account_info.read"]

    def is_configured(self) -> bool:
        return bool(config.dropbox_app_key and config.dropbox_app_secret and config.app_url)

    def get_auth_url(self, state: str) -> str:
        params = {
            "client_id": config.dropbox_app_key,
            "redirect_uri": self.redirect_uri(),
            "response_type": "code",
            "token_access_type": "offline",  # refresh token
            "scope": " ".join(self.scopes),
            "state": state,
        }
        return f"{_DBX_AUTH_URL}?{urlencode(params)}"

    async def handle_callback(self, code: str) -> Dict[str, Any]:
        """Exchange auth code for tokens and fetch the account name."""
        async with self._client() as client:
            token_data = await self._token_request(
                client,
                _DBX_TOKEN_URL,
                {
                    "code": code,
                    "grant_type": "authorization_code",
                    "client_id": config.dropbox_app_key,
                    "client_secret": config.dropbox_app_secret,
                    "redirect_uri": self.redirect_uri(),
                },
            )

            account_resp = await client.post(
                f"{_DBX_API}/users/get_current_account",
                headers={"Authorization": f"Bearer {token_data['access_token']}"},
            )
            if account_resp.status_code >= 400:
                raise ProviderError(self.provider_name, f"account lookup failed ({account_resp.status_code})")
            account = account_resp.json()

        return {
            "access_token": token_data["access_token"],
            "refresh_token": token_data.get("refresh_token"),
            "expires_in": token_data.get("expires_in", 14400),
            "scopes": token_data.get("scope", "").split(),
            "account_id": token_data.get("account_id") or account.get("account_id", ""),
            "account_label": (account.get("name") or {}).get("display_name", ""),
        }

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        async with self._client() as client:
            data = await self._token_request(
                client,
                _DBX_TOKEN_URL,
                {
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                    "client_id": config.dropbox_app_key,
                    "client_secret": config.dropbox_app_secret,
                },
            )
        return {
            "access_token": data["access_token"],
            "expires_in": data.get("expires_in", 14400),
        }

    async def revoke_token(self, access_token: str) -> bool:
        try:
            async with self._client() as client:
                resp = await client.post(
                    f"{_DBX_API}/auth/token/revoke",
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                return resp.status_code == 200
        except Exception:
            logger.warning("Dropbox token revocation failed", exc_info=True)
            return False
