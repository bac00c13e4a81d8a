"""
SharePointConnector — OAuth2 against the Microsoft identity platform.

``offline_access`` is what makes Azure AD return a refresh token.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List
from urllib.parse import urlencode

from config.settings import config
from connectors.base import BaseConnector
from connectors.errors import ProviderError

logger = logging.getLogger(__name__)

_MS_LOGIN = "https://login.microsoftonline.com"
_GRAPH_API = "https://graph.microsoft.com/v1.0"


class SharePointConnector(BaseConnector):
    """OAuth2 connector for SharePoint / OneDrive via Microsoft Graph."""

    @property
    def provider_name(self) -> str:
        return "microsoft"

    @property
    def display_name(self) -> str:
        return "SharePoint"

    @property
    def source_type(self) -> str:
        return "sharepoint"

    @property
    def scopes(self) -> List[str]:
        return ["Sites.Read.All", "Files.Read.All", "offline_access", "User.Read"]

    def is_configured(self) -> bool:
        return bool(config.microsoft_client_id and config.microsoft_client_secret and config.app_url)

    def _endpoint(self, name: str) -> str:
        return f"{_MS_LOGIN}/{config.microsoft_tenant}/oauth2/v2.0/{name}"

    def get_auth_url(self, state: str) -> str:
        params = {
            "client_id": config.microsoft_client_id,
            "redirect_uri": self.redirect_uri(),
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "response_mode": "query",
            "state": state,
        }
        return f"{self._endpoint('authorize')}?{urlencode(params)}"

    async def handle_callback(self, code: str) -> Dict[str, Any]:
        async with self._client() as client:
            token_data = await self._token_request(
                client,
                self._endpoint("token"),
                {
                    "client_id": config.microsoft_client_id,
                    "client_secret": config.microsoft_client_secret,
                    "code": code,
                    "redirect_uri": self.redirect_uri(),
                    "grant_type": "authorization_code",
                    "scope": " ".join(self.scopes),
                },
            )

            me_resp = await client.get(
                f"{_GRAPH_API}/me",
                headers={"Authorization": f"Bearer {token_data['access_token']}"},
            )
            if me_resp.status_code >= 400:
                raise ProviderError(self.provider_name, f"profile lookup failed ({me_resp.status_code})")
            me = me_resp.json()

        return {
            "access_token": token_data["access_token"],
            "refresh_token": token_data.get("refresh_token"),
            "expires_in": token_data.get("expires_in", 3600),
            "scopes": token_data.get("scope", "").split(),
            "account_id": me.get("id", ""),
            "account_label": me.get("displayName") or me.get("userPrincipalName", ""),
        }

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        async with self._client() as client:
            data = await self._token_request(
                client,
                self._endpoint("token"),
                {
                    "client_id": config.microsoft_client_id,
                    "client_secret": config.microsoft_client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                    "scope": " ".join(self.scopes),
                },
            )
        # Azure AD rotates refresh tokens
        return {
            "access_token": data["access_token"],
            "refresh_token": data.get("refresh_token"),
            "expires_in": data.get("expires_in", 3600),
        }
