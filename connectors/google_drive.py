"""
GoogleDriveConnector — OAuth2 for read-only Google Drive access.

``access_type=offline`` plus ``prompt=consent`` forces Google to issue a
refresh token on every consent, including re-connections.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List
from urllib.parse import urlencode

from config.settings import config
from connectors.base import BaseConnector
from connectors.errors import ProviderError

logger = logging.getLogger(__name__)

# Google OAuth2 endpoints
_GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
_GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
_GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


class GoogleDriveConnector(BaseConnector):
    """OAuth2 connector for Google Drive."""

    @property
    def provider_name(self) -> str:
        return "google"

    @property
    def display_name(self) -> str:
        return "Google Drive"

    @property
    def source_type(self) -> str:
        return "gdrive"

    @property
    def scopes(self) -> List[str]:
        return ["https://www.googleapis.com/auth/drive.readonly", "profile", "email"]

    def is_configured(self) -> bool:
        return bool(config.google_client_id and config.google_client_secret and config.app_url)

    def get_auth_url(self, state: str) -> str:
        params = {
            "client_id": config.google_client_id,
            "redirect_uri": self.redirect_uri(),
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
        }
        return f"{_GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def handle_callback(self, code: str) -> Dict[str, Any]:
        """Exchange auth code for tokens and fetch the user profile."""
        async with self._client() as client:
            token_data = await self._token_request(
                client,
                _GOOGLE_TOKEN_URL,
                {
                    "code": code,
                    "client_id": config.google_client_id,
                    "client_secret": config.google_client_secret,
                    "redirect_uri": self.redirect_uri(),
                    "grant_type": "authorization_code",
                },
            )

            user_resp = await client.get(
                _GOOGLE_USERINFO_URL,
                headers={"Authorization": f"Bearer {token_data['access_token']}"},
            )
            if user_resp.status_code >= 400:
                raise ProviderError(self.provider_name, f"profile lookup failed ({user_resp.status_code})")
            user = user_resp.json()

        return {
            "access_token": token_data["access_token"],
            "refresh_token": token_data.get("refresh_token"),
            "expires_in": token_data.get("expires_in", 3600),
            "token_type": token_data.get("token_type", "Bearer"),
            "scopes": token_data.get("scope", "").split(),
            "account_id": str(user.get("id", "")),
            "account_label": user.get("name") or user.get("email") or "User",
        }

    async def refresh_access_token(self, refresh_token: str) -> Dict[str, Any]:
        async with self._client() as client:
            data = await self._token_request(
                client,
                _GOOGLE_TOKEN_URL,
                {
                    "client_id": config.google_client_id,
                    "client_secret": config.google_client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
        return {
            "access_token": data["access_token"],
            "expires_in": data.get("expires_in", 3600),
        }

    async def revoke_token(self, access_token: str) -> bool:
        try:
            async with self._client() as client:
                resp = await client.post(_GOOGLE_REVOKE_URL, params={"token": access_token})
                return resp.status_code == 200
        except Exception:
            logger.warning("Google token revocation failed", exc_info=True)
            return False
