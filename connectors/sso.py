"""
Single sign-on initiation for Google, Microsoft and Okta.

Only the authorization redirect lives here; the sign-in callbacks belong to
the authentication layer.  The state carries the tenant alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
from urllib.parse import urlencode

from config.settings import config


@dataclass(frozen=True)
class SsoProvider:
    provider_name: str
    display_name: str
    authorize_url: Callable[[], str]
    client_id: Callable[[], str]
    required: Callable[[], List[str]]
    scopes: tuple = ("openid", "profile", "email")

    def is_configured(self) -> bool:
        return all(self.required()) and bool(config.app_url)

    def redirect_uri(self) -> str:
        return f"{config.app_url.rstrip('/')}/api/auth/sso/{self.provider_name}/callback"

    def get_auth_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id(),
            "redirect_uri": self.redirect_uri(),
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        return f"{self.authorize_url()}?{urlencode(params)}"


_SSO_PROVIDERS: Dict[str, SsoProvider] = {
    "google": SsoProvider(
        provider_name="google",
        display_name="Google",
        authorize_url=lambda: "https://accounts.google.com/o/oauth2/v2/auth",
        client_id=lambda: config.google_client_id,
        required=lambda: [config.google_client_id],
    ),
    "microsoft": SsoProvider(
        provider_name="microsoft",
        display_name="Microsoft",
        authorize_url=lambda: f"https://login.microsoftonline.com/{config.microsoft_tenant}/oauth2/v2.0/authorize",
        client_id=lambda: config.microsoft_client_id,
        required=lambda: [config.microsoft_client_id],
    ),
    "okta": SsoProvider(
        provider_name="okta",
        display_name="Okta",
        authorize_url=lambda: f"https://{config.okta_domain}/oauth2/v1/authorize",
        client_id=lambda: config.okta_client_id,
        required=lambda: [config.okta_client_id, config.okta_domain],
    ),
}


def get_sso_provider(name: str) -> Optional[SsoProvider]:
    return _SSO_PROVIDERS.get(name)
