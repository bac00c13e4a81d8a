"""
Token manager — get / refresh per-source credentials.

This is the single interface the sync orchestrator uses to obtain a usable
credential for a given tenant + source combination.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from config.settings import config
from connectors.base import to_credential
from connectors.errors import ProviderError
from connectors.registry import ConnectorRegistry
from connectors.vault import Credential, CredentialVault

logger = logging.getLogger(__name__)


def needs_refresh(credential: Credential, margin_seconds: Optional[int] = None) -> bool:
    """True for an OAuth credential that expires within the refresh margin."""
    if credential.get("kind") != "oauth":
        return False
    expires_at = credential.get("expires_at")
    if not expires_at:
        return False
    margin = config.token_refresh_margin_seconds if margin_seconds is None else margin_seconds
    return expires_at < time.time() + margin


async def get_active_credential(
    vault: CredentialVault,
    tenant_id: str,
    source_id: str,
    source_type: str,
    *,
    registry: Optional[ConnectorRegistry] = None,
) -> Optional[Credential]:
    """
    Return a usable credential for the source.

    1. Look the credential up in the vault.
    2. If it is an OAuth token close to expiry, refresh it and write the
       refreshed credential back (keeping the old refresh token when the
       provider does not rotate it).
    3. Return the credential, or None if the source has none.

    Raises ``ProviderError`` when a refresh is needed but impossible.
    """
    credential = await vault.get(tenant_id, source_id)
    if credential is None or not needs_refresh(credential):
        return credential

    refresh_token = credential.get("refresh_token")
    if not refresh_token:
        raise ProviderError(source_type, "Token expired and no refresh token available")

    connector = (registry or ConnectorRegistry()).for_source_type(source_type)
    if connector is None:
        raise ProviderError(source_type, "No OAuth connector available to refresh the token")

    refreshed: Dict[str, Any] = await connector.refresh_access_token(refresh_token)
    updated = to_credential(credential.get("provider", connector.provider_name), refreshed)
    # Some providers rotate refresh tokens
    updated["refresh_token"] = refreshed.get("refresh_token") or refresh_token
    if not refreshed.get("scopes"):
        updated["scope"] = credential.get("scope", "")

    await vault.put(tenant_id, source_id, updated)
    logger.info("Refreshed %s token for source %s", source_type, source_id)
    return updated
