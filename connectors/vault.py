"""
CredentialVault — tenant-scoped, encrypted storage of connector secrets.

Every row is keyed by ``(tenant_id, source_id)``; a lookup never matches on
``source_id`` alone, so two tenants whose source ids collide can never see
each other's credentials.  Values are JSON documents (OAuth token bundles,
API keys) encrypted with ``CredentialCipher`` before they touch the database.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.encryption import CredentialCipher
from database.models import SourceCredential
from utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)

Credential = Dict[str, Any]


def credential_reference(tenant_id: str, source_id: str) -> str:
    """Opaque reference returned to callers of ``put``."""
    return f"/tenants/{tenant_id}/datasources/{source_id}"


def _require_key(tenant_id: str, source_id: str) -> None:
    if not tenant_id or not source_id:
        raise ValueError("tenant_id and source_id are both required")


class CredentialVault:
    """Durable, encrypted-at-rest credential store."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: CredentialCipher | None = None,
    ):
        self._session_factory = session_factory
        self._cipher = cipher or CredentialCipher.from_config()
        self._locks = KeyedLock()

    @property
    def enabled(self) -> bool:
        return self._cipher.enabled

    def require(self) -> None:
        """Raise ``ConfigurationError`` unless an encryption key is configured."""
        self._cipher.require()

    async def put(self, tenant_id: str, source_id: str, credential: Credential) -> str:
        """Create or overwrite the credential for ``(tenant_id, source_id)``."""
        _require_key(tenant_id, source_id)
        self._cipher.require()
        ciphertext = self._cipher.encrypt(json.dumps(credential, sort_keys=True))

        async with self._locks.hold((tenant_id, source_id)):
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(SourceCredential, (tenant_id, source_id))
                    if row is None:
                        session.add(
                            SourceCredential(
                                tenant_id=tenant_id,
                                source_id=source_id,
                                ciphertext=ciphertext,
                            )
                        )
                    else:
                        row.ciphertext = ciphertext

        logger.info("Stored credential for source %s (tenant %s)", source_id, tenant_id)
        return credential_reference(tenant_id, source_id)

    async def get(self, tenant_id: str, source_id: str) -> Optional[Credential]:
        """Return the decrypted credential, or ``None`` if absent."""
        _require_key(tenant_id, source_id)
        self._cipher.require()
        async with self._session_factory() as session:
            row = await session.get(SourceCredential, (tenant_id, source_id))
            if row is None:
                return None
            ciphertext = row.ciphertext
        return json.loads(self._cipher.decrypt(ciphertext))

    async def delete(self, tenant_id: str, source_id: str) -> None:
        """Remove the credential; deleting an absent key is a no-op."""
        _require_key(tenant_id, source_id)
        self._cipher.require()
        async with self._locks.hold((tenant_id, source_id)):
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(SourceCredential).where(
                            SourceCredential.tenant_id == tenant_id,
                            SourceCredential.source_id == source_id,
                        )
                    )
        if result.rowcount:
            logger.info("Deleted credential for source %s (tenant %s)", source_id, tenant_id)
