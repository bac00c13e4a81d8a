"""
ConnectionStateMachine — drives a data source from ``Pending`` to
``Connected`` (or ``Error``) and owns every other lifecycle transition:
disable / enable / rename / disconnect and the non-OAuth onboarding paths.

    Pending ──redirect issued──▶ Connecting ──valid grant──▶ Connected
                                     │                          │  ▲
                                     └──provider error──▶ Error ◀┘  │ (sync)
    Connected / Error ──user──▶ Disabled ──user──▶ Connected

Callbacks are serialised per ``(tenant, source)`` and only act on a source
that is still awaiting one, so a duplicate delivery never spends the same
authorization code twice.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import config
from connectors.base import BaseConnector, to_credential
from connectors.errors import (
    ConfigurationError,
    InvalidStateError,
    SourceNotEligibleError,
    SourceNotFoundError,
)
from connectors.registry import ConnectorRegistry
from connectors.state import decode_state, encode_state
from connectors.vault import CredentialVault
from database import helpers
from database.models import SYNC_ELIGIBLE_STATUSES, SourceStatus, SourceType
from utils.keyed_lock import KeyedLock

logger = logging.getLogger(__name__)

_AWAITING_CALLBACK = (SourceStatus.PENDING.value, SourceStatus.CONNECTING.value)

# Source types onboarded with a pasted token instead of an OAuth handshake.
API_KEY_SOURCE_TYPES = frozenset(
    {
        SourceType.GITHUB.value,
        SourceType.NOTION.value,
        SourceType.CONFLUENCE.value,
        SourceType.HIGHSPOT.value,
        SourceType.SHOWPAD.value,
        SourceType.SEISMIC.value,
        SourceType.MINDTICKLE.value,
        SourceType.ENABLEUS.value,
    }
)

ConnectedHook = Callable[[str, str], Awaitable[Any]]


@dataclass
class Initiation:
    source_id: str
    tenant_id: str
    redirect_url: str


@dataclass
class CallbackOutcome:
    tenant_id: str
    source_id: str
    source_type: str
    status: str
    connected: bool = False
    duplicate: bool = False
    message: Optional[str] = None


class ConnectionStateMachine:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        vault: CredentialVault,
        registry: Optional[ConnectorRegistry] = None,
        on_connected: Optional[ConnectedHook] = None,
    ):
        self._session_factory = session_factory
        self._vault = vault
        self._registry = registry or ConnectorRegistry()
        self._on_connected = on_connected
        self._locks = KeyedLock()

    # ── OAuth ───────────────────────────────────────────────────────────

    def _connector(self, provider: str) -> BaseConnector:
        connector = self._registry.get(provider)
        if connector is None:
            raise LookupError(f"Unknown provider '{provider}'")
        return connector

    async def initiate(self, tenant_id: str, provider: str) -> Initiation:
        """
        Create a ``Pending`` source and return the provider's authorization URL.

        The source is committed before the URL is built so that any later
        callback can resolve its state, even if the user abandons the flow.
        Each call creates a fresh source; failed attempts are never reused.
        """
        if not tenant_id:
            raise ValueError("tenantId is required")
        connector = self._connector(provider)
        if not connector.is_configured():
            raise ConfigurationError(f"{connector.display_name} OAuth is not configured")

        async with self._session_factory() as session:
            async with session.begin():
                source = await helpers.create_data_source(
                    session,
                    tenant_id,
                    connector.source_type,
                    connector.pending_name(),
                    status=SourceStatus.PENDING,
                )
                source_id = source.id

        redirect_url = connector.get_auth_url(encode_state(tenant_id, source_id))

        async with self._session_factory() as session:
            async with session.begin():
                await helpers.transition_status(
                    session,
                    tenant_id,
                    source_id,
                    from_statuses=[SourceStatus.PENDING.value],
                    to_status=SourceStatus.CONNECTING,
                )

        logger.info("OAuth initiated: tenant=%s provider=%s source=%s", tenant_id, provider, source_id)
        return Initiation(source_id=source_id, tenant_id=tenant_id, redirect_url=redirect_url)

    async def complete_callback(
        self,
        provider: str,
        state: str,
        code: Optional[str] = None,
        error: Optional[str] = None,
        error_description: Optional[str] = None,
    ) -> CallbackOutcome:
        """
        Finish the handshake for the source named by ``state``.

        Raises ``InvalidStateError`` for undecodable state or a state that
        does not belong to this provider, and ``SourceNotFoundError`` when the
        state names no live source of that tenant.  Provider failures are
        recorded on the source and reported in the returned outcome.
        """
        connector = self._connector(provider)
        decoded = decode_state(state)
        if not decoded.source_id:
            raise InvalidStateError("state does not reference a data source")
        tenant_id, source_id = decoded.tenant_id, decoded.source_id

        async with self._locks.hold((tenant_id, source_id)):
            outcome = await self._complete_locked(connector, tenant_id, source_id, code, error, error_description)

        if outcome.connected:
            await self._notify_connected(tenant_id, source_id)
        return outcome

    async def _complete_locked(
        self,
        connector: BaseConnector,
        tenant_id: str,
        source_id: str,
        code: Optional[str],
        error: Optional[str],
        error_description: Optional[str],
    ) -> CallbackOutcome:
        async with self._session_factory() as session:
            source = await helpers.get_data_source(session, tenant_id, source_id)
            if source is None:
                raise SourceNotFoundError(tenant_id, source_id)
            if source.type != connector.source_type:
                raise InvalidStateError(
                    f"state references a {source.type} source, not {connector.source_type}"
                )
            status = source.status

        if status not in _AWAITING_CALLBACK:
            # Duplicate delivery: the code was already spent (or the flow failed).
            logger.info("Ignoring duplicate %s callback for source %s (status %s)", connector.provider_name, source_id, status)
            return CallbackOutcome(tenant_id, source_id, connector.source_type, status, duplicate=True)

        if error or not code:
            message = f"{error}: {error_description}" if error and error_description else (error or "missing authorization code")
            await self._record_error(tenant_id, source_id, message)
            return CallbackOutcome(tenant_id, source_id, connector.source_type, SourceStatus.ERROR.value, message=message)

        try:
            token_data = await asyncio.wait_for(
                connector.handle_callback(code),
                timeout=config.http_timeout_seconds,
            )
            await self._vault.put(tenant_id, source_id, to_credential(connector.provider_name, token_data))
        except Exception as exc:
            message = "Token exchange timed out" if isinstance(exc, asyncio.TimeoutError) else str(exc)
            logger.error("OAuth callback failed for %s source %s: %s", connector.provider_name, source_id, message)
            await self._record_error(tenant_id, source_id, message)
            return CallbackOutcome(tenant_id, source_id, connector.source_type, SourceStatus.ERROR.value, message=message)

        async with self._session_factory() as session:
            async with session.begin():
                won = await helpers.transition_status(
                    session,
                    tenant_id,
                    source_id,
                    from_statuses=_AWAITING_CALLBACK,
                    to_status=SourceStatus.CONNECTED,
                    name=connector.connection_name(token_data.get("account_label", "")),
                    last_error=None,
                )
        if not won:
            # Source was disconnected while the exchange was in flight.
            await self._vault.delete(tenant_id, source_id)
            raise SourceNotFoundError(tenant_id, source_id)

        logger.info("OAuth connected: tenant=%s provider=%s source=%s", tenant_id, connector.provider_name, source_id)
        return CallbackOutcome(
            tenant_id,
            source_id,
            connector.source_type,
            SourceStatus.CONNECTED.value,
            connected=True,
            message=f"Connected {connector.display_name}",
        )

    async def _record_error(self, tenant_id: str, source_id: str, message: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await helpers.transition_status(
                    session,
                    tenant_id,
                    source_id,
                    from_statuses=_AWAITING_CALLBACK,
                    to_status=SourceStatus.ERROR,
                    last_error=message,
                )

    # ── Non-OAuth onboarding ────────────────────────────────────────────

    async def connect_website(
        self,
        tenant_id: str,
        url: str,
        options: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Public websites need no credential: the source starts ``Connected``."""
        options = dict(options or {})
        options["url"] = url
        async with self._session_factory() as session:
            async with session.begin():
                source = await helpers.create_data_source(
                    session,
                    tenant_id,
                    SourceType.WEBSITE.value,
                    name or url,
                    status=SourceStatus.CONNECTED,
                    config=options,
                )
                view = source.to_dict()
        await self._notify_connected(tenant_id, view["id"])
        return view

    async def connect_with_api_key(
        self,
        tenant_id: str,
        source_type: str,
        name: str,
        secret: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Store a pasted token in the vault and create the source ``Connected``."""
        if source_type not in API_KEY_SOURCE_TYPES:
            raise ValueError(f"Source type '{source_type}' does not accept API keys")
        if not secret.get("api_key"):
            raise ValueError("api_key is required")
        self._vault.require()

        async with self._session_factory() as session:
            async with session.begin():
                source = await helpers.create_data_source(
                    session,
                    tenant_id,
                    source_type,
                    name,
                    status=SourceStatus.PENDING,
                    config=options or {},
                )
                source_id = source.id

        try:
            await self._vault.put(tenant_id, source_id, {"kind": "api_key", **secret})
        except Exception:
            async with self._session_factory() as session:
                async with session.begin():
                    await helpers.tombstone_data_source(session, tenant_id, source_id)
            raise

        async with self._session_factory() as session:
            async with session.begin():
                await helpers.transition_status(
                    session,
                    tenant_id,
                    source_id,
                    from_statuses=[SourceStatus.PENDING.value],
                    to_status=SourceStatus.CONNECTED,
                )
                view = (await helpers.require_data_source(session, tenant_id, source_id)).to_dict()
        await self._notify_connected(tenant_id, source_id)
        return view

    async def _notify_connected(self, tenant_id: str, source_id: str) -> None:
        if self._on_connected is None:
            return
        try:
            await self._on_connected(tenant_id, source_id)
        except Exception:
            logger.exception("Post-connect hook failed for source %s", source_id)

    # ── User actions ────────────────────────────────────────────────────

    async def disconnect(self, tenant_id: str, source_id: str) -> bool:
        """
        Tombstone the source and delete its credential.

        Returns False when no live source matched; the credential delete runs
        either way so a retried disconnect converges.
        """
        try:
            credential = await self._vault.get(tenant_id, source_id)
        except ConfigurationError:
            # Unreadable under the current keys: nothing to revoke, still removable.
            logger.warning("Credential for source %s cannot be decrypted; skipping revocation", source_id)
            credential = None
        async with self._session_factory() as session:
            async with session.begin():
                source = await helpers.get_data_source(session, tenant_id, source_id)
                source_type = source.type if source else None
                removed = await helpers.tombstone_data_source(session, tenant_id, source_id)
        await self._vault.delete(tenant_id, source_id)

        if removed and credential and credential.get("kind") == "oauth":
            connector = self._registry.for_source_type(source_type)
            if connector is not None:
                try:
                    await connector.revoke_token(credential["access_token"])
                except Exception:
                    logger.warning("Token revocation failed for source %s", source_id, exc_info=True)

        if removed:
            logger.info("Disconnected source %s for tenant %s", source_id, tenant_id)
        return removed

    async def disable(self, tenant_id: str, source_id: str) -> Dict[str, Any]:
        return await self._user_transition(
            tenant_id,
            source_id,
            from_statuses=SYNC_ELIGIBLE_STATUSES,
            to_status=SourceStatus.DISABLED,
            action="disable",
        )

    async def enable(self, tenant_id: str, source_id: str) -> Dict[str, Any]:
        async with self._session_factory() as session:
            source = await helpers.require_data_source(session, tenant_id, source_id)
            source_type = source.type
        if source_type != SourceType.WEBSITE.value and await self._vault.get(tenant_id, source_id) is None:
            raise SourceNotEligibleError(source_id, SourceStatus.DISABLED.value, action="enable without a credential")
        return await self._user_transition(
            tenant_id,
            source_id,
            from_statuses=[SourceStatus.DISABLED.value],
            to_status=SourceStatus.CONNECTED,
            action="enable",
        )

    async def _user_transition(
        self,
        tenant_id: str,
        source_id: str,
        *,
        from_statuses,
        to_status: SourceStatus,
        action: str,
    ) -> Dict[str, Any]:
        async with self._session_factory() as session:
            async with session.begin():
                source = await helpers.require_data_source(session, tenant_id, source_id)
                current = source.status
                won = await helpers.transition_status(
                    session,
                    tenant_id,
                    source_id,
                    from_statuses=from_statuses,
                    to_status=to_status,
                )
                if not won:
                    raise SourceNotEligibleError(source_id, current, action=action)
            await session.refresh(source)
            return source.to_dict()

    async def rename(self, tenant_id: str, source_id: str, name: str) -> Dict[str, Any]:
        if not name or not name.strip():
            raise ValueError("name must not be empty")
        async with self._session_factory() as session:
            async with session.begin():
                source = await helpers.require_data_source(session, tenant_id, source_id)
                source.name = name.strip()
            return source.to_dict()

