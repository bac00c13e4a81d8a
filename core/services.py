"""
Service container — wires the vault, object store, state machine and
sync orchestrator around one session factory.

The FastAPI app builds one container at import time; tests build their
own around a temporary database and fake fetchers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from connectors.encryption import CredentialCipher
from connectors.fetchers import BaseFetcher
from connectors.registry import ConnectorRegistry
from connectors.state_machine import ConnectionStateMachine
from connectors.vault import CredentialVault
from core.sync_orchestrator import SyncOrchestrator
from document_pipeline.normalizer import ContentNormalizer
from storage.object_store import ObjectStore, build_object_store

logger = logging.getLogger(__name__)


@dataclass
class Services:
    session_factory: async_sessionmaker[AsyncSession]
    vault: CredentialVault
    object_store: ObjectStore
    registry: ConnectorRegistry
    state_machine: ConnectionStateMachine
    orchestrator: SyncOrchestrator
    engine: Optional[AsyncEngine] = None


def build_services(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    *,
    engine: Optional[AsyncEngine] = None,
    cipher: Optional[CredentialCipher] = None,
    object_store: Optional[ObjectStore] = None,
    registry: Optional[ConnectorRegistry] = None,
    fetchers: Optional[Dict[str, BaseFetcher]] = None,
    normalizer: Optional[ContentNormalizer] = None,
    max_workers: Optional[int] = None,
) -> Services:
    if session_factory is None:
        from database import session as db

        session_factory, engine = db.async_session_factory, db.engine

    registry = registry or ConnectorRegistry()
    vault = CredentialVault(session_factory, cipher)
    object_store = object_store or build_object_store(session_factory)
    orchestrator = SyncOrchestrator(
        session_factory,
        vault,
        object_store,
        normalizer=normalizer,
        fetchers=fetchers,
        registry=registry,
        max_workers=max_workers,
    )

    async def queue_first_sync(tenant_id: str, source_id: str) -> bool:
        queued = orchestrator.submit(tenant_id, source_id)
        logger.info("First sync for source %s %s", source_id, "queued" if queued else "not queued (queue full)")
        return queued

    state_machine = ConnectionStateMachine(session_factory, vault, registry, on_connected=queue_first_sync)
    return Services(
        session_factory=session_factory,
        vault=vault,
        object_store=object_store,
        registry=registry,
        state_machine=state_machine,
        orchestrator=orchestrator,
        engine=engine,
    )
