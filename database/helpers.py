"""
Database helper functions — data source records, status transitions and
chunk persistence.

All helpers take an open ``AsyncSession``; the caller owns the transaction
so several helpers can be committed together (for example a sync's chunk
replacement and its final status write).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from connectors.errors import SourceNotFoundError
from database.models import (
    ContentChunk,
    DataSource,
    SourceStatus,
    Tenant,
)

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Tenants ─────────────────────────────────────────────────────────────


async def ensure_tenant_exists(session: AsyncSession, tenant_id: str) -> Tenant:
    """Return the ``Tenant`` row, creating it on first use (idempotent)."""
    tenant = await session.get(Tenant, tenant_id)
    if tenant is None:
        tenant = Tenant(tenant_id=tenant_id, name=tenant_id)
        session.add(tenant)
        await session.flush()
    return tenant


async def update_tenant_plan(
    session: AsyncSession,
    tenant_id: str,
    *,
    plan: str,
    stripe_customer_id: Optional[str] = None,
    stripe_subscription_id: Optional[str] = None,
) -> Tenant:
    tenant = await ensure_tenant_exists(session, tenant_id)
    tenant.plan = plan
    if stripe_customer_id:
        tenant.stripe_customer_id = stripe_customer_id
    if stripe_subscription_id:
        tenant.stripe_subscription_id = stripe_subscription_id
    await session.flush()
    return tenant


# ── Data sources ────────────────────────────────────────────────────────


async def create_data_source(
    session: AsyncSession,
    tenant_id: str,
    source_type: str,
    name: str,
    *,
    status: SourceStatus = SourceStatus.PENDING,
    config: Optional[Dict[str, Any]] = None,
) -> DataSource:
    await ensure_tenant_exists(session, tenant_id)
    source = DataSource(
        tenant_id=tenant_id,
        type=source_type,
        name=name,
        status=status.value,
        config=config or {},
    )
    session.add(source)
    await session.flush()
    logger.info("Created %s data source %s for tenant %s (%s)", source_type, source.id, tenant_id, status.value)
    return source


async def get_data_source(
    session: AsyncSession,
    tenant_id: str,
    source_id: str,
    *,
    include_deleted: bool = False,
) -> Optional[DataSource]:
    """Look a source up by ``(tenant_id, source_id)``; never by id alone."""
    stmt = select(DataSource).where(
        DataSource.id == source_id,
        DataSource.tenant_id == tenant_id,
    )
    if not include_deleted:
        stmt = stmt.where(DataSource.deleted_at.is_(None))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_data_source(
    session: AsyncSession,
    tenant_id: str,
    source_id: str,
) -> DataSource:
    source = await get_data_source(session, tenant_id, source_id)
    if source is None:
        raise SourceNotFoundError(tenant_id, source_id)
    return source


async def list_data_sources(session: AsyncSession, tenant_id: str) -> List[DataSource]:
    result = await session.execute(
        select(DataSource)
        .where(DataSource.tenant_id == tenant_id, DataSource.deleted_at.is_(None))
        .order_by(DataSource.created_at, DataSource.id)
    )
    return list(result.scalars().all())


async def list_all_data_sources(
    session: AsyncSession,
    statuses: Optional[Iterable[str]] = None,
) -> List[DataSource]:
    """Every live source across every tenant, optionally filtered by status."""
    stmt = select(DataSource).where(DataSource.deleted_at.is_(None))
    if statuses is not None:
        stmt = stmt.where(DataSource.status.in_(list(statuses)))
    result = await session.execute(stmt.order_by(DataSource.tenant_id, DataSource.created_at, DataSource.id))
    return list(result.scalars().all())


async def transition_status(
    session: AsyncSession,
    tenant_id: str,
    source_id: str,
    *,
    from_statuses: Sequence[str],
    to_status: SourceStatus,
    **fields: Any,
) -> bool:
    """
    Compare-and-swap the status of one source.

    The row is only written when its current status is one of
    ``from_statuses``; returns ``True`` if this caller won the transition.
    Extra keyword arguments are written in the same statement.
    """
    result = await session.execute(
        update(DataSource)
        .where(
            DataSource.id == source_id,
            DataSource.tenant_id == tenant_id,
            DataSource.deleted_at.is_(None),
            DataSource.status.in_(list(from_statuses)),
        )
        .values(status=to_status.value, updated_at=utcnow(), **fields)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def tombstone_data_source(session: AsyncSession, tenant_id: str, source_id: str) -> bool:
    """Mark a source deleted and drop its chunks; returns False if absent."""
    result = await session.execute(
        update(DataSource)
        .where(
            DataSource.id == source_id,
            DataSource.tenant_id == tenant_id,
            DataSource.deleted_at.is_(None),
        )
        .values(
            deleted_at=utcnow(),
            status=SourceStatus.DISABLED.value,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    await session.execute(
        delete(ContentChunk).where(
            ContentChunk.tenant_id == tenant_id,
            ContentChunk.source_id == source_id,
        )
    )
    return True


# ── Chunks ──────────────────────────────────────────────────────────────


async def chunk_object_keys(session: AsyncSession, tenant_id: str, source_id: str) -> List[str]:
    """Object-store keys referenced by the source's current chunk set."""
    result = await session.execute(
        select(ContentChunk.object_key).where(
            ContentChunk.tenant_id == tenant_id,
            ContentChunk.source_id == source_id,
            ContentChunk.object_key.is_not(None),
        )
    )
    return list(result.scalars().all())


async def replace_chunks(
    session: AsyncSession,
    tenant_id: str,
    source_id: str,
    chunks: Sequence[Dict[str, Any]],
) -> int:
    """Swap the source's chunk set for ``chunks`` (full re-index, never append)."""
    await session.execute(
        delete(ContentChunk).where(
            ContentChunk.tenant_id == tenant_id,
            ContentChunk.source_id == source_id,
        )
    )
    for chunk in chunks:
        session.add(
            ContentChunk(
                tenant_id=tenant_id,
                source_id=source_id,
                chunk_index=chunk["chunk_index"],
                chunk_id=chunk["chunk_id"],
                document_id=chunk["document_id"],
                document_title=chunk.get("title"),
                origin_url=chunk.get("origin_url"),
                text=chunk["text"],
                content_hash=chunk["content_hash"],
                tags=list(chunk.get("tags", [])),
                chunk_metadata=dict(chunk.get("metadata") or {}),
                object_key=chunk.get("object_key"),
            )
        )
    await session.flush()
    return len(chunks)


async def list_chunks(
    session: AsyncSession,
    tenant_id: str,
    source_id: str,
    *,
    offset: int = 0,
    limit: Optional[int] = None,
) -> List[ContentChunk]:
    stmt = (
        select(ContentChunk)
        .where(ContentChunk.tenant_id == tenant_id, ContentChunk.source_id == source_id)
        .order_by(ContentChunk.chunk_index)
        .offset(offset)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def tags_by_content_hash(
    session: AsyncSession,
    tenant_id: str,
    source_id: str,
) -> Dict[str, List[str]]:
    """Tags of the previous run keyed by chunk content hash (non-empty only)."""
    result = await session.execute(
        select(ContentChunk.content_hash, ContentChunk.tags).where(
            ContentChunk.tenant_id == tenant_id,
            ContentChunk.source_id == source_id,
        )
    )
    return {h: list(tags) for h, tags in result.all() if tags}
