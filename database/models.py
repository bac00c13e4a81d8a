"""
SQLAlchemy ORM models for tenants, data sources, credentials and content.

Column types are kept dialect-neutral (JSON, LargeBinary, String ids) so the
same schema runs on PostgreSQL in production and SQLite in tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class SourceStatus(str, Enum):
    PENDING = "Pending"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    SYNCING = "Syncing"
    ERROR = "Error"
    DISABLED = "Disabled"


class SourceType(str, Enum):
    WEBSITE = "website"
    SHAREPOINT = "sharepoint"
    GDRIVE = "gdrive"
    DROPBOX = "dropbox"
    CONFLUENCE = "confluence"
    NOTION = "notion"
    GITHUB = "github"
    HIGHSPOT = "highspot"
    SHOWPAD = "showpad"
    SEISMIC = "seismic"
    MINDTICKLE = "mindtickle"
    ENABLEUS = "enableus"


# Statuses from which a sync may start.
SYNC_ELIGIBLE_STATUSES = (SourceStatus.CONNECTED.value, SourceStatus.ERROR.value)


class Tenant(Base):
    __tablename__ = "tenants"

    tenant_id = Column(String(64), primary_key=True)
    name = Column(String(255))
    plan = Column(String(32), nullable=False, default="free")
    stripe_customer_id = Column(String(255))
    stripe_subscription_id = Column(String(255))
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class DataSource(Base):
    __tablename__ = "data_sources"

    id = Column(String(36), primary_key=True, default=_new_id)
    tenant_id = Column(String(64), nullable=False, index=True)
    type = Column(String(32), nullable=False)
    name = Column(String(512), nullable=False)
    status = Column(String(16), nullable=False, default=SourceStatus.PENDING.value)
    config = Column(JSON, nullable=False, default=dict)
    item_count = Column(Integer, nullable=False, default=0)
    last_synced_at = Column(DateTime(timezone=True))
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
    deleted_at = Column(DateTime(timezone=True))

    __table_args__ = (Index("ix_data_sources_tenant_status", "tenant_id", "status"),)

    def to_dict(self) -> dict:
        """Public view of the source; never includes credential material."""
        return {
            "id": self.id,
            "tenantId": self.tenant_id,
            "type": self.type,
            "name": self.name,
            "status": self.status,
            "config": self.config or {},
            "itemCount": self.item_count or 0,
            "lastSyncedAt": self.last_synced_at.isoformat() if self.last_synced_at else "never",
            "lastError": self.last_error,
        }


class SourceCredential(Base):
    __tablename__ = "source_credentials"

    tenant_id = Column(String(64), primary_key=True)
    source_id = Column(String(36), primary_key=True)
    ciphertext = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class ContentChunk(Base):
    __tablename__ = "content_chunks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(64), nullable=False)
    source_id = Column(String(36), nullable=False)
    chunk_index = Column(Integer, nullable=False)
    chunk_id = Column(String(64), nullable=False)
    document_id = Column(String(1024), nullable=False)
    document_title = Column(String(1024))
    origin_url = Column(String(2048))
    text = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)
    tags = Column(JSON, nullable=False, default=list)
    chunk_metadata = Column(JSON, nullable=False, default=dict)
    object_key = Column(String(1024))
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("source_id", "chunk_index", name="uq_content_chunks_source_index"),
        Index("ix_content_chunks_tenant_source", "tenant_id", "source_id"),
    )

    def to_dict(self) -> dict:
        return {
            "sourceId": self.source_id,
            "chunkIndex": self.chunk_index,
            "chunkId": self.chunk_id,
            "documentId": self.document_id,
            "title": self.document_title,
            "originUrl": self.origin_url,
            "text": self.text,
            "tags": list(self.tags or []),
            "metadata": dict(self.chunk_metadata or {}),
        }


class StoredObject(Base):
    __tablename__ = "stored_objects"

    key = Column(String(1024), primary_key=True)
    content_type = Column(String(255), nullable=False)
    data = Column(LargeBinary, nullable=False)
    size = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
