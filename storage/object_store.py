"""
Object store adapter — durable persistence of raw and derived artifacts.

A deliberately thin put/get/delete wrapper: backend failures are surfaced
verbatim and never retried here.  Callers (the sync orchestrator) decide
whether a failed write fails the run.

Chunk blobs live under a per-run prefix, so a run never overwrites the
blobs of the run the database currently points at.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import boto3
from botocore.exceptions import ClientError
from sqlalchemy import delete as sql_delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import config
from connectors.errors import ConfigurationError, ObjectNotFoundError
from database.models import StoredObject

logger = logging.getLogger(__name__)


class ObjectStore(ABC):
    """Common interface every blob backend implements."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> None:
        ...

    @abstractmethod
    async def get(self, key: str) -> bytes:
        """Return the stored bytes; raises ``ObjectNotFoundError`` if absent."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``; deleting a missing key is not an error."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# Database-backed
# ═══════════════════════════════════════════════════════════════════════════════


class DatabaseObjectStore(ObjectStore):
    """Blobs stored as rows in ``stored_objects``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(StoredObject, key)
                if row is None:
                    session.add(
                        StoredObject(key=key, content_type=content_type, data=data, size=len(data))
                    )
                else:
                    row.content_type = content_type
                    row.data = data
                    row.size = len(data)

    async def get(self, key: str) -> bytes:
        async with self._session_factory() as session:
            row = await session.get(StoredObject, key)
            if row is None:
                raise ObjectNotFoundError(key)
            return bytes(row.data)

    async def delete(self, key: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(sql_delete(StoredObject).where(StoredObject.key == key))


# ═══════════════════════════════════════════════════════════════════════════════
# Filesystem-backed
# ═══════════════════════════════════════════════════════════════════════════════


class FilesystemObjectStore(ObjectStore):
    """Blobs stored as files below ``root``; writes are atomic renames."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path == self.root or self.root not in path.parents:
            raise ValueError(f"Object key escapes the store root: {key!r}")
        return path

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _read(self, path: Path, key: str) -> bytes:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise ObjectNotFoundError(key) from None

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        await asyncio.to_thread(self._write, self._path_for(key), data)

    async def get(self, key: str) -> bytes:
        return await asyncio.to_thread(self._read, self._path_for(key), key)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._path_for(key).unlink, missing_ok=True)


# ═══════════════════════════════════════════════════════════════════════════════
# S3-compatible (AWS S3, Wasabi, MinIO)
# ═══════════════════════════════════════════════════════════════════════════════


class S3ObjectStore(ObjectStore):
    """
    Blobs stored in an S3-compatible bucket.

    boto3 clients are synchronous, so every call runs in a worker thread.
    ``client`` may be any object exposing ``put_object`` / ``get_object`` /
    ``delete_object``.
    """

    _MISSING_CODES = {"NoSuchKey", "404", "NotFound"}

    def __init__(self, bucket: str, client: Any):
        if not bucket:
            raise ConfigurationError("object_store_bucket is required for the s3 backend")
        self.bucket = bucket
        self._client = client

    def _read(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in self._MISSING_CODES:
                raise ObjectNotFoundError(key) from None
            raise
        body = response["Body"]
        try:
            return body.read()
        finally:
            body.close()

    async def put(self, key: str, data: bytes, content_type: str) -> None:
        await asyncio.to_thread(
            self._client.put_object, Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
        )

    async def get(self, key: str) -> bytes:
        return await asyncio.to_thread(self._read, key)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)


def build_s3_client() -> Any:
    """boto3 S3 client from the ``object_store_*`` settings."""
    return boto3.client(
        "s3",
        region_name=config.object_store_region or None,
        endpoint_url=config.object_store_endpoint or None,
        aws_access_key_id=config.object_store_access_key or None,
        aws_secret_access_key=config.object_store_secret_key or None,
    )


# ── Factory ─────────────────────────────────────────────────────────────


def build_object_store(
    session_factory: async_sessionmaker[AsyncSession],
    backend: Optional[str] = None,
    s3_client: Any = None,
) -> ObjectStore:
    """Return the backend selected by ``config.object_store_backend``."""
    backend = backend or config.object_store_backend
    if backend == "database":
        return DatabaseObjectStore(session_factory)
    if backend == "filesystem":
        logger.info("Object store: filesystem at %s", config.object_store_path)
        return FilesystemObjectStore(config.object_store_path)
    if backend == "s3":
        logger.info(
            "Object store: s3 bucket %s (endpoint %s)",
            config.object_store_bucket,
            config.object_store_endpoint or "aws default",
        )
        return S3ObjectStore(config.object_store_bucket, s3_client or build_s3_client())
    raise ConfigurationError(f"Unsupported object store backend: {backend}")


# ── Key layout ──────────────────────────────────────────────────────────


def chunk_key(tenant_id: str, source_id: str, run_id: str, chunk_index: int) -> str:
    return f"{tenant_id}/{source_id}/runs/{run_id}/chunks/{chunk_index:06d}.json"


def document_key(tenant_id: str, source_id: str, text_hash: str) -> str:
    return f"{tenant_id}/{source_id}/documents/{text_hash}.txt"


def manifest_key(tenant_id: str, source_id: str) -> str:
    return f"{tenant_id}/{source_id}/manifest.json"
