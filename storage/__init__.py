"""
storage — durable blob persistence behind a uniform put/get interface.
"""

from storage.object_store import (
    DatabaseObjectStore,
    FilesystemObjectStore,
    ObjectStore,
    S3ObjectStore,
    build_object_store,
    chunk_key,
    document_key,
    manifest_key,
)

__all__ = [
    "DatabaseObjectStore",
    "FilesystemObjectStore",
    "ObjectStore",
    "S3ObjectStore",
    "build_object_store",
    "chunk_key",
    "document_key",
    "manifest_key",
]
