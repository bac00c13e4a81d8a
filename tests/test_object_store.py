"""
Tests for the object store backends and key layout.
"""

import io

import pytest
from botocore.exceptions import ClientError

from config.settings import config
from connectors.errors import ConfigurationError, ObjectNotFoundError
from storage import (
    DatabaseObjectStore,
    FilesystemObjectStore,
    S3ObjectStore,
    build_object_store,
    chunk_key,
    document_key,
    manifest_key,
)


class StubS3Client:
    """In-memory stand-in for a boto3 S3 client."""

    def __init__(self):
        self.objects = {}
        self.calls = []

    def put_object(self, Bucket, Key, Body, ContentType):
        self.calls.append(("put", Bucket, Key, ContentType))
        self.objects[(Bucket, Key)] = bytes(Body)

    def get_object(self, Bucket, Key):
        if (Bucket, Key) not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}

    def delete_object(self, Bucket, Key):
        self.calls.append(("delete", Bucket, Key))
        self.objects.pop((Bucket, Key), None)


class DeniedS3Client(StubS3Client):
    def get_object(self, Bucket, Key):
        raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GetObject")


@pytest.fixture(params=["database", "filesystem", "s3"])
def store(request, tmp_path, session_factory):
    if request.param == "database":
        return DatabaseObjectStore(session_factory)
    if request.param == "s3":
        return S3ObjectStore("kb-bucket", StubS3Client())
    return FilesystemObjectStore(tmp_path / "objects")


class TestObjectStore:
    @pytest.mark.asyncio
    async def test_put_then_get(self, store):
        await store.put("t1/s1/runs/r1/chunks/000000.json", b'{"a": 1}', "application/json")

        assert await store.get("t1/s1/runs/r1/chunks/000000.json") == b'{"a": 1}'

    @pytest.mark.asyncio
    async def test_put_overwrites(self, store):
        await store.put("t1/s1/manifest.json", b"old", "application/json")
        await store.put("t1/s1/manifest.json", b"new", "application/json")

        assert await store.get("t1/s1/manifest.json") == b"new"

    @pytest.mark.asyncio
    async def test_missing_key(self, store):
        with pytest.raises(ObjectNotFoundError):
            await store.get("t1/nothing-here")

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.put("t1/s1/documents/abc.txt", b"hello", "text/plain")

        await store.delete("t1/s1/documents/abc.txt")
        await store.delete("t1/s1/documents/abc.txt")

        with pytest.raises(ObjectNotFoundError):
            await store.get("t1/s1/documents/abc.txt")


class TestFilesystemObjectStore:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["../outside", "t1/../../outside", ""])
    async def test_keys_cannot_escape_root(self, tmp_path, key):
        store = FilesystemObjectStore(tmp_path / "objects")

        with pytest.raises(ValueError):
            await store.put(key, b"x", "text/plain")

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, tmp_path):
        store = FilesystemObjectStore(tmp_path / "objects")

        await store.put("t1/s1/documents/abc.txt", b"hello", "text/plain")

        assert [p.name for p in (tmp_path / "objects" / "t1" / "s1" / "documents").iterdir()] == ["abc.txt"]


class TestS3ObjectStore:
    @pytest.mark.asyncio
    async def test_writes_go_to_the_bucket_with_content_type(self):
        client = StubS3Client()
        store = S3ObjectStore("kb-bucket", client)

        await store.put("t1/s1/manifest.json", b"{}", "application/json")

        assert client.calls == [("put", "kb-bucket", "t1/s1/manifest.json", "application/json")]

    @pytest.mark.asyncio
    async def test_other_client_errors_propagate(self):
        store = S3ObjectStore("kb-bucket", DeniedS3Client())

        with pytest.raises(ClientError):
            await store.get("t1/s1/manifest.json")

    def test_bucket_is_required(self):
        with pytest.raises(ConfigurationError):
            S3ObjectStore("", StubS3Client())


class TestFactoryAndKeys:
    def test_backend_selection(self, session_factory, monkeypatch):
        monkeypatch.setattr(config, "object_store_bucket", "kb-bucket")

        assert isinstance(build_object_store(session_factory, "database"), DatabaseObjectStore)
        assert isinstance(build_object_store(session_factory, "filesystem"), FilesystemObjectStore)
        s3_store = build_object_store(session_factory, "s3", s3_client=StubS3Client())
        assert isinstance(s3_store, S3ObjectStore)
        assert s3_store.bucket == "kb-bucket"
        with pytest.raises(ConfigurationError):
            build_object_store(session_factory, "gcs")

    def test_key_layout(self):
        assert chunk_key("t1", "s1", "r1", 7) == "t1/s1/runs/r1/chunks/000007.json"
        assert document_key("t1", "s1", "abc") == "t1/s1/documents/abc.txt"
        assert manifest_key("t1", "s1") == "t1/s1/manifest.json"
