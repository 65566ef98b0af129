"""Tests for the S3 storage backend against an in-memory client."""

import hashlib
import io
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

pytest.importorskip("boto3")

from botocore.exceptions import ClientError  # noqa: E402
from pydantic import ValidationError  # noqa: E402

from conftest import CountingStream, make_record  # noqa: E402
from db_archive.config.models import StorageConfig  # noqa: E402
from db_archive.errors import BackupNotFoundError, TransferError  # noqa: E402
from db_archive.storage.s3 import S3Storage  # noqa: E402
from db_archive.streams import MemoryStream, read_all  # noqa: E402

PAYLOAD = b"test backup data!"


class FakeS3Client:
    """Just enough of the boto3 S3 client API for S3Storage."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.metadata: dict[str, dict] = {}
        self.modified = datetime(2025, 6, 1, tzinfo=timezone.utc)
        self.fail_uploads = False

    def upload_fileobj(self, fileobj, bucket, key, ExtraArgs=None):
        if self.fail_uploads:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
        self.objects[key] = fileobj.read()
        self.metadata[key] = (ExtraArgs or {}).get("Metadata", {})

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self.objects[Key] = Body

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return self

    def paginate(self, Bucket, Prefix):
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        # Two pages to exercise pagination
        half = len(keys) // 2
        for chunk in (keys[:half], keys[half:]):
            yield {
                "Contents": [
                    {"Key": k, "Size": len(self.objects[k]), "LastModified": self.modified}
                    for k in chunk
                ]
            }


@pytest.fixture
def client() -> FakeS3Client:
    return FakeS3Client()


@pytest.fixture
def storage(client) -> S3Storage:
    return S3Storage(bucket="app-backups", prefix="backups/", client=client)


async def _download_bytes(storage: S3Storage, backup_id: str) -> bytes:
    stream = await storage.download(backup_id)
    try:
        return await read_all(stream)
    finally:
        await stream.aclose()


# ------------------------------------------------------------------
# Client construction
# ------------------------------------------------------------------


class TestClientConstruction:
    """boto3 client settings derived from config."""

    def test_static_credentials_and_endpoint(self):
        """Both keys and an endpoint are passed through to boto3."""
        config = StorageConfig(
            type="s3",
            bucket="b",
            region="eu-west-1",
            endpoint="http://localhost:9000",
            access_key="AK",
            secret_key="SK",
        )
        with patch("db_archive.storage.s3.boto3.client") as mock_client:
            S3Storage.from_config(config)

        mock_client.assert_called_once_with(
            "s3",
            region_name="eu-west-1",
            endpoint_url="http://localhost:9000",
            aws_access_key_id="AK",
            aws_secret_access_key="SK",
        )

    def test_default_credential_chain(self):
        """Without both keys no static credentials are passed."""
        config = StorageConfig(type="s3", bucket="b", access_key="AK")
        with patch("db_archive.storage.s3.boto3.client") as mock_client:
            S3Storage.from_config(config)

        mock_client.assert_called_once_with("s3", region_name="us-east-1")


# ------------------------------------------------------------------
# Upload / list
# ------------------------------------------------------------------


class TestUploadList:
    """Uploading and listing objects."""

    async def test_size_and_checksum(self, storage, client):
        """Upload computes size and MD5 and stores object metadata."""
        record = await storage.upload(MemoryStream(PAYLOAD), make_record())

        assert record.size_bytes == 17
        assert record.checksum == hashlib.md5(PAYLOAD).hexdigest()
        key = "backups/app_postgres_20250101-120000.dump"
        assert client.objects[key] == PAYLOAD
        assert client.metadata[key]["backup-id"] == record.id
        assert b"ID: 20250101-120000-1a2b3c4d" in client.objects[key + ".meta"]

    async def test_empty_bucket(self, storage):
        """Empty prefix lists as []."""
        assert await storage.list() == []

    async def test_list_round_trips_records(self, storage):
        """Listed records equal what upload returned, newest first."""
        stored = []
        for day in (1, 2, 3):
            ts = datetime(2025, 1, day, tzinfo=timezone.utc)
            stored.append(await storage.upload(MemoryStream(PAYLOAD), make_record(f"id-{day}", timestamp=ts)))

        assert await storage.list() == list(reversed(stored))

    async def test_list_ignores_other_prefixes(self, storage, client):
        """Objects outside the prefix or in nested folders are skipped."""
        client.objects["other/app_postgres_20250101-120000.dump"] = b"x"
        client.objects["backups/nested/app_postgres_20250101-120000.dump"] = b"x"
        client.objects["backups/readme.txt"] = b"x"

        assert await storage.list() == []

    async def test_missing_sidecar_falls_back(self, storage, client):
        """Without a sidecar the key is the ID and LastModified the timestamp."""
        await storage.upload(MemoryStream(PAYLOAD), make_record())
        del client.objects["backups/app_postgres_20250101-120000.dump.meta"]

        [record] = await storage.list()

        assert record.id == "app_postgres_20250101-120000.dump"
        assert record.timestamp == client.modified
        assert record.size_bytes == 17

    async def test_same_second_collision(self, storage, client):
        """A second upload in the same second gets a numbered key."""
        await storage.upload(MemoryStream(b"one"), make_record("a"))
        await storage.upload(MemoryStream(b"two"), make_record("b"))

        assert client.objects["backups/app_postgres_20250101-120000-1.dump"] == b"two"

    async def test_upload_failure(self, storage, client):
        """Client errors surface as TransferError."""
        client.fail_uploads = True
        with pytest.raises(TransferError) as exc_info:
            await storage.upload(MemoryStream(PAYLOAD), make_record())
        assert exc_info.value.backend == "s3"

    async def test_stream_error_propagates(self, storage, client):
        """A failing source stream aborts before anything is stored."""
        with pytest.raises(TransferError):
            await storage.upload(CountingStream(PAYLOAD, fail_after_read=True), make_record())
        assert client.objects == {}


# ------------------------------------------------------------------
# Download / delete
# ------------------------------------------------------------------


class TestDownloadDelete:
    """Retrieving and removing objects."""

    async def test_download_round_trip(self, storage):
        """download(id) returns exactly the uploaded bytes."""
        record = await storage.upload(MemoryStream(PAYLOAD), make_record())
        assert await _download_bytes(storage, record.id) == PAYLOAD

    async def test_download_missing(self, storage):
        """Unknown IDs raise BackupNotFoundError."""
        with pytest.raises(BackupNotFoundError):
            await storage.download("nope")

    async def test_delete_removes_object_and_sidecar(self, storage, client):
        """Deleting removes both objects and the record from list()."""
        record = await storage.upload(MemoryStream(PAYLOAD), make_record())

        await storage.delete(record.id)

        assert client.objects == {}
        assert await storage.list() == []

    async def test_delete_missing(self, storage):
        """Deleting an unknown ID raises BackupNotFoundError."""
        with pytest.raises(BackupNotFoundError):
            await storage.delete("nope")


# ------------------------------------------------------------------
# Unusual names and tags
# ------------------------------------------------------------------


class TestEdgeRoundTrip:
    """upload, list and download for records with unusual names and tags."""

    @pytest.mark.parametrize(
        "overrides",
        [
            pytest.param({"database_name": ""}, id="empty-database-name"),
            pytest.param({"database_type": ""}, id="empty-database-type"),
            pytest.param({"database_name": "my_app", "database_type": "my_sql"}, id="underscores"),
            pytest.param({"tags": {"note": "a=b: c", "k:": "v", "team.name": "x_y"}}, id="tag-separators"),
        ],
    )
    async def test_round_trip(self, storage, overrides):
        """The stored record is listed unchanged and downloadable by its ID."""
        stored = await storage.upload(MemoryStream(PAYLOAD), make_record(**overrides))

        assert await storage.list() == [stored]
        assert await _download_bytes(storage, stored.id) == PAYLOAD

    async def test_injected_sidecar_lines_refused(self, storage, client):
        """A record carrying a line break is refused before anything is written."""
        record = make_record().model_copy(update={"tags": {"note": "a\nID: hijacked"}})

        with pytest.raises(ValidationError):
            await storage.upload(MemoryStream(PAYLOAD), record)

        assert client.objects == {}
