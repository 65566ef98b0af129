"""S3-compatible storage backend.

Provides ``S3Storage``, an implementation of the ``StorageBackend``
protocol on top of boto3.  Objects and sidecars follow the same layout as
the disk backend (``db_archive.storage.layout``), stored under a key
prefix, so listings round-trip the full ``BackupRecord``.

boto3 is synchronous; every call runs in a worker thread.  Uploads are
hashed while being spooled to a temporary file (kept in memory up to
``SPOOL_MAX_MEMORY``), then handed to ``upload_fileobj``.

Requires the ``s3`` extra (``pip install db-archive[s3]``).

Usage:
    from db_archive.storage.s3 import S3Storage

    storage = S3Storage(bucket="app-backups", prefix="backups/", region="eu-west-1")
    records = await storage.list()
"""

from __future__ import annotations

import asyncio
import logging
import posixpath
import tempfile
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from db_archive.backup.models import BackupRecord
from db_archive.config.models import StorageConfig
from db_archive.errors import BackupNotFoundError, TransferError
from db_archive.storage import layout
from db_archive.streams import ByteStream, iter_chunks

logger = logging.getLogger(__name__)

BACKEND_NAME = "s3"
SPOOL_MAX_MEMORY = 64 * 1024 * 1024

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class S3BodyStream:
    """``ByteStream`` over a botocore ``StreamingBody``."""

    def __init__(self, body: Any) -> None:
        self._body = body

    async def read(self, size: int = -1) -> bytes:
        return await asyncio.to_thread(self._body.read, None if size < 0 else size)

    async def aclose(self) -> None:
        await asyncio.to_thread(self._body.close)


class S3Storage:
    """S3 implementation of the ``StorageBackend`` protocol.

    Args:
        bucket: Bucket name.
        prefix: Key prefix acting as the backup namespace.
        region: AWS region.
        endpoint: Custom endpoint URL (MinIO, LocalStack).  Empty for AWS.
        access_key: Static access key.  With ``secret_key`` empty, the
            default credential chain (IAM role, env vars) is used.
        secret_key: Static secret key.
        client: Pre-built boto3 S3 client; overrides the settings above.
    """

    def __init__(
        self,
        bucket: str,
        prefix: str = "backups/",
        region: str = "us-east-1",
        endpoint: str = "",
        access_key: str = "",
        secret_key: str = "",
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix
        if client is None:
            kwargs: dict[str, Any] = {"region_name": region}
            if endpoint:
                kwargs["endpoint_url"] = endpoint
            if access_key and secret_key:
                kwargs["aws_access_key_id"] = access_key
                kwargs["aws_secret_access_key"] = secret_key
            client = boto3.client("s3", **kwargs)
        self._client = client

    @classmethod
    def from_config(cls, config: StorageConfig) -> "S3Storage":
        """Build from the S3 fields of ``StorageConfig``."""
        return cls(
            bucket=config.bucket,
            prefix=config.prefix,
            region=config.region,
            endpoint=config.endpoint,
            access_key=config.access_key,
            secret_key=config.secret_key,
        )

    # ------------------------------------------------------------------
    # StorageBackend
    # ------------------------------------------------------------------

    async def upload(self, stream: ByteStream, record: BackupRecord) -> BackupRecord:
        """Upload ``stream`` with a sidecar object, computing MD5 and size."""
        record = layout.storable(record)
        entries = await asyncio.to_thread(self._scan)
        taken = {key for key, _ in entries}
        seq = 0
        while layout.object_key(record, seq) in taken:
            seq += 1
        name = layout.object_key(record, seq)
        key = self._key(name)

        digest = layout.PayloadDigest()
        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY) as spool:
            async for chunk in iter_chunks(stream):
                digest.update(chunk)
                await asyncio.to_thread(spool.write, chunk)
            spool.seek(0)

            finalized = digest.finalize(record)
            extra_args = {
                "ContentType": "application/octet-stream",
                "Metadata": {
                    "backup-id": finalized.id,
                    "database-name": finalized.database_name,
                    "database-type": finalized.database_type,
                    "timestamp": finalized.timestamp.isoformat(),
                    "checksum": finalized.checksum,
                },
            }
            try:
                await asyncio.to_thread(
                    self._client.upload_fileobj, spool, self.bucket, key, ExtraArgs=extra_args
                )
            except (BotoCoreError, ClientError) as e:
                raise TransferError(
                    f"failed to upload {key} to bucket {self.bucket}: {e}",
                    backend=BACKEND_NAME,
                    operation="upload",
                ) from e

        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self.bucket,
                Key=layout.sidecar_key(key),
                Body=layout.format_sidecar(finalized).encode(),
                ContentType="text/plain",
            )
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Failed to write metadata object for {key}: {e}")

        logger.info(f"Stored backup {finalized.id} as s3://{self.bucket}/{key} ({finalized.size_bytes} bytes)")
        return finalized

    async def list(self) -> list[BackupRecord]:
        """List backups under the prefix, newest first."""
        entries = await asyncio.to_thread(self._scan)
        return layout.sort_newest_first(record for _, record in entries)

    async def download(self, backup_id: str) -> ByteStream:
        """Open the backup object for streaming."""
        name = await asyncio.to_thread(self._resolve, backup_id)
        key = self._key(name)
        try:
            response = await asyncio.to_thread(self._client.get_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _is_missing(e):
                raise BackupNotFoundError(backup_id, backend=BACKEND_NAME) from e
            raise TransferError(
                f"failed to download {key}: {e}", backend=BACKEND_NAME, operation="download"
            ) from e
        except BotoCoreError as e:
            raise TransferError(
                f"failed to download {key}: {e}", backend=BACKEND_NAME, operation="download"
            ) from e
        return S3BodyStream(response["Body"])

    async def delete(self, backup_id: str) -> None:
        """Delete the backup object and its sidecar."""
        name = await asyncio.to_thread(self._resolve, backup_id)
        key = self._key(name)
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise TransferError(
                f"failed to delete {key}: {e}", backend=BACKEND_NAME, operation="delete"
            ) from e

        try:
            await asyncio.to_thread(
                self._client.delete_object, Bucket=self.bucket, Key=layout.sidecar_key(key)
            )
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Failed to delete metadata object for {key}: {e}")

        logger.info(f"Deleted backup {backup_id} (s3://{self.bucket}/{key})")

    # ------------------------------------------------------------------
    # Blocking helpers (run in worker threads)
    # ------------------------------------------------------------------

    def _key(self, name: str) -> str:
        return posixpath.join(self.prefix, name) if self.prefix else name

    def _scan(self) -> list[tuple[str, BackupRecord]]:
        """Collect ``(name, record)`` for every backup object under the prefix."""
        objects: dict[str, dict] = {}
        sidecars: set[str] = set()
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
                for obj in page.get("Contents", []):
                    name = obj["Key"][len(self.prefix):].lstrip("/") if self.prefix else obj["Key"]
                    if "/" in name:
                        continue
                    if name.endswith(layout.SIDECAR_SUFFIX):
                        sidecars.add(name)
                    elif layout.is_object_key(name):
                        objects[name] = obj
        except (BotoCoreError, ClientError) as e:
            raise TransferError(
                f"failed to list bucket {self.bucket}: {e}", backend=BACKEND_NAME, operation="list"
            ) from e

        entries: list[tuple[str, BackupRecord]] = []
        for name, obj in objects.items():
            record = layout.fallback_record(name, obj["LastModified"], obj.get("Size", 0))
            sidecar = layout.sidecar_key(name)
            if sidecar in sidecars:
                try:
                    response = self._client.get_object(Bucket=self.bucket, Key=self._key(sidecar))
                    content = response["Body"].read().decode()
                    record = layout.parse_sidecar(content, record)
                except (BotoCoreError, ClientError, UnicodeDecodeError) as e:
                    logger.warning(f"Ignoring unreadable metadata object {sidecar}: {e}")
            entries.append((name, record))
        return entries

    def _resolve(self, backup_id: str) -> str:
        """Map a record ID or object name to an existing object name."""
        if not layout.is_safe_id(backup_id):
            raise BackupNotFoundError(backup_id, backend=BACKEND_NAME)
        name = layout.find_key(self._scan(), backup_id)
        if name is None:
            raise BackupNotFoundError(backup_id, backend=BACKEND_NAME)
        return name


def _is_missing(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in _MISSING_CODES
