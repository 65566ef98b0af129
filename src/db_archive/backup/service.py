"""Backup and restore orchestration across one database and one storage backend.

``BackupService`` holds no state of its own.  Each call is a single
sequential flow that delegates all I/O to the two injected backends:

    execute:  snapshot -> record -> backup stream -> upload
    restore:  download stream -> database restore

Every stream the service opens is released exactly once, on success,
failure and cancellation alike.

Usage:
    from db_archive.backup.service import BackupService

    service = BackupService(database, storage)
    record = await service.execute(tags={"env": "staging"})
    await service.restore(record.id)
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Iterator
from contextlib import aclosing, contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from db_archive.backup.models import BackupRecord
from db_archive.errors import (
    ArchiveError,
    BackupNotFoundError,
    ChecksumMismatchError,
    IntegrityUnverifiedError,
    OperationError,
)
from db_archive.streams import iter_chunks

if TYPE_CHECKING:
    from db_archive.adapters.base import DatabaseBackend
    from db_archive.storage.base import StorageBackend

logger = logging.getLogger(__name__)

ID_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def generate_backup_id(now: datetime | None = None) -> str:
    """Create a backup ID: UTC timestamp plus 8 random hex digits.

    Example:
        >>> generate_backup_id()  # doctest: +SKIP
        '20250101-120000-1a2b3c4d'
    """
    now = now or datetime.now(timezone.utc)
    return f"{now.strftime(ID_TIMESTAMP_FORMAT)}-{secrets.token_hex(4)}"


@contextmanager
def _annotate(operation: str) -> Iterator[None]:
    """Tag library errors with ``operation`` and wrap everything else."""
    try:
        yield
    except ArchiveError as e:
        if e.operation is None:
            e.operation = operation
        raise
    except Exception as e:
        raise OperationError(operation, e) from e


class BackupService:
    """Compose a database backend and a storage backend.

    Args:
        database: Source/target database backend.
        storage: Backup storage backend.
    """

    def __init__(self, database: DatabaseBackend, storage: StorageBackend) -> None:
        self.database = database
        self.storage = storage

    async def execute(self, tags: dict[str, str] | None = None) -> BackupRecord:
        """Take a backup and store it.

        Args:
            tags: Optional labels stored with the record.

        Returns:
            The record returned by the storage backend, with checksum and
            size filled in.

        Raises:
            ArchiveError: The first failing step's error.  Nothing already
                stored is cleaned up.
        """
        with _annotate("snapshot"):
            info = await self.database.snapshot()

        # ID and object key share one clock reading
        now = datetime.now(timezone.utc)
        with _annotate("backup"):
            record = BackupRecord(
                id=generate_backup_id(now),
                database_name=info.name,
                database_type=info.type,
                timestamp=now,
                tags=dict(tags or {}),
            )
            stream = await self.database.backup()

        async with aclosing(stream):
            logger.info(f"Backing up {info.type} database '{info.name}' as {record.id}")
            with _annotate("upload"):
                stored = await self.storage.upload(stream, record)

        logger.info(f"Backup {stored.id} complete ({stored.size_bytes} bytes, md5 {stored.checksum})")
        return stored

    async def restore(self, backup_id: str) -> None:
        """Download ``backup_id`` and restore it into the database.

        The payload is not checked against its checksum; call ``verify``
        first when integrity matters.
        """
        with _annotate("download"):
            stream = await self.storage.download(backup_id)

        async with aclosing(stream):
            logger.info(f"Restoring backup {backup_id}")
            with _annotate("restore"):
                await self.database.restore(stream)

        logger.info(f"Restore of {backup_id} complete")

    async def list(self) -> list[BackupRecord]:
        """List stored backups."""
        with _annotate("list"):
            return await self.storage.list()

    async def delete(self, backup_id: str) -> None:
        """Delete a stored backup."""
        with _annotate("delete"):
            await self.storage.delete(backup_id)

    async def verify(self, backup_id: str) -> BackupRecord:
        """Re-hash a stored backup and compare it with its record.

        Unlike ``restore`` and ``delete``, this takes the record ID only:
        backups stored within the same second share a key stem, so an
        object key does not identify the record holding its checksum.

        Args:
            backup_id: Record ID of the backup, as returned by ``list()``.

        Returns:
            The verified record.

        Raises:
            BackupNotFoundError: If no listed record has this ID.
            IntegrityUnverifiedError: If the record carries no checksum.
            ChecksumMismatchError: If the digest or size differs.
        """
        records = await self.list()
        record = next((r for r in records if r.id == backup_id), None)
        if record is None:
            raise BackupNotFoundError(backup_id)
        if not record.checksum:
            raise IntegrityUnverifiedError(backup_id)

        md5 = hashlib.md5()
        size = 0
        with _annotate("download"):
            stream = await self.storage.download(backup_id)
        async with aclosing(stream):
            with _annotate("verify"):
                async for chunk in iter_chunks(stream):
                    md5.update(chunk)
                    size += len(chunk)

        actual = md5.hexdigest()
        if actual != record.checksum:
            raise ChecksumMismatchError(backup_id, record.checksum, actual)
        if record.size_bytes and size != record.size_bytes:
            raise ChecksumMismatchError(
                backup_id, f"{record.size_bytes} bytes", f"{size} bytes"
            )

        logger.info(f"Backup {backup_id} verified (md5 {actual})")
        return record
