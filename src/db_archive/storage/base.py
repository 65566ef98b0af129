"""Storage backend protocol definition.

Defines the ``StorageBackend`` Protocol implemented by every backup target
(local disk, S3, ...).

Usage:
    from db_archive.storage.base import StorageBackend

    async def newest(storage: StorageBackend) -> BackupRecord | None:
        records = await storage.list()
        return records[0] if records else None
"""

from typing import Protocol, runtime_checkable

from db_archive.backup.models import BackupRecord
from db_archive.streams import ByteStream


@runtime_checkable
class StorageBackend(Protocol):
    """Storage backend interface that all backup targets must implement."""

    async def upload(self, stream: ByteStream, record: BackupRecord) -> BackupRecord:
        """Persist the full contents of ``stream``.

        The object key is derived from the record's ``database_name``,
        ``database_type`` and ``timestamp``.  The checksum and size are
        computed while streaming, over exactly the bytes stored.  Does not
        close ``stream``.

        Args:
            stream: Backup payload.
            record: Record with ``id``, ``database_name``, ``database_type``,
                ``timestamp`` and ``tags`` set.

        Returns:
            A new record equal to ``record`` with ``checksum`` and
            ``size_bytes`` filled in.

        Raises:
            TransferError: If the payload cannot be read or written.
        """
        ...

    async def list(self) -> list[BackupRecord]:
        """Return every backup in this backend's namespace, newest first.

        Returns an empty list (not an error) when there are none.
        """
        ...

    async def download(self, backup_id: str) -> ByteStream:
        """Open a stored backup for reading.

        Args:
            backup_id: Record ``id`` or object key as returned by ``list()``.

        Raises:
            BackupNotFoundError: If no such backup exists.
        """
        ...

    async def delete(self, backup_id: str) -> None:
        """Remove a stored backup and, best-effort, its sidecar.

        Raises:
            BackupNotFoundError: If no such backup exists.
        """
        ...
