"""Database backend protocol definition.

Defines the ``DatabaseBackend`` Protocol that every database engine must
implement.  All methods are ``async def`` -- the library is async-first.

Usage:
    from db_archive.adapters.base import DatabaseBackend

    async def dump(db: DatabaseBackend) -> bytes:
        info = await db.snapshot()
        async with aclosing(await db.backup()) as stream:
            return await read_all(stream)
"""

from typing import Protocol, runtime_checkable

from db_archive.backup.models import DatabaseSnapshotInfo
from db_archive.streams import ByteStream


@runtime_checkable
class DatabaseBackend(Protocol):
    """Database backend interface that all engines must implement.

    All methods are async -- callers must ``await`` every operation.
    After ``close()`` every other method raises ``BackendClosedError``.
    """

    async def backup(self) -> ByteStream:
        """Start producing a serialized dump of the database.

        The dump is produced lazily as the stream is read.  Closing the
        stream (or cancelling the task reading it) stops production and
        releases any process or connection behind it.

        Returns:
            Stream of dump bytes.  The caller owns it and must close it.

        Raises:
            TransferError: If the dump cannot be started.
        """
        ...

    async def restore(self, stream: ByteStream) -> None:
        """Apply a full dump read from ``stream`` to the target database.

        Does not close ``stream``.

        Raises:
            TransferError: If the restore fails.  The message includes the
                diagnostic output of the underlying tool.
        """
        ...

    async def snapshot(self) -> DatabaseSnapshotInfo:
        """Return engine type, version, logical size and database name.

        Independent of ``backup()``/``restore()``.

        Raises:
            DatabaseConnectionError: If the engine cannot be reached.
        """
        ...

    async def close(self) -> None:
        """Release held connections.  Calling it twice is a no-op."""
        ...
