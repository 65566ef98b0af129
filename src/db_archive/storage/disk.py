"""Local disk storage backend.

Provides ``DiskStorage``, an implementation of the ``StorageBackend``
protocol that keeps backups as files in one directory, using the naming
and sidecar rules in ``db_archive.storage.layout``.

Uploads stream into a ``.partial`` file while hashing and are renamed into
place only once complete, so a failed upload leaves nothing behind.
Blocking filesystem calls run in a worker thread.

Usage:
    from db_archive.storage.disk import DiskStorage

    storage = DiskStorage("/var/backups/db")
    record = await storage.upload(stream, record)
    records = await storage.list()
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

from db_archive.backup.models import BackupRecord
from db_archive.config.models import StorageConfig
from db_archive.errors import BackupNotFoundError, TransferError
from db_archive.storage import layout
from db_archive.streams import ByteStream, FileStream, iter_chunks

logger = logging.getLogger(__name__)

BACKEND_NAME = "disk"


class DiskStorage:
    """Filesystem implementation of the ``StorageBackend`` protocol.

    Args:
        path: Directory holding the backups.  Created if missing.

    Raises:
        OSError: If the directory cannot be created.
    """

    def __init__(self, path: str | Path = "./backups") -> None:
        self.root = Path(path)
        self.root.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, config: StorageConfig) -> "DiskStorage":
        """Build from ``StorageConfig.path`` (default ``./backups``)."""
        return cls(config.path or "./backups")

    # ------------------------------------------------------------------
    # StorageBackend
    # ------------------------------------------------------------------

    async def upload(self, stream: ByteStream, record: BackupRecord) -> BackupRecord:
        """Write ``stream`` to disk, computing MD5 and size on the way."""
        record = layout.storable(record)
        final, partial, fileobj = await asyncio.to_thread(self._reserve, record)
        digest = layout.PayloadDigest()

        try:
            async for chunk in iter_chunks(stream):
                digest.update(chunk)
                await asyncio.to_thread(fileobj.write, chunk)
            await asyncio.to_thread(fileobj.close)
            await asyncio.to_thread(os.replace, partial, final)
        except OSError as e:
            _discard(fileobj, partial)
            raise TransferError(
                f"failed to write backup file {final.name}: {e}",
                backend=BACKEND_NAME,
                operation="upload",
            ) from e
        except BaseException:
            _discard(fileobj, partial)
            raise

        finalized = digest.finalize(record)

        sidecar = final.with_name(layout.sidecar_key(final.name))
        try:
            await asyncio.to_thread(sidecar.write_text, layout.format_sidecar(finalized), encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to write metadata file {sidecar}: {e}")

        logger.info(f"Stored backup {finalized.id} as {final} ({finalized.size_bytes} bytes)")
        return finalized

    async def list(self) -> list[BackupRecord]:
        """List backups in the directory, newest first."""
        entries = await asyncio.to_thread(self._scan)
        return layout.sort_newest_first(record for _, record in entries)

    async def download(self, backup_id: str) -> ByteStream:
        """Open the backup file for streaming."""
        key = await asyncio.to_thread(self._resolve, backup_id)
        try:
            return await FileStream.open(self.root / key)
        except FileNotFoundError as e:
            raise BackupNotFoundError(backup_id, backend=BACKEND_NAME) from e
        except OSError as e:
            raise TransferError(
                f"failed to open backup file {key}: {e}",
                backend=BACKEND_NAME,
                operation="download",
            ) from e

    async def delete(self, backup_id: str) -> None:
        """Remove the backup file and its sidecar."""
        key = await asyncio.to_thread(self._resolve, backup_id)
        path = self.root / key
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError as e:
            raise BackupNotFoundError(backup_id, backend=BACKEND_NAME) from e
        except OSError as e:
            raise TransferError(
                f"failed to delete backup file {key}: {e}",
                backend=BACKEND_NAME,
                operation="delete",
            ) from e

        sidecar = path.with_name(layout.sidecar_key(key))
        try:
            await asyncio.to_thread(sidecar.unlink, missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete metadata file {sidecar}: {e}")

        logger.info(f"Deleted backup {backup_id} ({path})")

    # ------------------------------------------------------------------
    # Blocking helpers (run in worker threads)
    # ------------------------------------------------------------------

    def _reserve(self, record: BackupRecord) -> tuple[Path, Path, BinaryIO]:
        """Pick a free object key and open its partial file exclusively."""
        seq = 0
        while True:
            final = self.root / layout.object_key(record, seq)
            partial = final.with_name(final.name + layout.PARTIAL_SUFFIX)
            seq += 1
            if final.exists():
                continue
            try:
                fileobj = open(partial, "xb")
            except FileExistsError:
                continue
            except OSError as e:
                raise TransferError(
                    f"failed to create backup file {final.name}: {e}",
                    backend=BACKEND_NAME,
                    operation="upload",
                ) from e
            return final, partial, fileobj

    def _scan(self) -> list[tuple[str, BackupRecord]]:
        """Collect ``(key, record)`` for every backup object."""
        try:
            dir_entries = list(os.scandir(self.root))
        except FileNotFoundError:
            return []
        except OSError as e:
            raise TransferError(
                f"failed to read backup directory {self.root}: {e}",
                backend=BACKEND_NAME,
                operation="list",
            ) from e

        entries: list[tuple[str, BackupRecord]] = []
        for entry in dir_entries:
            if not entry.is_file() or not layout.is_object_key(entry.name):
                continue
            try:
                stat = entry.stat()
            except OSError:
                # Removed between scandir and stat
                continue

            record = layout.fallback_record(
                entry.name,
                datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                stat.st_size,
            )
            sidecar = self.root / layout.sidecar_key(entry.name)
            if sidecar.exists():
                try:
                    record = layout.parse_sidecar(sidecar.read_text(encoding="utf-8"), record)
                except (OSError, UnicodeDecodeError) as e:
                    logger.warning(f"Ignoring unreadable metadata file {sidecar}: {e}")
            entries.append((entry.name, record))
        return entries

    def _resolve(self, backup_id: str) -> str:
        """Map a record ID or object key to an existing object key."""
        if not layout.is_safe_id(backup_id):
            raise BackupNotFoundError(backup_id, backend=BACKEND_NAME)
        if layout.is_object_key(backup_id) and (self.root / backup_id).is_file():
            return backup_id
        key = layout.find_key(self._scan(), backup_id)
        if key is None:
            raise BackupNotFoundError(backup_id, backend=BACKEND_NAME)
        return key


def _discard(fileobj: BinaryIO, partial: Path) -> None:
    """Close and remove an unfinished partial file."""
    try:
        fileobj.close()
        partial.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Failed to remove partial file {partial}: {e}")
