"""Shared fakes for database backends, storage backends and command runners."""

import hashlib
from collections.abc import Sequence
from datetime import datetime, timezone

import pytest

from db_archive.adapters.runner import CommandResult
from db_archive.backup.models import BackupRecord, DatabaseSnapshotInfo
from db_archive.config.models import DatabaseConfig
from db_archive.errors import BackupNotFoundError, TransferError
from db_archive.streams import MemoryStream, read_all


class CountingStream(MemoryStream):
    """MemoryStream that counts ``aclose()`` calls."""

    def __init__(self, data: bytes, fail_after_read: bool = False) -> None:
        super().__init__(data)
        self.close_count = 0
        self.fail_after_read = fail_after_read

    async def read(self, size: int = -1) -> bytes:
        chunk = await super().read(size)
        if self.fail_after_read and not chunk:
            raise TransferError("dump tool exited with status 1")
        return chunk

    async def aclose(self) -> None:
        self.close_count += 1
        await super().aclose()


class FakeDatabase:
    """In-memory ``DatabaseBackend``."""

    def __init__(
        self,
        payload: bytes = b"test backup data!",
        name: str = "app",
        snapshot_error: BaseException | None = None,
        backup_error: BaseException | None = None,
        restore_error: BaseException | None = None,
    ) -> None:
        self.payload = payload
        self.name = name
        self.snapshot_error = snapshot_error
        self.backup_error = backup_error
        self.restore_error = restore_error
        self.streams: list[CountingStream] = []
        self.restored: list[bytes] = []
        self.close_count = 0

    async def backup(self) -> CountingStream:
        if self.backup_error:
            raise self.backup_error
        stream = CountingStream(self.payload)
        self.streams.append(stream)
        return stream

    async def restore(self, stream) -> None:
        if self.restore_error:
            raise self.restore_error
        self.restored.append(await read_all(stream))

    async def snapshot(self) -> DatabaseSnapshotInfo:
        if self.snapshot_error:
            raise self.snapshot_error
        return DatabaseSnapshotInfo(type="mock", version="1.0", size_bytes=len(self.payload), name=self.name)

    async def close(self) -> None:
        self.close_count += 1


class InMemoryStorage:
    """In-memory ``StorageBackend`` keyed by record ID."""

    def __init__(self, upload_error: BaseException | None = None) -> None:
        self.upload_error = upload_error
        self.objects: dict[str, tuple[BackupRecord, bytes]] = {}
        self.downloads: list[CountingStream] = []

    async def upload(self, stream, record: BackupRecord) -> BackupRecord:
        if self.upload_error:
            raise self.upload_error
        data = await read_all(stream)
        stored = record.model_copy(
            update={"checksum": hashlib.md5(data).hexdigest(), "size_bytes": len(data)}
        )
        self.objects[stored.id] = (stored, data)
        return stored

    async def list(self) -> list[BackupRecord]:
        records = [record for record, _ in self.objects.values()]
        return sorted(records, key=lambda r: r.timestamp, reverse=True)

    async def download(self, backup_id: str) -> CountingStream:
        if backup_id not in self.objects:
            raise BackupNotFoundError(backup_id, backend="memory")
        stream = CountingStream(self.objects[backup_id][1])
        self.downloads.append(stream)
        return stream

    async def delete(self, backup_id: str) -> None:
        if self.objects.pop(backup_id, None) is None:
            raise BackupNotFoundError(backup_id, backend="memory")


class FakeRunner:
    """``CommandRunner`` that records invocations instead of spawning."""

    def __init__(self, output: bytes = b"PGDMP", returncode: int = 0, run_output: str = "") -> None:
        self.output = output
        self.returncode = returncode
        self.run_output = run_output
        self.calls: list[tuple[list[str], dict[str, str]]] = []
        self.stdin_data: list[bytes] = []

    async def start(self, args: Sequence[str], env: dict[str, str]) -> MemoryStream:
        self.calls.append((list(args), dict(env)))
        return MemoryStream(self.output)

    async def run(self, args: Sequence[str], env: dict[str, str], stdin) -> CommandResult:
        self.calls.append((list(args), dict(env)))
        self.stdin_data.append(await read_all(stdin))
        return CommandResult(returncode=self.returncode, output=self.run_output)


def make_record(backup_id: str = "20250101-120000-1a2b3c4d", **overrides) -> BackupRecord:
    """BackupRecord with fixed, test-friendly defaults."""
    values = {
        "id": backup_id,
        "database_name": "app",
        "database_type": "postgres",
        "timestamp": datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return BackupRecord(**values)


@pytest.fixture
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def memory_storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def db_config() -> DatabaseConfig:
    return DatabaseConfig(host="db.internal", port=5433, username="backup", password="s3cret", database="app")
