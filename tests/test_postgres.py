"""Tests for the PostgreSQL backend.

pg_dump/pg_restore are replaced by ``FakeRunner``; the SQLAlchemy engine is
replaced by a mock, so no database server is needed.
"""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import FakeRunner
from db_archive.adapters.postgres import PostgresBackend, create_async_engine_pooled
from db_archive.errors import BackendClosedError, DatabaseConnectionError, TransferError
from db_archive.streams import MemoryStream, read_all


def _mock_engine(version="PostgreSQL 16.2 on x86_64", size=8192, error=None) -> MagicMock:
    """Engine whose connections answer the version and size queries."""
    conn = MagicMock()
    conn.execute = AsyncMock(
        side_effect=[
            MagicMock(scalar=MagicMock(return_value=version)),
            MagicMock(scalar=MagicMock(return_value=size)),
        ]
    )

    @asynccontextmanager
    async def _connect():
        if error is not None:
            raise error
        yield conn

    engine = MagicMock()
    engine.connect = MagicMock(side_effect=_connect)
    engine.dispose = AsyncMock()
    engine.conn = conn
    return engine


# ------------------------------------------------------------------
# Engine
# ------------------------------------------------------------------


class TestEngine:
    """Async engine construction."""

    def test_url_from_config(self, db_config):
        """Engine URL uses the asyncpg driver and config values."""
        engine = create_async_engine_pooled(db_config)

        assert engine.url.drivername == "postgresql+asyncpg"
        assert engine.url.host == "db.internal"
        assert engine.url.port == 5433
        assert engine.url.username == "backup"
        assert engine.url.database == "app"
        assert engine.url.query["ssl"] == "disable"

    def test_kwargs_override_defaults(self, db_config):
        """Caller kwargs take precedence over pool defaults."""
        engine = create_async_engine_pooled(db_config, pool_size=3)
        assert engine.pool.size() == 3


# ------------------------------------------------------------------
# backup() / restore()
# ------------------------------------------------------------------


class TestDumpRestore:
    """pg_dump and pg_restore invocation."""

    async def test_backup_invokes_pg_dump(self, db_config):
        """pg_dump runs in custom format with connection flags."""
        runner = FakeRunner(output=b"PGDMP-archive")
        db = PostgresBackend(db_config, runner=runner, engine=_mock_engine())

        stream = await db.backup()

        assert await read_all(stream) == b"PGDMP-archive"
        args, env = runner.calls[0]
        assert args[0] == "pg_dump"
        assert args[args.index("-h") + 1] == "db.internal"
        assert args[args.index("-p") + 1] == "5433"
        assert args[args.index("-U") + 1] == "backup"
        assert args[args.index("-d") + 1] == "app"
        assert args[args.index("-F") + 1] == "c"
        assert "--no-password" in args

    async def test_password_passed_via_environment(self, db_config):
        """The password is never on the command line."""
        runner = FakeRunner()
        db = PostgresBackend(db_config, runner=runner, engine=_mock_engine())

        await db.backup()

        args, env = runner.calls[0]
        assert env["PGPASSWORD"] == "s3cret"
        assert env["PGSSLMODE"] == "disable"
        assert "s3cret" not in " ".join(args)

    async def test_no_password_env_when_empty(self, db_config):
        """PGPASSWORD is omitted when no password is configured."""
        runner = FakeRunner()
        config = db_config.model_copy(update={"password": ""})
        db = PostgresBackend(config, runner=runner, engine=_mock_engine())

        await db.backup()

        assert "PGPASSWORD" not in runner.calls[0][1]

    async def test_backup_start_failure_annotated(self, db_config):
        """Runner start errors carry backend and operation."""
        runner = FakeRunner()
        runner.start = AsyncMock(side_effect=TransferError("failed to start pg_dump"))
        db = PostgresBackend(db_config, runner=runner, engine=_mock_engine())

        with pytest.raises(TransferError) as exc_info:
            await db.backup()

        assert exc_info.value.backend == "postgres"
        assert exc_info.value.operation == "backup"

    async def test_restore_invokes_pg_restore(self, db_config):
        """pg_restore receives the stream on stdin with clean-restore flags."""
        runner = FakeRunner()
        db = PostgresBackend(db_config, runner=runner, engine=_mock_engine())

        await db.restore(MemoryStream(b"PGDMP-archive"))

        args, _ = runner.calls[0]
        assert args[0] == "pg_restore"
        for flag in ("--clean", "--if-exists", "--no-owner", "--no-privileges"):
            assert flag in args
        assert runner.stdin_data == [b"PGDMP-archive"]

    async def test_restore_failure_includes_output(self, db_config):
        """Non-zero exit raises TransferError carrying the tool output."""
        runner = FakeRunner(returncode=1, run_output="pg_restore: error: permission denied")
        db = PostgresBackend(db_config, runner=runner, engine=_mock_engine())

        with pytest.raises(TransferError) as exc_info:
            await db.restore(MemoryStream(b"x"))

        assert exc_info.value.output == "pg_restore: error: permission denied"
        assert "permission denied" in str(exc_info.value)
        assert exc_info.value.operation == "restore"


# ------------------------------------------------------------------
# snapshot()
# ------------------------------------------------------------------


class TestSnapshot:
    """Metadata queries."""

    async def test_snapshot_values(self, db_config):
        """Snapshot reports type, version, size and name."""
        db = PostgresBackend(db_config, runner=FakeRunner(), engine=_mock_engine())

        info = await db.snapshot()

        assert info.type == "postgres"
        assert info.version == "PostgreSQL 16.2 on x86_64"
        assert info.size_bytes == 8192
        assert info.name == "app"

    async def test_snapshot_connection_failure(self, db_config):
        """Engine errors become DatabaseConnectionError."""
        engine = _mock_engine(error=SQLAlchemyError("connection refused"))
        db = PostgresBackend(db_config, runner=FakeRunner(), engine=engine)

        with pytest.raises(DatabaseConnectionError) as exc_info:
            await db.snapshot()

        assert "db.internal:5433" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, SQLAlchemyError)

    async def test_snapshot_os_error(self, db_config):
        """Socket-level errors also become DatabaseConnectionError."""
        engine = _mock_engine(error=ConnectionRefusedError("refused"))
        db = PostgresBackend(db_config, runner=FakeRunner(), engine=engine)

        with pytest.raises(DatabaseConnectionError):
            await db.snapshot()


# ------------------------------------------------------------------
# close()
# ------------------------------------------------------------------


class TestClose:
    """Lifecycle after close()."""

    async def test_close_disposes_engine_once(self, db_config):
        """close() is idempotent."""
        engine = _mock_engine()
        db = PostgresBackend(db_config, runner=FakeRunner(), engine=engine)

        await db.close()
        await db.close()

        engine.dispose.assert_awaited_once()

    @pytest.mark.parametrize("operation", ["backup", "snapshot"])
    async def test_use_after_close(self, db_config, operation):
        """Operations after close() raise BackendClosedError."""
        db = PostgresBackend(db_config, runner=FakeRunner(), engine=_mock_engine())
        await db.close()

        with pytest.raises(BackendClosedError) as exc_info:
            await getattr(db, operation)()
        assert exc_info.value.operation == operation

    async def test_restore_after_close(self, db_config):
        """restore() after close() raises BackendClosedError."""
        db = PostgresBackend(db_config, runner=FakeRunner(), engine=_mock_engine())
        await db.close()

        with pytest.raises(BackendClosedError):
            await db.restore(MemoryStream(b"x"))
