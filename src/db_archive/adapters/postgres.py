"""PostgreSQL database backend.

Provides ``PostgresBackend``, an implementation of the ``DatabaseBackend``
protocol.  Dumps and restores go through ``pg_dump``/``pg_restore`` (custom
archive format) via a ``CommandRunner``; snapshot metadata is read over
SQLAlchemy's async engine with the ``asyncpg`` driver.

Usage:
    from db_archive.adapters.postgres import PostgresBackend
    from db_archive.config.models import DatabaseConfig

    db = PostgresBackend(DatabaseConfig(host="localhost", database="app"))
    info = await db.snapshot()
    stream = await db.backup()
    ...
    await db.close()
"""

import logging
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from db_archive.adapters.runner import CommandRunner, SubprocessRunner
from db_archive.backup.models import DatabaseSnapshotInfo
from db_archive.config.models import DatabaseConfig
from db_archive.errors import BackendClosedError, DatabaseConnectionError, TransferError
from db_archive.streams import ByteStream

logger = logging.getLogger(__name__)

BACKEND_NAME = "postgres"


def create_async_engine_pooled(config: DatabaseConfig, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine for metadata queries.

    Default pool settings:

    - ``pool_size=1``: Metadata queries are occasional and sequential.
    - ``max_overflow=2``: Allow a few concurrent snapshots.
    - ``pool_pre_ping=True``: Validate connections before checkout.
    - ``pool_recycle=300``: Recycle connections every 5 minutes.

    Args:
        config: Database connection settings.
        **kwargs: Additional keyword arguments forwarded to
            ``create_async_engine``.

    Returns:
        Configured ``AsyncEngine``.  No connection is opened until first use.
    """
    url = URL.create(
        "postgresql+asyncpg",
        username=config.username,
        password=config.password or None,
        host=config.host,
        port=config.port,
        database=config.database,
        query={"ssl": config.sslmode},
    )

    defaults: dict[str, Any] = {
        "pool_size": 1,
        "max_overflow": 2,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "connect_args": {"timeout": 5},
        "echo": False,
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}

    return create_async_engine(url, **merged)


class PostgresBackend:
    """PostgreSQL implementation of the ``DatabaseBackend`` protocol.

    Args:
        config: Database connection settings.
        runner: Command runner for ``pg_dump``/``pg_restore``.  Defaults to
            ``SubprocessRunner``.
        engine: Async engine for metadata queries.  Defaults to one built
            by ``create_async_engine_pooled``.

    Example:
        db = PostgresBackend(DatabaseConfig(host="db", database="app"))
        async with aclosing(await db.backup()) as stream:
            ...
        await db.close()
    """

    def __init__(
        self,
        config: DatabaseConfig,
        runner: CommandRunner | None = None,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._config = config
        self._runner: CommandRunner = runner or SubprocessRunner()
        self._engine: AsyncEngine = engine or create_async_engine_pooled(config)
        self._closed = False

    # ------------------------------------------------------------------
    # DatabaseBackend
    # ------------------------------------------------------------------

    async def backup(self) -> ByteStream:
        """Start ``pg_dump`` in custom format and stream its output."""
        self._ensure_open("backup")
        args = [
            "pg_dump",
            *self._connection_args(),
            "-F", "c",  # custom format
            "--no-password",
        ]
        logger.info(f"Starting pg_dump of '{self._config.database}' on {self._config.host}")
        try:
            return await self._runner.start(args, self._env())
        except TransferError as e:
            e.backend = BACKEND_NAME
            e.operation = "backup"
            raise

    async def restore(self, stream: ByteStream) -> None:
        """Feed a custom-format archive from ``stream`` into ``pg_restore``."""
        self._ensure_open("restore")
        args = [
            "pg_restore",
            *self._connection_args(),
            "--clean",          # drop objects before recreating
            "--if-exists",      # use IF EXISTS when dropping
            "--no-owner",       # skip ownership restoration
            "--no-privileges",  # skip access privileges
            "--no-password",
        ]
        logger.info(f"Starting pg_restore into '{self._config.database}' on {self._config.host}")
        result = await self._runner.run(args, self._env(), stdin=stream)
        if result.returncode != 0:
            raise TransferError(
                f"pg_restore exited with status {result.returncode}",
                output=result.output,
                backend=BACKEND_NAME,
                operation="restore",
            )

    async def snapshot(self) -> DatabaseSnapshotInfo:
        """Query server version and database size."""
        self._ensure_open("snapshot")
        try:
            async with self._engine.connect() as conn:
                version = (await conn.execute(text("SELECT version()"))).scalar()
                size = (
                    await conn.execute(
                        text("SELECT pg_database_size(:name)"),
                        {"name": self._config.database},
                    )
                ).scalar()
        except (SQLAlchemyError, OSError) as e:
            raise DatabaseConnectionError(
                f"failed to query PostgreSQL at {self._config.host}:{self._config.port}: {e}",
                backend=BACKEND_NAME,
                operation="snapshot",
            ) from e

        return DatabaseSnapshotInfo(
            type=BACKEND_NAME,
            version=version or "",
            size_bytes=size or 0,
            name=self._config.database,
        )

    async def close(self) -> None:
        """Dispose of the engine's connection pool."""
        if self._closed:
            return
        self._closed = True
        await self._engine.dispose()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_open(self, operation: str) -> None:
        if self._closed:
            raise BackendClosedError(
                "database backend is closed", backend=BACKEND_NAME, operation=operation
            )

    def _connection_args(self) -> list[str]:
        return [
            "-h", self._config.host,
            "-p", str(self._config.port),
            "-U", self._config.username,
            "-d", self._config.database,
        ]

    def _env(self) -> dict[str, str]:
        env = {"PGSSLMODE": self._config.sslmode}
        if self._config.password:
            env["PGPASSWORD"] = self._config.password
        return env
