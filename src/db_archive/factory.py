"""Backup service factory.

Startup composition for db-archive.  ``build_registry()`` returns a
``Registry`` with the built-in backends registered; ``create_service()``
resolves the backends named in an ``ArchiveConfig`` and wires them into a
``BackupService``.

Nothing registers itself at import time: applications that add their own
backends register them on the registry they pass in.

Usage:
    from db_archive.config import load_config
    from db_archive.factory import build_registry, open_service

    registry = build_registry()
    async with open_service(load_config(), registry) as service:
        record = await service.execute()
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from db_archive.adapters.postgres import PostgresBackend
from db_archive.backup.service import BackupService
from db_archive.config.models import ArchiveConfig, StorageConfig
from db_archive.errors import ConfigError
from db_archive.registry import Registry
from db_archive.storage.base import StorageBackend
from db_archive.storage.disk import DiskStorage

logger = logging.getLogger(__name__)


# ============================================================================
# Registry
# ============================================================================


def _create_s3_storage(config: StorageConfig) -> StorageBackend:
    """Build ``S3Storage``, importing boto3 only when S3 is requested."""
    try:
        from db_archive.storage.s3 import S3Storage
    except ImportError as e:
        raise ConfigError(
            "S3 storage requires the 's3' extra: pip install db-archive[s3]",
            operation="construct",
        ) from e
    return S3Storage.from_config(config)


def build_registry() -> Registry:
    """Create a registry with the built-in backends.

    Registered names:

    - database: ``postgres``
    - storage: ``disk``, ``s3``

    Returns:
        A new, independent ``Registry``.
    """
    registry = Registry()
    registry.register_database("postgres", PostgresBackend)
    registry.register_storage("disk", DiskStorage.from_config)
    registry.register_storage("s3", _create_s3_storage)
    return registry


# ============================================================================
# Service Assembly
# ============================================================================


def create_service(config: ArchiveConfig, registry: Registry) -> BackupService:
    """Resolve the configured backends and build a ``BackupService``.

    Args:
        config: Service configuration; ``database.type`` and
            ``storage.type`` select the backends.
        registry: Registry to resolve backend names against.

    Returns:
        ``BackupService`` over freshly constructed backends.  The caller
        owns the database backend and must ``close()`` it.

    Raises:
        NotRegisteredError: If either backend name is unknown.
        ConstructionError: If a backend constructor fails.
    """
    # Storage first: it holds no resources, so a failure here leaves
    # nothing open
    storage = registry.get_storage(config.storage.type, config.storage)
    database = registry.get_database(config.database.type, config.database)

    logger.debug(f"Created service: database={config.database.type}, storage={config.storage.type}")
    return BackupService(database, storage)


@asynccontextmanager
async def open_service(config: ArchiveConfig, registry: Registry) -> AsyncIterator[BackupService]:
    """Async context manager around ``create_service``.

    Closes the database backend on exit.

    Example:
        async with open_service(config, registry) as service:
            records = await service.list()
    """
    service = create_service(config, registry)
    try:
        yield service
    finally:
        await service.database.close()

