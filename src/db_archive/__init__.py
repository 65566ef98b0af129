"""db-archive: Database backup and restore with pluggable backends.

Binds database engines and storage targets to names through a registry and
composes one of each into a ``BackupService`` that takes, lists, verifies
and restores backups.

Usage:
    from db_archive import BackupService, Registry, build_registry, create_service
    from db_archive import ArchiveConfig, load_config
    from db_archive import DatabaseBackend, StorageBackend, BackupRecord
"""

__version__ = "0.1.0"

# Contracts
from db_archive.adapters.base import DatabaseBackend
from db_archive.storage.base import StorageBackend

# Backends
from db_archive.adapters.postgres import PostgresBackend
from db_archive.storage.disk import DiskStorage

# Backup
from db_archive.backup.models import BackupRecord, DatabaseSnapshotInfo
from db_archive.backup.service import BackupService, generate_backup_id

# Config
from db_archive.config.loader import load_config
from db_archive.config.models import ArchiveConfig, DatabaseConfig, StorageConfig

# Registry and factory
from db_archive.registry import Registry
from db_archive.factory import build_registry, create_service, open_service

# Errors
from db_archive.errors import ArchiveError, BackupNotFoundError, NotRegisteredError

__all__ = [
    # Contracts
    "DatabaseBackend",
    "StorageBackend",
    # Backends
    "PostgresBackend",
    "DiskStorage",
    # Backup
    "BackupRecord",
    "DatabaseSnapshotInfo",
    "BackupService",
    "generate_backup_id",
    # Config
    "load_config",
    "ArchiveConfig",
    "DatabaseConfig",
    "StorageConfig",
    # Registry and factory
    "Registry",
    "build_registry",
    "create_service",
    "open_service",
    # Errors
    "ArchiveError",
    "BackupNotFoundError",
    "NotRegisteredError",
]

# Optional: S3Storage (only available with s3 extra)
try:
    from db_archive.storage.s3 import S3Storage

    __all__.append("S3Storage")
except ImportError:
    # s3 extra not installed -- S3Storage unavailable
    pass
