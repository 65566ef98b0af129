"""Backup metadata models and the backup/restore orchestrator.

Usage:
    from db_archive.backup import BackupService, BackupRecord
"""

from db_archive.backup.models import BackupRecord, DatabaseSnapshotInfo
from db_archive.backup.service import BackupService, generate_backup_id

__all__ = [
    "BackupRecord",
    "DatabaseSnapshotInfo",
    "BackupService",
    "generate_backup_id",
]
