"""Database backends package.

Provides the ``DatabaseBackend`` Protocol, the ``CommandRunner`` boundary
for external dump/restore tools, and the PostgreSQL backend.

Usage:
    from db_archive.adapters import DatabaseBackend, PostgresBackend
"""

from db_archive.adapters.base import DatabaseBackend
from db_archive.adapters.postgres import PostgresBackend
from db_archive.adapters.runner import CommandResult, CommandRunner, SubprocessRunner

__all__ = [
    "DatabaseBackend",
    "PostgresBackend",
    "CommandRunner",
    "CommandResult",
    "SubprocessRunner",
]
