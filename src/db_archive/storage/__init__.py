"""Storage backends package.

Provides the ``StorageBackend`` Protocol, the shared object layout, and
concrete backends for local disk and (optionally) S3.

``S3Storage`` is only available when the ``s3`` extra is installed.  A
missing ``boto3`` dependency does not prevent importing the rest of the
package.

Usage:
    from db_archive.storage import StorageBackend, DiskStorage

    # With s3 extra installed:
    from db_archive.storage import S3Storage
"""

from db_archive.storage.base import StorageBackend
from db_archive.storage.disk import DiskStorage

__all__ = [
    "StorageBackend",
    "DiskStorage",
]

try:
    from db_archive.storage.s3 import S3Storage

    __all__.append("S3Storage")
except ImportError:
    # s3 extra not installed -- S3Storage unavailable
    pass
