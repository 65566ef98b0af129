"""Object naming, sidecar metadata and listing rules shared by storage backends.

Each backup is stored as one primary object plus an optional text sidecar:

    app_postgres_20250101-120000.dump
    app_postgres_20250101-120000.dump.meta

A second backup of the same database within the same second gets a
numbered key (``app_postgres_20250101-120000-1.dump``).

The sidecar holds ``Key: Value`` lines::

    ID: 20250101-120000-1a2b3c4d
    DatabaseName: app
    DatabaseType: postgres
    Timestamp: 2025-01-01T12:00:00+00:00
    Size: 52311
    Checksum: 9e107d9d372bb6826bd81d3542a419d6
    Tag.env: staging

Backends address a backup either by its record ID (read from the sidecar)
or by its object key, so every record returned from ``list()`` can be
downloaded and deleted.

Keys are split on their last two underscores.  Database names may be
empty or contain underscores; a database type containing ``_`` is only
recovered correctly from the sidecar, not from the key alone.
"""

import hashlib
import re
from collections.abc import Iterable
from datetime import datetime, timezone

from db_archive.backup.models import LINE_BREAKS, BackupRecord

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
OBJECT_SUFFIX = ".dump"
SIDECAR_SUFFIX = ".meta"
PARTIAL_SUFFIX = ".partial"

# Must accept every name object_key() produces, empty parts included
KEY_PATTERN = re.compile(
    r"^(?P<database>.*)_(?P<type>[^_]*)_(?P<stamp>\d{8}-\d{6})(?:-(?P<seq>\d+))?\.dump$"
)


# ============================================================================
# Naming
# ============================================================================


def object_key(record: BackupRecord, seq: int = 0) -> str:
    """Primary object name for ``record``.

    Args:
        record: Record supplying database name, type and timestamp.
        seq: Collision counter; ``0`` gives the plain name.
    """
    stamp = _as_utc(record.timestamp).strftime(TIMESTAMP_FORMAT)
    base = f"{record.database_name}_{record.database_type}_{stamp}"
    if seq:
        base = f"{base}-{seq}"
    return f"{base}{OBJECT_SUFFIX}"


def is_object_key(name: str) -> bool:
    """Whether ``name`` follows the primary object naming convention."""
    return KEY_PATTERN.match(name) is not None


def sidecar_key(key: str) -> str:
    """Sidecar name for the object ``key``."""
    return f"{key}{SIDECAR_SUFFIX}"


def is_safe_id(backup_id: str) -> bool:
    """Reject IDs that could escape the backend's namespace."""
    return bool(backup_id) and "/" not in backup_id and "\\" not in backup_id and backup_id not in (".", "..")


# ============================================================================
# Sidecar format
# ============================================================================


def storable(record: BackupRecord) -> BackupRecord:
    """Re-validate ``record`` before a backend writes anything for it.

    ``model_copy(update=...)`` skips model validation, so a derived record
    may still carry values that cannot be written to a sidecar.

    Raises:
        pydantic.ValidationError: If a field cannot be stored.
    """
    return BackupRecord.model_validate(record.model_dump())


def format_sidecar(record: BackupRecord) -> str:
    """Serialize ``record`` to sidecar text.

    Raises:
        ValueError: If a field would span more than one line.
    """
    fields = [
        ("ID", record.id),
        ("DatabaseName", record.database_name),
        ("DatabaseType", record.database_type),
        ("Timestamp", _as_utc(record.timestamp).isoformat()),
        ("Size", str(record.size_bytes)),
        ("Checksum", record.checksum),
    ]
    fields.extend((f"Tag.{name}", value) for name, value in sorted(record.tags.items()))

    lines = []
    for key, value in fields:
        if any(c in key or c in value for c in LINE_BREAKS):
            raise ValueError(f"sidecar field {key!r} contains a line break")
        lines.append(f"{key}: {value}")
    return "\n".join(lines) + "\n"


def parse_sidecar(content: str, fallback: BackupRecord) -> BackupRecord:
    """Overlay sidecar values onto ``fallback``.

    Unknown keys and malformed values are ignored, leaving the fallback's
    value in place.
    """
    updates: dict = {}
    tags: dict[str, str] = {}

    # Only "\n" separates lines; splitlines() would also break on \v, \x85 etc.
    for line in content.split("\n"):
        key, sep, value = line.removesuffix("\r").partition(": ")
        if not sep:
            continue
        if key == "ID" and value:
            updates["id"] = value
        elif key == "DatabaseName":
            updates["database_name"] = value
        elif key == "DatabaseType":
            updates["database_type"] = value
        elif key == "Checksum":
            updates["checksum"] = value
        elif key == "Timestamp":
            try:
                updates["timestamp"] = _as_utc(datetime.fromisoformat(value))
            except ValueError:
                pass
        elif key == "Size":
            if value.isdigit():
                updates["size_bytes"] = int(value)
        elif key.startswith("Tag."):
            tags[key[len("Tag."):]] = value

    if tags:
        updates["tags"] = tags
    return fallback.model_copy(update=updates)


def fallback_record(key: str, modified: datetime, size: int) -> BackupRecord:
    """Record derived from the stored object alone (no sidecar).

    The ID is the object key; database name and type come from the key,
    the timestamp from the object's modification time.  For a type such
    as ``my_sql`` the split is ambiguous: ``app_my_sql_...`` gives
    database ``app_my`` and type ``sql``.
    """
    match = KEY_PATTERN.match(key)
    return BackupRecord(
        id=key,
        database_name=match.group("database") if match else "",
        database_type=match.group("type") if match else "",
        timestamp=_as_utc(modified),
        size_bytes=size,
    )


# ============================================================================
# Listing
# ============================================================================


def sort_newest_first(records: Iterable[BackupRecord]) -> list[BackupRecord]:
    """Sort records by timestamp, most recent first."""
    return sorted(records, key=lambda r: r.timestamp, reverse=True)


def find_key(entries: Iterable[tuple[str, BackupRecord]], backup_id: str) -> str | None:
    """Resolve ``backup_id`` to an object key.

    Args:
        entries: ``(object_key, record)`` pairs from a listing.
        backup_id: Record ID or object key.

    Returns:
        The matching object key, or ``None``.
    """
    for key, record in entries:
        if backup_id in (key, record.id):
            return key
    return None


# ============================================================================
# Digest
# ============================================================================


class PayloadDigest:
    """Incremental MD5 checksum and byte count over a streamed payload."""

    def __init__(self) -> None:
        self._md5 = hashlib.md5()
        self.size = 0

    def update(self, chunk: bytes) -> None:
        self._md5.update(chunk)
        self.size += len(chunk)

    @property
    def checksum(self) -> str:
        return self._md5.hexdigest()

    def finalize(self, record: BackupRecord) -> BackupRecord:
        """Return ``record`` with checksum and size filled in."""
        return record.model_copy(update={"checksum": self.checksum, "size_bytes": self.size})


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
