"""Metadata records describing a database snapshot and a stored backup.

Both models are frozen: storage backends derive finished records with
``model_copy(update=...)`` rather than mutating the caller's copy.

Usage:
    from db_archive.backup.models import BackupRecord, DatabaseSnapshotInfo

    info = DatabaseSnapshotInfo(type="postgres", version="16.2", size_bytes=8192, name="app")
    record = BackupRecord(
        id="20250101-120000-1a2b3c4d",
        database_name=info.name,
        database_type=info.type,
        timestamp=datetime.now(timezone.utc),
    )
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

LINE_BREAKS = ("\n", "\r")


def validate_tag(key: str, value: str) -> None:
    """Check that a tag can be stored as one ``Tag.key: value`` line.

    Raises:
        ValueError: If the key is empty or contains ``": "``, or either part
            contains a line break.
    """
    if not key:
        raise ValueError("tag key must not be empty")
    if ": " in key:
        raise ValueError(f"tag key {key!r} must not contain ': '")
    if any(c in key or c in value for c in LINE_BREAKS):
        raise ValueError(f"tag {key!r} must not contain line breaks")


class DatabaseSnapshotInfo(BaseModel):
    """Point-in-time description of the source database."""

    model_config = ConfigDict(frozen=True)

    type: str
    version: str = ""
    size_bytes: int = 0
    name: str


class BackupRecord(BaseModel):
    """Descriptor of one stored backup, including integrity metadata.

    ``checksum`` and ``size_bytes`` stay unset until a storage backend has
    observed every byte of the payload during upload.

    Text fields and tags must fit on one sidecar line: line breaks are
    rejected everywhere, and ``": "`` in tag keys.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    database_name: str = ""
    database_type: str = ""
    timestamp: datetime
    size_bytes: int = 0
    checksum: str = ""                                  # MD5 hex digest of the stored bytes
    tags: dict[str, str] = Field(default_factory=dict)

    @field_validator("id", "database_name", "database_type", "checksum")
    @classmethod
    def _single_line(cls, value: str) -> str:
        if any(c in value for c in LINE_BREAKS):
            raise ValueError("must not contain line breaks")
        return value

    @field_validator("tags")
    @classmethod
    def _storable_tags(cls, tags: dict[str, str]) -> dict[str, str]:
        for key, value in tags.items():
            validate_tag(key, value)
        return tags

    @property
    def size_mb(self) -> float:
        """Payload size in mebibytes."""
        return self.size_bytes / (1024 * 1024)
