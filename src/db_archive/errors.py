"""Exception hierarchy for db-archive.

Every error raised by the library derives from ``ArchiveError`` so callers
can catch one type.  Subclasses carry the context needed to tell which
backend and which operation failed.

Usage:
    from db_archive.errors import ArchiveError, BackupNotFoundError

    try:
        await service.restore("20250101-120000-1a2b3c4d")
    except BackupNotFoundError as e:
        print(f"No such backup: {e.backup_id}")
    except ArchiveError as e:
        print(f"Restore failed: {e}")
"""


class ArchiveError(Exception):
    """Base exception for all backup and restore failures.

    Attributes:
        message: Human-readable error message.
        backend: Name of the backend involved, when known.
        operation: Operation that failed (``"upload"``, ``"snapshot"``, ...).
    """

    def __init__(
        self,
        message: str,
        backend: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.message = message
        self.backend = backend
        self.operation = operation
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.backend:
            parts.append(f"backend: {self.backend}")
        if self.operation:
            parts.append(f"operation: {self.operation}")
        return " | ".join(parts)


class NotRegisteredError(ArchiveError):
    """Raised when a backend name has no registered constructor."""

    def __init__(self, name: str, kind: str = "backend", available: list[str] | None = None) -> None:
        self.name = name
        self.kind = kind
        self.available = available or []
        message = f"{kind} '{name}' is not registered"
        if self.available:
            message += f" (available: {', '.join(self.available)})"
        super().__init__(message, backend=name)


class ConstructionError(ArchiveError):
    """Raised when a registered constructor fails to build its backend."""

    def __init__(self, name: str, cause: BaseException) -> None:
        self.name = name
        self.cause = cause
        super().__init__(f"failed to construct '{name}': {cause}", backend=name)


class DatabaseConnectionError(ArchiveError):
    """Raised when a database backend cannot reach its engine."""


class BackendClosedError(ArchiveError):
    """Raised when a backend is used after ``close()``."""


class TransferError(ArchiveError):
    """Raised on I/O failure while streaming backup data.

    Attributes:
        output: Diagnostic output captured from the underlying tool, if any.
    """

    def __init__(
        self,
        message: str,
        output: str = "",
        backend: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.output = output
        if output:
            message = f"{message} (output: {output.strip()})"
        super().__init__(message, backend=backend, operation=operation)


class BackupNotFoundError(ArchiveError):
    """Raised when a download, delete or verify references a missing backup."""

    def __init__(self, backup_id: str, backend: str | None = None) -> None:
        self.backup_id = backup_id
        super().__init__(f"backup not found: {backup_id}", backend=backend)


class IntegrityUnverifiedError(ArchiveError):
    """Raised when verification is requested for a backup with no checksum."""

    def __init__(self, backup_id: str) -> None:
        self.backup_id = backup_id
        super().__init__(
            f"backup {backup_id} has no stored checksum; integrity cannot be verified",
            operation="verify",
        )


class ChecksumMismatchError(ArchiveError):
    """Raised when a downloaded payload does not match its stored checksum."""

    def __init__(self, backup_id: str, expected: str, actual: str) -> None:
        self.backup_id = backup_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"checksum mismatch for {backup_id}: expected {expected}, got {actual}",
            operation="verify",
        )


class OperationError(ArchiveError):
    """Raised when a backend fails with an exception outside this hierarchy."""

    def __init__(self, operation: str, cause: BaseException, backend: str | None = None) -> None:
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}", backend=backend, operation=operation)


class ConfigError(ArchiveError):
    """Raised when configuration values are missing or invalid."""
