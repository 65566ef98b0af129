"""Named registry of database and storage backend constructors.

A ``Registry`` maps backend names (``"postgres"``, ``"disk"``, ``"s3"``) to
constructor callables, kept separately for database and storage backends.
Callers resolve a backend by name and get a ready instance back without
importing the concrete class.

Registries are plain objects: build one at startup (see
``db_archive.factory.build_registry``) and pass it where it is needed.
Independent instances share no state.

Thread safety: mappings are copy-on-write.  Registrations serialize on a
lock and swap in a new dict; lookups read the current dict without
locking, so reads never wait on each other and always see a whole
mapping.

Usage:
    from db_archive.registry import Registry

    registry = Registry()
    registry.register_database("postgres", PostgresBackend)
    db = registry.get_database("postgres", DatabaseConfig(host="db"))
"""

import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

from db_archive.adapters.base import DatabaseBackend
from db_archive.config.models import DatabaseConfig, StorageConfig
from db_archive.errors import ArchiveError, ConstructionError, NotRegisteredError
from db_archive.storage.base import StorageBackend

logger = logging.getLogger(__name__)

DatabaseConstructor = Callable[[DatabaseConfig], DatabaseBackend]
StorageConstructor = Callable[[StorageConfig], StorageBackend]


class Registry:
    """Thread-safe name -> constructor registry for both backend kinds."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._databases: Mapping[str, DatabaseConstructor] = {}
        self._storages: Mapping[str, StorageConstructor] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_database(self, name: str, constructor: DatabaseConstructor) -> None:
        """Register a database backend constructor.

        Replaces any constructor previously registered under ``name``.
        """
        with self._lock:
            self._databases = {**self._databases, name: constructor}
        logger.debug(f"Registered database backend '{name}'")

    def register_storage(self, name: str, constructor: StorageConstructor) -> None:
        """Register a storage backend constructor.

        Replaces any constructor previously registered under ``name``.
        """
        with self._lock:
            self._storages = {**self._storages, name: constructor}
        logger.debug(f"Registered storage backend '{name}'")

    def unregister_database(self, name: str) -> None:
        """Remove a database backend entry.  Unknown names are ignored."""
        with self._lock:
            self._databases = {k: v for k, v in self._databases.items() if k != name}

    def unregister_storage(self, name: str) -> None:
        """Remove a storage backend entry.  Unknown names are ignored."""
        with self._lock:
            self._storages = {k: v for k, v in self._storages.items() if k != name}

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def get_database(self, name: str, config: DatabaseConfig) -> DatabaseBackend:
        """Build the database backend registered under ``name``.

        Args:
            name: Registered backend name.
            config: Configuration passed to the constructor.

        Returns:
            Constructed backend instance.

        Raises:
            NotRegisteredError: If ``name`` is unknown.  No constructor runs.
            ConstructionError: If the constructor raised a non-library error.
            ArchiveError: Library errors from the constructor propagate
                with the backend name attached.
        """
        databases = self._databases
        constructor = databases.get(name)
        if constructor is None:
            raise NotRegisteredError(name, kind="database backend", available=sorted(databases))
        return _construct(name, constructor, config)

    def get_storage(self, name: str, config: StorageConfig) -> StorageBackend:
        """Build the storage backend registered under ``name``.

        Same error behavior as ``get_database``.
        """
        storages = self._storages
        constructor = storages.get(name)
        if constructor is None:
            raise NotRegisteredError(name, kind="storage backend", available=sorted(storages))
        return _construct(name, constructor, config)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def list_databases(self) -> list[str]:
        """Snapshot of registered database backend names."""
        return sorted(self._databases)

    def list_storages(self) -> list[str]:
        """Snapshot of registered storage backend names."""
        return sorted(self._storages)


def _construct(name: str, constructor: Callable[[Any], Any], config: Any) -> Any:
    """Invoke ``constructor`` and attach the backend name to failures."""
    try:
        return constructor(config)
    except ArchiveError as e:
        if e.backend is None:
            e.backend = name
        raise
    except Exception as e:
        raise ConstructionError(name, e) from e
