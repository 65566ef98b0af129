"""Configuration loading from TOML and environment variables.

Values are layered: model defaults, then the optional TOML file, then
environment variables.  Every variable name may carry a caller-chosen
prefix (``--env-prefix APP_`` reads ``APP_DB_HOST``).

Example ``archive.toml``::

    timeout_seconds = 900

    [database]
    type = "postgres"
    host = "db.internal"
    database = "app"

    [storage]
    type = "s3"
    bucket = "app-backups"
"""

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from db_archive.config.models import ArchiveConfig
from db_archive.errors import ConfigError

# Environment variable -> (section, field).  Section None is top level.
ENV_FIELDS: dict[str, tuple[str | None, str]] = {
    "DB_TYPE": ("database", "type"),
    "DB_HOST": ("database", "host"),
    "DB_PORT": ("database", "port"),
    "DB_USERNAME": ("database", "username"),
    "DB_PASSWORD": ("database", "password"),
    "DB_DATABASE": ("database", "database"),
    "DB_SSLMODE": ("database", "sslmode"),
    "STORAGE_TYPE": ("storage", "type"),
    "STORAGE_PATH": ("storage", "path"),
    "STORAGE_BUCKET": ("storage", "bucket"),
    "STORAGE_REGION": ("storage", "region"),
    "STORAGE_ENDPOINT": ("storage", "endpoint"),
    "STORAGE_ACCESS_KEY": ("storage", "access_key"),
    "STORAGE_SECRET_KEY": ("storage", "secret_key"),
    "STORAGE_PREFIX": ("storage", "prefix"),
    "ARCHIVE_TIMEOUT": (None, "timeout_seconds"),
}


def load_config(
    config_path: Path | None = None,
    env_prefix: str = "",
    overrides: dict[str, dict[str, Any]] | None = None,
) -> ArchiveConfig:
    """Load service configuration.

    Args:
        config_path: Optional path to a TOML file.  When ``None``, only
            defaults and environment variables are used.
        env_prefix: Prefix prepended to every environment variable name.
        overrides: Highest-precedence values, keyed by section
            (``{"database": {"host": "x"}}``).  Used for CLI flags.

    Returns:
        Validated ``ArchiveConfig``.

    Raises:
        FileNotFoundError: If ``config_path`` is given but doesn't exist.
        ConfigError: If the TOML is malformed or a value is invalid.
    """
    data: dict[str, Any] = {"database": {}, "storage": {}}

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        try:
            with open(config_path, "rb") as f:
                file_data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e
        _merge(data, file_data)

    env_data: dict[str, Any] = {}
    for var, (section, field) in ENV_FIELDS.items():
        value = os.environ.get(f"{env_prefix}{var}")
        if not value:
            continue
        if section is None:
            env_data[field] = value
        else:
            env_data.setdefault(section, {})[field] = value
    _merge(data, env_data)

    if overrides:
        _merge(data, overrides)

    try:
        return ArchiveConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def _merge(base: dict[str, Any], extra: dict[str, Any]) -> None:
    """Merge ``extra`` into ``base`` one section deep (in place)."""
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key].update(value)
        else:
            base[key] = value
