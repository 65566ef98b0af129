"""Configuration management: TOML + environment loading and config models.

Usage:
    >>> from db_archive.config import load_config, ArchiveConfig
"""

from db_archive.config.loader import load_config
from db_archive.config.models import ArchiveConfig, DatabaseConfig, StorageConfig

__all__ = ["load_config", "ArchiveConfig", "DatabaseConfig", "StorageConfig"]
