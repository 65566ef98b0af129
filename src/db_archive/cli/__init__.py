"""CLI module for database backup and restore.

Provides commands to take backups, list and inspect stored backups, verify
their integrity, and restore them.

Usage:
    db-archive backup --db-host db.internal --db-name app --storage-path /var/backups
    db-archive list --storage-type s3 --storage-bucket app-backups
    db-archive verify 20250101-120000-1a2b3c4d
    db-archive restore 20250101-120000-1a2b3c4d --yes
    db-archive --config archive.toml --env-prefix APP_ backup --tag env=staging

Commands:
    backup     - Back up the database to storage
    restore    - Restore a stored backup into the database
    list       - List stored backups
    delete     - Delete a stored backup
    verify     - Check a stored backup against its checksum
    providers  - List available database and storage backends
    version    - Show version
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Confirm
from rich.table import Table

from db_archive import __version__
from db_archive.backup.models import BackupRecord, validate_tag
from db_archive.config.loader import load_config
from db_archive.config.models import ArchiveConfig
from db_archive.errors import ArchiveError
from db_archive.factory import build_registry, open_service

console = Console()

# argparse dest -> (config section, field)
_FLAG_FIELDS: dict[str, tuple[str, str]] = {
    "db_type": ("database", "type"),
    "db_host": ("database", "host"),
    "db_port": ("database", "port"),
    "db_user": ("database", "username"),
    "db_password": ("database", "password"),
    "db_name": ("database", "database"),
    "db_sslmode": ("database", "sslmode"),
    "storage_type": ("storage", "type"),
    "storage_path": ("storage", "path"),
    "storage_bucket": ("storage", "bucket"),
    "storage_region": ("storage", "region"),
    "storage_endpoint": ("storage", "endpoint"),
    "storage_access_key": ("storage", "access_key"),
    "storage_secret_key": ("storage", "secret_key"),
    "storage_prefix": ("storage", "prefix"),
}


# ============================================================================
# Helpers
# ============================================================================


def _configure_logging(verbose: bool) -> None:
    """Send library logs through rich, at DEBUG when ``verbose``."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_config(args: argparse.Namespace) -> ArchiveConfig:
    """Load configuration, with command-line flags taking precedence.

    Raises:
        FileNotFoundError: If ``--config`` names a missing file.
        ConfigError: If the merged configuration is invalid.
    """
    overrides: dict[str, dict[str, Any]] = {}
    for dest, (section, field) in _FLAG_FIELDS.items():
        value = getattr(args, dest, None)
        if value is not None:
            overrides.setdefault(section, {})[field] = value

    config_path = Path(args.config) if getattr(args, "config", None) else None
    return load_config(
        config_path=config_path,
        env_prefix=getattr(args, "env_prefix", ""),
        overrides=overrides,
    )


def _parse_tags(values: list[str] | None) -> dict[str, str]:
    """Parse repeated ``--tag key=value`` options.

    Raises:
        ValueError: If an entry has no ``=``, an empty key, or a key or
            value that cannot be stored.
    """
    tags: dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid tag '{item}' (expected key=value)")
        validate_tag(key, value)
        tags[key] = value
    return tags


def _format_size(record: BackupRecord) -> str:
    if record.size_bytes < 1024 * 1024:
        return f"{record.size_bytes} B"
    return f"{record.size_mb:.2f} MB"


def _record_table(record: BackupRecord, title: str) -> Table:
    """Key/value table describing one backup record."""
    table = Table(title=title, show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("ID", f"[cyan]{record.id}[/cyan]")
    table.add_row("Database", record.database_name or "-")
    table.add_row("Type", record.database_type or "-")
    table.add_row("Created", record.timestamp.strftime("%Y-%m-%d %H:%M:%S UTC"))
    table.add_row("Size", _format_size(record))
    table.add_row("Checksum", record.checksum or "[dim]none[/dim]")
    if record.tags:
        table.add_row("Tags", ", ".join(f"{k}={v}" for k, v in sorted(record.tags.items())))
    return table


def _run(coro: Coroutine[Any, Any, int]) -> int:
    """Run an async command, mapping failures to exit code 1."""
    try:
        return asyncio.run(coro)
    except TimeoutError:
        console.print("[bold red]x[/bold red] Operation timed out")
        return 1
    except (ArchiveError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_backup(args: argparse.Namespace) -> int:
    """Async implementation for backup command.

    Args:
        args: Parsed arguments with database and storage flags.

    Returns:
        0 on success, 1 on failure.
    """
    tags = _parse_tags(args.tag)
    config = _load_config(args)

    console.print(
        f"Backing up [bold]{config.database.database}[/bold] "
        f"({config.database.type}) to {config.storage.type} storage...",
        style="dim",
    )

    async with open_service(config, build_registry()) as service:
        async with asyncio.timeout(config.timeout_seconds):
            record = await service.execute(tags=tags)

    console.print()
    console.print(_record_table(record, "Backup Complete"))
    return 0


async def _async_restore(args: argparse.Namespace) -> int:
    """Async implementation for restore command.

    Asks for confirmation unless ``--yes`` is given, since restore drops
    and recreates objects in the target database.
    """
    config = _load_config(args)

    if not args.yes:
        confirmed = Confirm.ask(
            f"Restore [cyan]{args.backup_id}[/cyan] into "
            f"[bold]{config.database.database}[/bold] on {config.database.host}? "
            "Existing objects will be replaced",
            console=console,
            default=False,
        )
        if not confirmed:
            console.print("[yellow]Aborted.[/yellow]")
            return 1

    async with open_service(config, build_registry()) as service:
        async with asyncio.timeout(config.timeout_seconds):
            await service.restore(args.backup_id)

    console.print(f"[bold green]v[/bold green] Restored backup [cyan]{args.backup_id}[/cyan]")
    return 0


async def _async_list(args: argparse.Namespace) -> int:
    """Async implementation for list command."""
    config = _load_config(args)

    async with open_service(config, build_registry()) as service:
        async with asyncio.timeout(config.timeout_seconds):
            records = await service.list()

    if not records:
        console.print("No backups found.")
        return 0

    table = Table(title="Backups", show_header=True, header_style="bold")
    table.add_column("ID", style="cyan")
    table.add_column("Database")
    table.add_column("Type")
    table.add_column("Created")
    table.add_column("Size", justify="right")
    table.add_column("Checksum")

    for record in records:
        table.add_row(
            record.id,
            record.database_name,
            record.database_type,
            record.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            _format_size(record),
            record.checksum[:12] if record.checksum else "[dim]none[/dim]",
        )

    console.print(table)
    console.print(f"\n{len(records)} backup(s)")
    return 0


async def _async_delete(args: argparse.Namespace) -> int:
    """Async implementation for delete command."""
    config = _load_config(args)

    if not args.yes:
        confirmed = Confirm.ask(
            f"Delete backup [cyan]{args.backup_id}[/cyan]?",
            console=console,
            default=False,
        )
        if not confirmed:
            console.print("[yellow]Aborted.[/yellow]")
            return 1

    async with open_service(config, build_registry()) as service:
        async with asyncio.timeout(config.timeout_seconds):
            await service.delete(args.backup_id)

    console.print(f"[bold green]v[/bold green] Deleted backup [cyan]{args.backup_id}[/cyan]")
    return 0


async def _async_verify(args: argparse.Namespace) -> int:
    """Async implementation for verify command."""
    config = _load_config(args)

    async with open_service(config, build_registry()) as service:
        async with asyncio.timeout(config.timeout_seconds):
            record = await service.verify(args.backup_id)

    console.print(
        f"[bold green]v[/bold green] Backup [cyan]{record.id}[/cyan] is intact "
        f"(md5 {record.checksum})"
    )
    return 0


# ============================================================================
# Sync command wrappers
# ============================================================================


def cmd_backup(args: argparse.Namespace) -> int:
    """Back up the configured database.

    Wraps the async implementation with ``asyncio.run()``.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 on failure.
    """
    return _run(_async_backup(args))


def cmd_restore(args: argparse.Namespace) -> int:
    """Restore a stored backup.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return _run(_async_restore(args))


def cmd_list(args: argparse.Namespace) -> int:
    """List stored backups, newest first."""
    return _run(_async_list(args))


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a stored backup."""
    return _run(_async_delete(args))


def cmd_verify(args: argparse.Namespace) -> int:
    """Verify a stored backup against its recorded checksum."""
    return _run(_async_verify(args))


def cmd_providers(args: argparse.Namespace) -> int:
    """List registered database and storage backends.

    Reads only the built-in registry -- no database or storage calls.
    """
    registry = build_registry()

    table = Table(title="Providers", show_header=True, header_style="bold")
    table.add_column("Kind")
    table.add_column("Name", style="cyan")

    for name in registry.list_databases():
        table.add_row("database", name)
    for name in registry.list_storages():
        table.add_row("storage", name)

    console.print(table)
    return 0


def cmd_version(args: argparse.Namespace) -> int:
    """Print the installed version."""
    console.print(f"db-archive {__version__}")
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def _add_database_flags(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("database")
    group.add_argument("--db-type", help="Database backend name (default: postgres)")
    group.add_argument("--db-host", help="Database host")
    group.add_argument("--db-port", type=int, help="Database port")
    group.add_argument("--db-user", help="Database user")
    group.add_argument("--db-password", help="Database password")
    group.add_argument("--db-name", help="Database name")
    group.add_argument("--db-sslmode", help="SSL mode (disable, require, verify-full)")


def _add_storage_flags(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("storage")
    group.add_argument("--storage-type", help="Storage backend name (disk, s3)")
    group.add_argument("--storage-path", help="Backup directory for disk storage")
    group.add_argument("--storage-bucket", help="S3 bucket")
    group.add_argument("--storage-region", help="S3 region")
    group.add_argument("--storage-endpoint", help="S3 endpoint URL (MinIO, LocalStack)")
    group.add_argument("--storage-access-key", help="S3 access key")
    group.add_argument("--storage-secret-key", help="S3 secret key")
    group.add_argument("--storage-prefix", help="S3 key prefix")


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Args:
        argv: Argument list; defaults to ``sys.argv[1:]``.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="db-archive",
        description="Database backup and restore with pluggable storage",
    )

    parser.add_argument(
        "--config",
        help="Path to a TOML config file",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix APP_ reads APP_DB_HOST)"
        ),
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # backup command
    p_backup = subparsers.add_parser(
        "backup",
        help="Back up the database to storage",
    )
    _add_database_flags(p_backup)
    _add_storage_flags(p_backup)
    p_backup.add_argument(
        "--tag",
        action="append",
        metavar="KEY=VALUE",
        help="Label stored with the backup (repeatable)",
    )
    p_backup.set_defaults(func=cmd_backup)

    # restore command
    p_restore = subparsers.add_parser(
        "restore",
        help="Restore a stored backup into the database",
    )
    p_restore.add_argument("backup_id", help="Backup ID or object key")
    p_restore.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Skip the confirmation prompt",
    )
    _add_database_flags(p_restore)
    _add_storage_flags(p_restore)
    p_restore.set_defaults(func=cmd_restore)

    # list command
    p_list = subparsers.add_parser(
        "list",
        help="List stored backups",
    )
    _add_storage_flags(p_list)
    p_list.set_defaults(func=cmd_list)

    # delete command
    p_delete = subparsers.add_parser(
        "delete",
        help="Delete a stored backup",
    )
    p_delete.add_argument("backup_id", help="Backup ID or object key")
    p_delete.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Skip the confirmation prompt",
    )
    _add_storage_flags(p_delete)
    p_delete.set_defaults(func=cmd_delete)

    # verify command
    p_verify = subparsers.add_parser(
        "verify",
        help="Check a stored backup against its checksum",
    )
    p_verify.add_argument("backup_id", help="Backup record ID as shown by 'list' (not an object key)")
    _add_storage_flags(p_verify)
    p_verify.set_defaults(func=cmd_verify)

    # providers command
    p_providers = subparsers.add_parser(
        "providers",
        help="List available database and storage backends",
    )
    p_providers.set_defaults(func=cmd_providers)

    # version command
    p_version = subparsers.add_parser(
        "version",
        help="Show version",
    )
    p_version.set_defaults(func=cmd_version)

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
