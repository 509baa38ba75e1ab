#!/usr/bin/env python3
"""Administrative command line.

Usage:
    python cli.py restic ls
    python cli.py restic rm --name NAME
    python cli.py restic restore --snapshot-id ID --target DIR
    python cli.py s3 ls
    python cli.py s3 rm --object-key KEY --version-id VERSION
    python cli.py s3 restore --object-key KEY [--version-id VERSION] --target DIR

Configuration is read the same way as for the service.
"""

import argparse
import sys
from pathlib import Path
from typing import List, Sequence, TextIO

from api.logging_config import configure_logging, get_logger
from api.settings import Settings
from backend.exceptions import AutoResticError
from backend.services.export.pipeline import ArchiveExportPipeline
from backend.services.restic.client import RepositoryClient
from backend.services.storage.object_store import ObjectStoreClient, backup_name_from_key
from models.config import AppConfig, load_config

logger = get_logger(__name__)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_table(headers: Sequence[str], rows: List[Sequence[str]]) -> str:
    """Render rows as left-aligned columns separated by two spaces."""

    columns = [list(headers), ["-" * len(h) for h in headers]] + [[str(v) for v in row] for row in rows]
    widths = [max(len(row[i]) for row in columns) for i in range(len(headers))]
    lines = []
    for row in columns:
        lines.append("  ".join(value.ljust(widths[i]) for i, value in enumerate(row)).rstrip())
    return "\n".join(lines)


def _open_repository(config: AppConfig, settings: Settings) -> RepositoryClient:
    return RepositoryClient.open(config.restic.repository, config.restic.password, binary=settings.RESTIC_BINARY)


def _open_object_store(config: AppConfig) -> ObjectStoreClient:
    return ObjectStoreClient.open(
        endpoint=config.s3.endpoint,
        access_key=config.s3.access_key,
        secret_key=config.s3.secret_key,
        bucket=config.s3.bucket,
        region=config.s3.region,
    )


def restic_ls(repository: RepositoryClient, out: TextIO) -> None:
    """Print all snapshots sorted by name, newest first."""

    snapshots = sorted(repository.list_snapshots(), key=lambda s: s.timestamp, reverse=True)
    snapshots.sort(key=lambda s: s.name)
    rows = [(s.name, s.time.strftime(DATE_FORMAT), s.id) for s in snapshots]
    print(format_table(("Name", "Date", "ID"), rows), file=out)


def restic_rm(repository: RepositoryClient, name: str, out: TextIO) -> None:
    output = repository.remove_by_name(name)
    if output:
        print(output, file=out)
    print(f"Removed backup: {name}", file=out)


def restic_restore(repository: RepositoryClient, snapshot_id: str, target: str, out: TextIO) -> None:
    repository.restore(snapshot_id, target)
    print(f"Restored snapshot {snapshot_id} to {target}", file=out)


def s3_ls(object_store: ObjectStoreClient, out: TextIO) -> None:
    """Print all object versions sorted by backup name, newest first."""

    objects = sorted(object_store.list_objects(), key=lambda o: o.created_at, reverse=True)
    objects.sort(key=lambda o: o.backup_name)
    rows = [(o.key, o.created_at.strftime(DATE_FORMAT), o.version_id, o.size) for o in objects]
    print(format_table(("Object-Key", "Date", "Version", "Size"), rows), file=out)


def s3_rm(object_store: ObjectStoreClient, key: str, version_id: str, out: TextIO) -> None:
    object_store.remove_object(key, version_id)
    print(f"Removed S3 object: {key} ({version_id})", file=out)


def s3_restore(pipeline: ArchiveExportPipeline, key: str, version_id: str, target: str, out: TextIO) -> None:
    """Extract an archive version into `<target>/<backup-name>`."""

    destination = Path(target) / backup_name_from_key(key)
    pipeline.restore_object(key, version_id or None, str(destination))
    print(f"Restored S3 object {key} to {destination}", file=out)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="auto-restic", description="Auto-Restic administration")
    parser.add_argument("--config", default=None, help="YAML config file (default: CONFIG_FILE)")
    groups = parser.add_subparsers(dest="group", required=True)

    restic = groups.add_parser("restic", help="Manage restic snapshots")
    restic_cmds = restic.add_subparsers(dest="command", required=True)
    restic_cmds.add_parser("ls", help="List snapshots")
    rm = restic_cmds.add_parser("rm", help="Remove all snapshots of a backup name")
    rm.add_argument("--name", required=True, help="Backup name")
    restore = restic_cmds.add_parser("restore", help="Restore a snapshot")
    restore.add_argument("--snapshot-id", required=True, help="Snapshot ID")
    restore.add_argument("--target", required=True, help="Directory to restore into")

    s3 = groups.add_parser("s3", help="Manage exported archives")
    s3_cmds = s3.add_subparsers(dest="command", required=True)
    s3_cmds.add_parser("ls", help="List archive versions")
    rm = s3_cmds.add_parser("rm", help="Remove an archive version")
    rm.add_argument("--object-key", required=True, help="Object key")
    rm.add_argument("--version-id", required=True, help="Version ID")
    restore = s3_cmds.add_parser("restore", help="Download, decrypt and extract an archive")
    restore.add_argument("--object-key", required=True, help="Object key")
    restore.add_argument("--version-id", default="", help="Version ID (default: latest)")
    restore.add_argument("--target", required=True, help="Directory to extract into")

    return parser


def run(args: argparse.Namespace, config: AppConfig, settings: Settings, out: TextIO) -> None:
    """Dispatch a parsed command."""

    if args.group == "restic":
        repository = _open_repository(config, settings)
        if args.command == "ls":
            restic_ls(repository, out)
        elif args.command == "rm":
            restic_rm(repository, args.name, out)
        else:
            restic_restore(repository, args.snapshot_id, args.target, out)
        return

    object_store = _open_object_store(config)
    if args.command == "ls":
        s3_ls(object_store, out)
    elif args.command == "rm":
        s3_rm(object_store, args.object_key, args.version_id, out)
    else:
        repository = RepositoryClient(config.restic.repository, config.restic.password, binary=settings.RESTIC_BINARY)
        pipeline = ArchiveExportPipeline(repository, object_store, config.s3.passphrase)
        s3_restore(pipeline, args.object_key, args.version_id, args.target, out)


def main(argv=None) -> int:
    """Entry point."""

    args = build_parser().parse_args(argv)

    settings = Settings()
    configure_logging(log_dir="", log_level=settings.LOG_LEVEL, debug=settings.DEBUG)

    try:
        config = load_config(settings, config_file=args.config)
        run(args, config, settings, sys.stdout)
    except AutoResticError as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
