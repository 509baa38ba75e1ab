"""restic repository client.

All repository operations run the restic binary as a blocking subprocess. The
repository location and password are handed over through the process
environment (`RESTIC_REPOSITORY`, `RESTIC_PASSWORD`) and never appear on the
command line or in logs.

The client does not serialize calls itself; callers (the job scheduler) make
sure that at most one mutating invocation runs at a time.
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError

from api.logging_config import get_logger
from backend.exceptions import AuthError, EngineError, InitError
from backend.services.restic.schemas import SNAPSHOT_LIST, Snapshot, SnapshotStats, name_tag

logger = get_logger(__name__)

# restic >= 0.17 exit code for "repository does not exist".
EXIT_REPOSITORY_MISSING = 10

_REMOTE_PREFIXES = ("s3:", "sftp:", "rest:", "b2:", "azure:", "gs:", "swift:", "rclone:")


class RepositoryClient:
    """Wrapper around the restic command line for one repository."""

    def __init__(self, repository: str, password: str, *, binary: str = "restic", timeout: Optional[float] = None):
        """Initialize the client without touching the repository.

        Use `RepositoryClient.open` to validate or create the repository.

        Args:
            repository: Repository location (local path or restic backend URL).
            password: Repository password.
            binary: restic executable.
            timeout: Optional per-invocation timeout in seconds.
        """

        self.repository = repository
        self._password = password
        self.binary = binary
        self.timeout = timeout

    @classmethod
    def open(cls, repository: str, password: str, **kwargs) -> "RepositoryClient":
        """Open an existing repository or initialize a new one.

        Args:
            repository: Repository location.
            password: Repository password.
            **kwargs: Forwarded to the constructor.

        Returns:
            RepositoryClient: Client for a repository that exists and accepts the password.

        Raises:
            AuthError: When the repository exists but the password is wrong.
            InitError: When a new repository cannot be created.
        """

        client = cls(repository, password, **kwargs)

        if client.exists():
            if not client.is_password_correct():
                raise AuthError(f"restic password is incorrect for repository {repository}")
            logger.info("Opened restic repository (repository=%s)", repository)
            return client

        try:
            client.init()
        except EngineError as exc:
            raise InitError(f"Failed to initialize restic repository {repository}: {exc}") from exc

        logger.info("Initialized new restic repository (repository=%s)", repository)
        return client

    def _env(self) -> Dict[str, str]:
        env = dict(os.environ)
        env["RESTIC_REPOSITORY"] = self.repository
        env["RESTIC_PASSWORD"] = self._password
        return env

    def _execute(self, args: Sequence[str]) -> subprocess.CompletedProcess:
        """Run restic and return the completed process without checking the exit code.

        Args:
            args: restic arguments (without the binary).

        Returns:
            subprocess.CompletedProcess: Completed process with text output.

        Raises:
            EngineError: When the binary cannot be started or times out.
        """

        cmd = [self.binary, *args]
        logger.debug("Running restic command: %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                env=self._env(),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise EngineError(f"Failed to run {' '.join(cmd)}: {exc}", command=cmd) from exc

        logger.trace("restic %s exited with %s", args[0] if args else "", result.returncode)  # type: ignore[attr-defined]
        return result

    def _run(self, args: Sequence[str], *, description: str) -> subprocess.CompletedProcess:
        """Run restic and raise on a nonzero exit code.

        Args:
            args: restic arguments.
            description: Human-readable operation description for the error message.

        Returns:
            subprocess.CompletedProcess: Completed process.

        Raises:
            EngineError: On nonzero exit, carrying the combined output.
        """

        result = self._execute(args)
        if result.returncode != 0:
            output = "\n".join(part for part in (result.stdout, result.stderr) if part)
            raise EngineError(
                f"Failed to {description}",
                command=[self.binary, *args],
                returncode=result.returncode,
                output=output,
            )
        return result

    def exists(self) -> bool:
        """Return True if the repository exists.

        Local repositories are checked on the filesystem; remote backends by
        reading the repository config.
        """

        if not self.repository.startswith(_REMOTE_PREFIXES):
            return Path(self.repository).exists()

        result = self._execute(["cat", "config", "--no-lock"])
        return result.returncode != EXIT_REPOSITORY_MISSING

    def is_password_correct(self) -> bool:
        """Return True if the password unlocks the repository."""

        result = self._execute(["snapshots", "--latest=1", "--no-lock", "--json"])
        return result.returncode == 0

    def init(self) -> None:
        """Initialize a new repository.

        Raises:
            EngineError: When `restic init` fails.
        """

        self._run(["init"], description=f"initialize restic repository {self.repository}")

    def backup(
        self,
        name: str,
        path: str,
        *,
        exclude: Optional[str] = None,
        exclude_file: Optional[str] = None,
    ) -> None:
        """Create a snapshot of a directory tagged with its backup name.

        A failed backup leaves no new snapshot behind.

        Args:
            name: Backup name (stored as `name=<name>` tag).
            path: Directory to back up.
            exclude: Optional exclude pattern.
            exclude_file: Optional exclude file.

        Raises:
            EngineError: When restic exits nonzero.
        """

        args = ["backup", path, "--tag", name_tag(name)]
        if exclude:
            args.extend(["--exclude", exclude])
        if exclude_file:
            args.extend(["--exclude-file", exclude_file])

        self._run(args, description=f"backup directory {path}")

    def check(self) -> None:
        """Verify repository integrity.

        Raises:
            EngineError: When the check fails.
        """

        self._run(["check"], description="check restic repository")

    def forget_and_prune(self, keep_daily: int, keep_weekly: int, keep_monthly: int) -> None:
        """Forget snapshots outside the retention window and prune unreferenced data.

        Args:
            keep_daily: Daily snapshots to keep.
            keep_weekly: Weekly snapshots to keep.
            keep_monthly: Monthly snapshots to keep.

        Raises:
            EngineError: When forget/prune fails.
        """

        self._run(
            [
                "forget",
                "--prune",
                f"--keep-daily={int(keep_daily)}",
                f"--keep-weekly={int(keep_weekly)}",
                f"--keep-monthly={int(keep_monthly)}",
            ],
            description="forget old backups",
        )

    def _list(self, args: Sequence[str]) -> List[Snapshot]:
        result = self._run(args, description="list snapshots")
        try:
            return SNAPSHOT_LIST.validate_json(result.stdout or "[]")
        except ValidationError as exc:
            raise EngineError(
                f"Failed to decode snapshot list: {exc}",
                command=[self.binary, *args],
                returncode=result.returncode,
            ) from exc

    def list_snapshots(self) -> List[Snapshot]:
        """Return all snapshots in engine order.

        Raises:
            EngineError: When listing or decoding fails.
        """

        return self._list(["snapshots", "--no-lock", "--json"])

    def list_latest_snapshots(self) -> List[Snapshot]:
        """Return the most recent snapshot per distinct host/path/tag group.

        Raises:
            EngineError: When listing or decoding fails.
        """

        return self._list(["snapshots", "--latest=1", "--no-lock", "--json"])

    def stats_by_name(self, name: str) -> SnapshotStats:
        """Return raw-data statistics across all snapshots of one backup name.

        Args:
            name: Backup name.

        Raises:
            EngineError: When the stats query or decoding fails.
        """

        args = ["stats", "--json", "--mode", "raw-data", "--no-lock", "--tag", name_tag(name)]
        result = self._run(args, description=f"get snapshot stats for {name}")
        try:
            return SnapshotStats.model_validate_json(result.stdout or "{}")
        except ValidationError as exc:
            raise EngineError(
                f"Failed to decode snapshot stats for {name}: {exc}",
                command=[self.binary, *args],
                returncode=result.returncode,
            ) from exc

    def restore(self, snapshot_id: str, dest_dir: str) -> None:
        """Restore a snapshot's full contents under a directory.

        Args:
            snapshot_id: Snapshot id.
            dest_dir: Target directory.

        Raises:
            EngineError: When the restore fails.
        """

        self._run(
            ["restore", snapshot_id, "--target", str(dest_dir), "--no-lock"],
            description=f"restore snapshot {snapshot_id}",
        )

    def remove_by_name(self, name: str) -> str:
        """Forget all snapshots of one backup name and prune their data.

        Args:
            name: Backup name.

        Returns:
            str: restic output.

        Raises:
            EngineError: When forget/prune fails.
        """

        snapshot_ids = [snapshot.id for snapshot in self.list_snapshots() if snapshot.name == name]
        if not snapshot_ids:
            logger.info("No snapshots to remove (backup=%s)", name)
            return ""

        result = self._run(
            ["forget", "--prune", *snapshot_ids],
            description=f"remove snapshots for {name}",
        )
        return result.stdout
