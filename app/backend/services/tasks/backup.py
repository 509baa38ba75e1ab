"""Scheduled backup of all configured directories."""

from __future__ import annotations

import time
from typing import Sequence

from api.logging_config import get_logger
from backend.exceptions import AutoResticError
from backend.services.metrics.reconciler import Reconciler
from backend.services.metrics.registry import MetricsRegistry
from backend.services.restic.client import RepositoryClient
from backend.services.tasks.base import Task
from backend.services.tasks.commands import run_shell_command
from models.config import BackupSpec

logger = get_logger(__name__)


class BackupTask(Task):
    """Back up every configured unit in order, isolating per-unit failures."""

    name = "backup"

    def __init__(
        self,
        repository: RepositoryClient,
        backups: Sequence[BackupSpec],
        metrics: MetricsRegistry,
        reconciler: Reconciler,
    ):
        self.repository = repository
        self.backups = list(backups)
        self.metrics = metrics
        self.reconciler = reconciler

    def backup_one(self, unit: BackupSpec) -> None:
        """Run pre command, backup and post command for one unit.

        The post command runs after a successful backup only.

        Raises:
            AutoResticError: When any step fails.
        """

        if unit.pre_command:
            run_shell_command(unit.pre_command)

        self.repository.backup(unit.name, unit.path, exclude=unit.exclude, exclude_file=unit.exclude_file)

        if unit.post_command:
            run_shell_command(unit.post_command)

    def run(self) -> None:
        failed = 0
        for unit in self.backups:
            started = time.monotonic()
            logger.info("Starting backup (backup=%s, path=%s)", unit.name, unit.path)
            try:
                self.backup_one(unit)
            except AutoResticError as exc:
                failed += 1
                self.metrics.record_backup_failure(unit.name)
                logger.error("Backup failed (backup=%s, operation=backup): %s", unit.name, exc)
                continue
            finally:
                self.metrics.set_backup_duration(unit.name, time.monotonic() - started)

            logger.info("Backup finished (backup=%s)", unit.name)

        logger.info("Backup run finished (total=%s, failed=%s)", len(self.backups), failed)

        try:
            self.reconciler.reconcile_repository()
        except AutoResticError as exc:
            logger.error("Failed to refresh repository metrics after backup: %s", exc)
