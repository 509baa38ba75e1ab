"""Scheduled off-site export of the latest snapshot of every configured backup."""

from __future__ import annotations

import time
from typing import Dict, Sequence

from api.logging_config import get_logger
from backend.exceptions import AutoResticError
from backend.services.export.pipeline import ArchiveExportPipeline
from backend.services.metrics.reconciler import Reconciler
from backend.services.metrics.registry import OPERATION_LIST, MetricsRegistry
from backend.services.restic.client import RepositoryClient
from backend.services.restic.schemas import Snapshot
from backend.services.tasks.base import Task

logger = get_logger(__name__)


def latest_by_name(snapshots: Sequence[Snapshot]) -> Dict[str, Snapshot]:
    """Pick the newest snapshot per backup name."""

    latest: Dict[str, Snapshot] = {}
    for snapshot in snapshots:
        current = latest.get(snapshot.name)
        if current is None or snapshot.time > current.time:
            latest[snapshot.name] = snapshot
    return latest


class ExportTask(Task):
    """Export the newest snapshot of each configured backup name to object storage.

    Names without any snapshot count as an export failure. One failing export
    does not stop the others.
    """

    name = "export"

    def __init__(
        self,
        repository: RepositoryClient,
        pipeline: ArchiveExportPipeline,
        backup_names: Sequence[str],
        metrics: MetricsRegistry,
        reconciler: Reconciler,
    ):
        self.repository = repository
        self.pipeline = pipeline
        self.backup_names = list(backup_names)
        self.metrics = metrics
        self.reconciler = reconciler

    def run(self) -> None:
        try:
            snapshots = self.repository.list_latest_snapshots()
        except AutoResticError as exc:
            self.metrics.record_operation_error(OPERATION_LIST)
            logger.error("Failed to list latest snapshots (operation=list): %s", exc)
            return

        latest = latest_by_name(snapshots)
        exported = 0
        for name in self.backup_names:
            snapshot = latest.get(name)
            if snapshot is None:
                self.metrics.record_export_failure(name)
                logger.error("No snapshot to export (backup=%s, operation=export)", name)
                continue

            started = time.monotonic()
            logger.info("Exporting snapshot (backup=%s, snapshot=%s)", name, snapshot.short_id or snapshot.id)
            try:
                self.pipeline.export_snapshot(snapshot.id, name)
            except AutoResticError as exc:
                self.metrics.record_export_failure(name)
                logger.error("Export failed (backup=%s, operation=export): %s", name, exc)
                continue
            finally:
                self.metrics.set_export_duration(name, time.monotonic() - started)
            exported += 1

        logger.info("Export run finished (total=%s, exported=%s)", len(self.backup_names), exported)

        try:
            self.reconciler.reconcile_object_store()
        except AutoResticError as exc:
            logger.error("Failed to refresh object storage metrics after export: %s", exc)


class MetricsRefreshTask(Task):
    """Recompute repository and object storage metrics independently."""

    name = "metrics"

    def __init__(self, reconciler: Reconciler):
        self.reconciler = reconciler

    def run(self) -> None:
        try:
            self.reconciler.reconcile_repository()
        except AutoResticError as exc:
            logger.error("Failed to refresh repository metrics: %s", exc)

        try:
            self.reconciler.reconcile_object_store()
        except AutoResticError as exc:
            logger.error("Failed to refresh object storage metrics: %s", exc)
